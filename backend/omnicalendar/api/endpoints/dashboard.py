"""Dashboard endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from omnicalendar.core.clerk_auth import get_current_user
from omnicalendar.core.database import get_db
from omnicalendar.models.schemas import DashboardSummaryResponse
from omnicalendar.models.user import User
from omnicalendar.services.dashboard import DashboardService

router = APIRouter()


@router.get("/summary", response_model=DashboardSummaryResponse)
async def get_dashboard_summary(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Rank, experience and today/total task counters for the current user."""
    return await DashboardService(db, current_user).get_summary()
