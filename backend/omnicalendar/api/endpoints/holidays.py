"""Holiday endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from omnicalendar.core.clerk_auth import get_current_user
from omnicalendar.core.config import Settings, get_settings
from omnicalendar.core.database import get_db
from omnicalendar.models.schemas import HolidayResponse
from omnicalendar.models.user import User
from omnicalendar.services.holidays import (
    CalendarificClient,
    HolidayService,
    get_calendarific_client,
)

router = APIRouter()


@router.get("", response_model=list[HolidayResponse])
async def get_holidays(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    client: Annotated[CalendarificClient, Depends(get_calendarific_client)],
    settings: Annotated[Settings, Depends(get_settings)],
    country_code: str = Query(
        ...,
        alias="countryCode",
        min_length=2,
        max_length=5,
        description="ISO 3166 country code, case-insensitive",
    ),
    year: int = Query(..., ge=1, le=9999),
):
    """Get public holidays for a country and year."""
    service = HolidayService(db, client, ttl_days=settings.holiday_cache_ttl_days)
    return await service.get_holidays(country_code, year)
