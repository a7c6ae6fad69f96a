"""Task endpoints."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from omnicalendar.core.clerk_auth import get_current_user
from omnicalendar.core.database import get_db
from omnicalendar.models.schemas import TaskCreateRequest, TaskResponse
from omnicalendar.models.user import User
from omnicalendar.services.tasks import TaskService

router = APIRouter()


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreateRequest,
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Create a new task / event for the current user.

    The Location header points at the range query covering the task's due date.
    """
    task = await TaskService(db, current_user).create(task_data)

    location = request.url_for("get_tasks_by_date_range").path
    if task.due_date is not None:
        due = task.due_date.isoformat()
        location = f"{location}?from={due}&to={due}"
    response.headers["Location"] = location
    return task


@router.get("", response_model=list[TaskResponse], name="get_tasks_by_date_range")
async def get_tasks_by_date_range(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    from_date: date = Query(..., alias="from", description="First due date (inclusive)"),
    to_date: date = Query(..., alias="to", description="Last due date (inclusive)"),
):
    """Get tasks by due date range (inclusive) for the current user."""
    return await TaskService(db, current_user).list_by_due_date_range(from_date, to_date)


@router.get("/today", response_model=list[TaskResponse])
async def get_today_tasks(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Get today's tasks (UTC due date) ordered by priority, then title."""
    return await TaskService(db, current_user).list_today()
