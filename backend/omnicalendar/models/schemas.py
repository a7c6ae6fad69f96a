"""Request/response schemas shared by services and endpoints.

Field names are snake_case in Python and camelCase on the wire.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from omnicalendar.models.task import DEFAULT_PRIORITY


class CamelModel(BaseModel):
    """Base schema serialised with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# -------------------------------------------------------------------------
# Tasks
# -------------------------------------------------------------------------


class TaskCreateRequest(CamelModel):
    """Body for creating a task."""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: int = DEFAULT_PRIORITY
    recurrence_rule: Optional[str] = Field(None, max_length=255)
    category_id: Optional[int] = None
    tag_ids: Optional[list[int]] = None
    is_all_day: bool = False


class TaskResponse(CamelModel):
    """Task as returned to clients."""

    id: uuid.UUID
    title: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: int
    is_completed: bool
    completed_at: Optional[datetime] = None


# -------------------------------------------------------------------------
# Dashboard
# -------------------------------------------------------------------------


class DashboardSummaryResponse(CamelModel):
    """Rank and task counters for the dashboard."""

    rank: str
    experience_points: int
    today_done: int
    today_left: int
    total_done: int
    total_left: int


# -------------------------------------------------------------------------
# Holidays
# -------------------------------------------------------------------------


class HolidayResponse(CamelModel):
    """One public holiday."""

    name: str = ""
    description: str = ""
    date_iso: str = ""
    primary_type: str = ""
