"""Database models for OmniCalendar."""

from omnicalendar.models.user import User
from omnicalendar.models.category import Category
from omnicalendar.models.tag import Tag
from omnicalendar.models.task import TaskItem, TaskNote, TaskStatus, TaskTag
from omnicalendar.models.holiday import HolidayCache

__all__ = [
    # User
    "User",
    # Organisation
    "Category",
    "Tag",
    # Tasks
    "TaskItem",
    "TaskNote",
    "TaskStatus",
    "TaskTag",
    # Holidays
    "HolidayCache",
]
