"""Service layer for OmniCalendar.

Services contain business logic and data aggregation.
"""

from omnicalendar.services.dashboard import DashboardService, get_rank_for_experience
from omnicalendar.services.holidays import CalendarificClient, HolidayService
from omnicalendar.services.identity import CurrentUserService, Principal
from omnicalendar.services.tasks import TaskService

__all__ = [
    "CalendarificClient",
    "CurrentUserService",
    "DashboardService",
    "HolidayService",
    "Principal",
    "TaskService",
    "get_rank_for_experience",
]
