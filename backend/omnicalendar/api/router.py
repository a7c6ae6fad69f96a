"""API router aggregating all endpoint routers.

Dashboard:
  /api/dashboard/summary

Holidays:
  /api/holidays?countryCode=..&year=..

Tasks:
  /api/tasks (create, due date range), /api/tasks/today
"""

from fastapi import APIRouter

from omnicalendar.api.endpoints import dashboard, holidays, tasks

api_router = APIRouter()

# -------------------------------------------------------------------------
# Dashboard
# -------------------------------------------------------------------------
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["dashboard"])

# -------------------------------------------------------------------------
# Holidays (Calendarific, cached)
# -------------------------------------------------------------------------
api_router.include_router(holidays.router, prefix="/holidays", tags=["holidays"])

# -------------------------------------------------------------------------
# Tasks
# -------------------------------------------------------------------------
api_router.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
