"""OmniCalendar API: tasks, dashboard and holidays for a personal calendar."""

__version__ = "0.1.0"
