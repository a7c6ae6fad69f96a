"""Application error taxonomy.

Services raise these; ``register_exception_handlers`` maps them to HTTP
responses at the API boundary.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from omnicalendar.observability import get_request_id

logger = logging.getLogger(__name__)


class OmniCalendarError(Exception):
    """Base exception for application errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__


class Unauthenticated(OmniCalendarError):
    """No authenticated principal is attached to the request."""

    status_code = status.HTTP_401_UNAUTHORIZED


class MissingIdentity(OmniCalendarError):
    """The token carries no subject claim."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ConfigurationError(OmniCalendarError):
    """A required setting or credential is not configured."""

    pass


class UpstreamError(OmniCalendarError):
    """An external API failed or could not be reached."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str = "", upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class InvalidReference(OmniCalendarError):
    """A referenced record does not exist or belongs to another user."""

    status_code = status.HTTP_403_FORBIDDEN


async def _handle_app_error(request: Request, exc: OmniCalendarError) -> JSONResponse:
    summary = f"{exc.__class__.__name__} on {request.url.path} [{get_request_id()}]: {exc.message}"
    if exc.status_code >= 500:
        logger.error(summary)
    else:
        logger.warning(summary)

    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the error-to-response mapping to the app."""
    app.add_exception_handler(OmniCalendarError, _handle_app_error)
