import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from portal.core.exceptions import MembershipError, PlatformAPIError
from portal.schemas.portal import ErrorResponse

logger = logging.getLogger(__name__)


def _error_body(request: Request, detail: str, kind: str) -> dict:
    session = getattr(request.state, "membership_session", None)
    notifications = session.notifier.drain() if session is not None else []
    return ErrorResponse(detail=detail, kind=kind, notifications=notifications).model_dump(mode="json")


async def membership_exception_handler(request: Request, exc: MembershipError) -> JSONResponse:
    """Render a classified membership failure with the session's toasts."""
    logger.info(f"Membership error [{exc.kind}] on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.message, exc.kind),
    )


async def platform_exception_handler(request: Request, exc: PlatformAPIError) -> JSONResponse:
    """Handle upstream failures that no operation classified."""
    logger.error(f"Unclassified platform API error: {exc!r}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=_error_body(request, "The platform could not complete the request", "network"),
    )


async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.error(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors(include_url=False, include_context=False)},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other exceptions."""
    logger.error(f"Unexpected error: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred"},
    )
