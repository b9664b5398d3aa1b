# sourcing_service/api/error_handlers.py
"""
Maps engine errors to structured JSON responses.

Every SourcingServiceError carries its own HTTP status and error code, so
one handler covers the whole hierarchy.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sourcing_service.core.exceptions import SourcingServiceError
from sourcing_service.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def handle_sourcing_error(request: Request, error: SourcingServiceError) -> JSONResponse:
    """Handle structured engine errors"""
    log = logger.error if error.http_status >= 500 else logger.info
    log(
        f"Sourcing error: {error.error_code}",
        extra={
            "error_code": error.error_code,
            "message": error.message,
            "status_code": error.http_status,
            "path": request.url.path,
            "method": request.method,
            "details": error.details,
        },
    )

    return JSONResponse(
        status_code=error.http_status,
        content={
            "error": {
                "code": error.error_code,
                "message": error.message,
                "timestamp": utcnow().isoformat(),
                "path": request.url.path,
                **error.details,
            }
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SourcingServiceError, handle_sourcing_error)
