from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from .logging import get_logger

logger = get_logger(__name__)


class ActionError(Exception):
    """A node could not run: missing contact, missing config, unknown template."""


class ProviderError(ActionError):
    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class OutboundWebhookError(ActionError):
    pass


class TriggerError(Exception):
    """Raised by trigger ingestion; carries the HTTP status the caller should see."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


class MappingError(TriggerError):
    def __init__(self, detail: str) -> None:
        super().__init__(400, detail)


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):  # type: ignore
        logger.warning("HTTP error", exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(TriggerError)
    async def trigger_error_handler(request: Request, exc: TriggerError):  # type: ignore
        logger.warning("Trigger rejected", extra={"path": request.url.path, "status_code": exc.status_code})
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):  # type: ignore
        logger.error("Database integrity error", exc_info=exc)
        return JSONResponse(status_code=400, content={"detail": "Database integrity error"})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):  # type: ignore
        logger.error("Unhandled error", exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
