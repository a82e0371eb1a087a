import functools
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from supabase import PostgrestAPIError

logger = logging.getLogger(__name__)


INVALID_ARGUMENT = "InvalidArgument"
NOT_FOUND = "NotFound"
SCHEMA_NOT_PROVISIONED = "SchemaNotProvisioned"
TRANSIENT_SERVICE_ERROR = "TransientServiceError"
UNEXPECTED_ERROR = "UnexpectedError"

SCHEMA_SETUP_HINT = (
    "Database tables not set up. Run the SQL in linkup/chat/models.py and "
    "linkup/follows/models.py against your Supabase project."
)

# Postgres / PostgREST error codes
UNDEFINED_TABLE = {"42P01", "PGRST205"}
UNDEFINED_FUNCTION = {"42883", "PGRST202"}
MISSING_RELATIONSHIP = {"PGRST200", "PGRST201"}
NO_ROWS = {"PGRST116"}
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"
INVALID_TEXT = "22P02"

HTTP_STATUS = {
    INVALID_ARGUMENT: status.HTTP_400_BAD_REQUEST,
    NOT_FOUND: status.HTTP_404_NOT_FOUND,
    SCHEMA_NOT_PROVISIONED: status.HTTP_503_SERVICE_UNAVAILABLE,
    TRANSIENT_SERVICE_ERROR: status.HTTP_502_BAD_GATEWAY,
    UNEXPECTED_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class Envelope(BaseModel):
    """Uniform result returned by every repository operation."""

    success: bool
    data: Any = None
    msg: Optional[str] = None
    code: Optional[str] = None


def ok(data: Any = None, msg: Optional[str] = None) -> Envelope:
    return Envelope(success=True, data=data, msg=msg)


def fail(msg: str, code: str = UNEXPECTED_ERROR, data: Any = None) -> Envelope:
    return Envelope(success=False, data=data, msg=msg, code=code)


class LinkupError(Exception):
    code = UNEXPECTED_ERROR

    def __init__(self, message: str, data: Any = None):
        self.message = message
        self.data = data
        super().__init__(message)


class InvalidArgument(LinkupError):
    code = INVALID_ARGUMENT


class NotFound(LinkupError):
    code = NOT_FOUND


class SchemaNotProvisioned(LinkupError):
    code = SCHEMA_NOT_PROVISIONED


class TransientServiceError(LinkupError):
    code = TRANSIENT_SERVICE_ERROR


class MissingCapability(LinkupError):
    """A relationship or RPC the richer query path needs is not configured."""


def error_code(exc: Exception) -> Optional[str]:
    code = getattr(exc, "code", None)
    return str(code) if code is not None else None


def is_missing_capability(exc: Exception) -> bool:
    return isinstance(exc, PostgrestAPIError) and error_code(exc) in (
        MISSING_RELATIONSHIP | UNDEFINED_FUNCTION
    )


def is_unique_violation(exc: Exception) -> bool:
    return isinstance(exc, PostgrestAPIError) and error_code(exc) == UNIQUE_VIOLATION


def classify(exc: Exception) -> LinkupError:
    """Translate a storage-layer exception into the error taxonomy by code."""
    if isinstance(exc, LinkupError):
        return exc

    if isinstance(exc, httpx.HTTPError):
        return TransientServiceError(f"Supabase request failed: {exc}")

    if isinstance(exc, PostgrestAPIError):
        code = error_code(exc)
        message = exc.message or str(exc)

        if code in UNDEFINED_TABLE:
            return SchemaNotProvisioned(SCHEMA_SETUP_HINT)
        if code in MISSING_RELATIONSHIP | UNDEFINED_FUNCTION:
            return MissingCapability(message)
        if code in NO_ROWS or code == FOREIGN_KEY_VIOLATION:
            return NotFound(message)
        if code in (CHECK_VIOLATION, INVALID_TEXT):
            return InvalidArgument(message)
        return TransientServiceError(f"Database error: {message}")

    return LinkupError(str(exc))


def envelope(action: str):
    """Convert everything an async repository call raises into an Envelope.

    Expected failures (LinkupError) come back with their own code and data.
    Storage errors are classified. Anything else is logged with a traceback.
    """

    def decorator(func: Callable[..., Awaitable[Envelope]]):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Envelope:
            try:
                return await func(*args, **kwargs)
            except LinkupError as e:
                logger.warning("%s failed code=%s msg=%s", action, e.code, e.message)
                return fail(e.message, e.code, data=e.data)
            except (PostgrestAPIError, httpx.HTTPError) as e:
                error = classify(e)
                logger.warning(
                    "%s failed code=%s storage_code=%s msg=%s",
                    action,
                    error.code,
                    error_code(e),
                    error.message,
                )
                return fail(error.message, error.code)
            except Exception as e:
                logger.exception("%s raised unexpectedly", action)
                return fail(f"{action} failed: {e}", UNEXPECTED_ERROR)

        return wrapper

    return decorator


def envelope_response(result: Envelope, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    if result.success:
        status_code = success_status
    else:
        status_code = HTTP_STATUS.get(result.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


def add_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LinkupError)
    async def handle_linkup_error(_: Request, exc: LinkupError) -> JSONResponse:
        return envelope_response(fail(exc.message, exc.code, data=exc.data))
