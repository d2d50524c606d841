"""
Session Errors

Closed error taxonomy for the session coordination core. Storage-layer
exceptions are translated into these types as soon as they leave a
repository call, so routers and the worker only ever see SessionError
subclasses.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Base class for all session coordination errors."""

    code: str = "session_error"
    status_code: int = 500
    default_message: str = "Session operation failed"

    def __init__(self, message: str | None = None, **context: object):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class StorageUnavailable(SessionError):
    """The session store could not be reached. Retryable with backoff."""

    code = "storage_unavailable"
    status_code = 503
    default_message = "Service temporarily unavailable, please try again"


class NotFound(SessionError):
    """Referenced session, address, congregation or map does not exist."""

    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


class InvalidCode(SessionError):
    """No session has the code the participant typed."""

    code = "invalid_code"
    status_code = 404
    default_message = "Invalid session code. Please check and try again."


class SessionEnded(SessionError):
    """Session exists but has been ended."""

    code = "session_ended"
    status_code = 409
    default_message = "This session has ended."


class SessionExpired(SessionError):
    """Session is still flagged active but its expiry time has passed."""

    code = "session_expired"
    status_code = 410
    default_message = "This session has expired."


class CodeSpaceExhausted(SessionError):
    """No free join code was found within the configured attempts."""

    code = "code_space_exhausted"
    status_code = 503
    default_message = "Unable to allocate a session code, please try again later"


class ParticipantRecordFailed(SessionError):
    """The participant join row could not be written."""

    code = "participant_record_failed"
    status_code = 500
    default_message = "Failed to record session participation"


STORAGE_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    PoolTimeoutError,
    ConnectionError,
    OSError,
)


def is_storage_outage(exc: BaseException) -> bool:
    """Whether an exception means the store is unreachable rather than a bad query."""
    if isinstance(exc, STORAGE_ERRORS):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


@asynccontextmanager
async def storage_guard(operation: str) -> AsyncIterator[None]:
    """
    Translate store connectivity failures into StorageUnavailable.

    Other exceptions (including SessionError and cancellation) pass through.

    Args:
        operation: Short name of the operation, used for logging
    """
    try:
        yield
    except SessionError:
        raise
    except Exception as e:
        if is_storage_outage(e):
            logger.error(f"Session store unavailable during {operation}: {e}")
            raise StorageUnavailable(operation=operation) from e
        raise
