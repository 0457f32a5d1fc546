import functools
import logging

import pymongo.errors


logger = logging.getLogger(__name__)


class ForumError(Exception):
    """Base error; rendered to the caller as ``{"message": ...}``."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ForumError):
    status_code = 400
    default_message = "Missing or invalid fields"


class Unauthorized(ForumError):
    status_code = 401
    default_message = "unauthorized access"


class Forbidden(ForumError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ForumError):
    status_code = 404
    default_message = "Not found"


class Conflict(ForumError):
    status_code = 409
    default_message = "Conflict"


class StorageError(ForumError):
    status_code = 500
    default_message = "Storage operation failed"


def wraps_storage_errors(func):
    """Turn driver failures of an async store method into StorageError.

    The driver error is logged here and never retried.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except pymongo.errors.PyMongoError as exc:
            logger.error("Storage call %s failed: %s", func.__qualname__, exc)
            raise StorageError() from exc
    return wrapper
