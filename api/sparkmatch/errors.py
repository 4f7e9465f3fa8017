import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError, OperationalError

logger = logging.getLogger(__name__)


class StorageUnavailable(Exception):
    """Transient storage failure; the whole operation is safe to retry."""

    def __init__(self, operation: str, retry_after_seconds: int = 2):
        self.operation = operation
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"storage unavailable during {operation}")


@contextmanager
def storage_guard(operation: str) -> Iterator[None]:
    try:
        yield
    except OperationalError as exc:
        logger.warning("[storage] %s aborted: %s", operation, exc.__class__.__name__)
        raise StorageUnavailable(operation) from exc
    except DBAPIError as exc:
        if not exc.connection_invalidated:
            raise
        logger.warning("[storage] %s lost its connection", operation)
        raise StorageUnavailable(operation) from exc
