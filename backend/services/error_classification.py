"""Error taxonomy for sync failures.

Maps exceptions raised by the asset store client or the catalog to one of
three kinds so callers can decide between retrying, recording the failure,
or handing the item to reconciliation.
"""

from enum import Enum

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from integrations.exceptions import AssetNotFoundError, AssetStoreError


class ErrorKind(str, Enum):
    """Kind of a sync failure."""

    TRANSIENT = "transient"  # Retry may succeed (network, 429, 5xx, locked db)
    PERMANENT = "permanent"  # Retrying will not help (auth, bad input, 4xx)
    DIVERGENT = "divergent"  # Store and catalog disagree; reconcile


class CatalogDivergenceError(Exception):
    """Raised when catalog state contradicts the asset store."""

    pass


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the :class:`ErrorKind` for an exception.

    Args:
        exc: Exception raised by the store client or catalog.

    Returns:
        The classified kind. Unknown exceptions are treated as permanent.
    """
    if isinstance(exc, CatalogDivergenceError):
        return ErrorKind.DIVERGENT
    if isinstance(exc, AssetNotFoundError):
        return ErrorKind.DIVERGENT
    if isinstance(exc, IntegrityError):
        return ErrorKind.DIVERGENT
    if isinstance(exc, AssetStoreError):
        return ErrorKind.TRANSIENT if exc.retriable else ErrorKind.PERMANENT
    if isinstance(exc, (OperationalError, TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, SQLAlchemyError):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT
