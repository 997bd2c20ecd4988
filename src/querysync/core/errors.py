"""Error taxonomy for querysync.

Only ``Fetcher.fetch`` and ``MutationDispatcher.perform`` (and the handles
built on top of them) raise these. The cache store never raises for an
absent or stale entry; it represents that as entry state instead.
"""

import asyncio
from collections.abc import Iterable
from typing import Any

# Statuses that are worth another attempt even though the server answered.
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429})


class SyncError(Exception):
    """Base class for every error surfaced by the sync layer."""

    retryable: bool = False


class TransportError(SyncError):
    """The transport collaborator failed in an unclassified way."""

    retryable = True


class NetworkError(TransportError):
    """Transport unreachable or timed out."""


class ServerError(TransportError):
    """Non-success response carrying a structured body."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        """Server-side failures are retryable, client-side ones are not.

        Authentication failures (401) in particular are never retried.
        """
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in RETRYABLE_STATUS_CODES


class ValidationError(SyncError):
    """A precondition failed before anything was dispatched."""


class StaleWriteConflict(SyncError):
    """Another mutation committed against the same keys while this one was in flight."""

    def __init__(
        self,
        message: str,
        keys: Iterable[Any] = (),
        result: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.keys = tuple(keys)
        self.result = result


def wrap_transport_error(exc: BaseException) -> SyncError:
    """Normalize an exception raised by a transport collaborator.

    Args:
        exc: The exception raised by the transport.

    Returns:
        ``exc`` itself if it already is a SyncError, otherwise a new
        NetworkError or TransportError describing it. Callers should
        raise the result ``from exc``.
    """
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, OSError)):
        return NetworkError(f"Transport unreachable: {exc!r}")
    return TransportError(f"Transport call failed: {exc!r}")
