"""
Bounded polling of the approval backend.

The owner approves or rejects on a separate device, so a negotiation is
driven to completion by asking the backend for the request's status on a
fixed interval. Every attempt waits first, then fetches: the first check
happens one interval after submission.

The loop takes its fetch, sleep and clock as arguments so tests can drive
it without real time passing.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from .errors import (
    ApiRequestError,
    PollCancelledError,
    PollTimeoutError,
    PollTransportError,
    RejectedError,
    RequestExpiredError,
    TransportError,
)
from .models import NegotiationStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

DEFAULT_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_ATTEMPTS = 60  # ~5 minutes at 5s

# Backend statuses worth another attempt rather than an immediate failure.
_RETRYABLE_STATUS_CODES = {429, 502, 503, 504}


@dataclass(frozen=True)
class PollPolicy:
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self):
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must not be negative")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    value: T
    attempts: int
    elapsed_seconds: float


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, TransportError):
        return True
    return isinstance(exc, ApiRequestError) and exc.status_code in _RETRYABLE_STATUS_CODES


def poll_until_terminal(
    fetch: Callable[[], T],
    status_of: Callable[[T], NegotiationStatus],
    *,
    on_approved: Optional[Callable[[T], U]] = None,
    policy: Optional[PollPolicy] = None,
    sleep: Optional[Callable[[float], object]] = None,
    clock: Callable[[], float] = time.monotonic,
    cancel: Optional[threading.Event] = None,
    request_id: Optional[str] = None,
) -> PollOutcome:
    """
    Poll ``fetch`` until the request leaves ``pending``.

    Returns a ``PollOutcome`` whose value is ``on_approved(response)`` (or the
    raw response) on approval. Raises ``RejectedError``,
    ``RequestExpiredError``, ``PollTimeoutError`` when the attempt budget runs
    out while pending, ``PollTransportError`` when it runs out while the
    backend is unreachable, and ``PollCancelledError`` when ``cancel`` is set.

    Without an injected ``sleep`` the wait happens on ``cancel`` so that
    cancelling wakes the loop immediately.
    """
    policy = policy or PollPolicy()
    if sleep is None:
        sleep = cancel.wait if cancel is not None else time.sleep
    started = clock()
    transport_failures = 0
    last_transport_error: Optional[Exception] = None

    def _check_cancelled(attempt: int) -> None:
        if cancel is not None and cancel.is_set():
            logger.info("Polling cancelled for %s after %d attempts", request_id, attempt)
            raise PollCancelledError("Polling cancelled", request_id=request_id, attempts=attempt)

    for attempt in range(1, policy.max_attempts + 1):
        sleep(policy.interval_seconds)
        _check_cancelled(attempt - 1)

        try:
            response = fetch()
        except Exception as e:
            if not _is_transient(e):
                raise
            transport_failures += 1
            last_transport_error = e
            logger.warning(
                "Status check failed for %s (attempt %d/%d): %s",
                request_id,
                attempt,
                policy.max_attempts,
                e,
            )
            _check_cancelled(attempt)
            continue

        # A result that lands after the caller gave up must not be acted on.
        _check_cancelled(attempt)
        last_transport_error = None

        status = NegotiationStatus(status_of(response))
        if status is NegotiationStatus.APPROVED:
            elapsed = clock() - started
            logger.info("Request %s approved after %d attempts", request_id, attempt)
            value = on_approved(response) if on_approved is not None else response
            return PollOutcome(value=value, attempts=attempt, elapsed_seconds=elapsed)
        if status is NegotiationStatus.REJECTED:
            logger.info("Request %s rejected", request_id)
            raise RejectedError("Request was rejected", request_id=request_id, attempts=attempt)
        if status is NegotiationStatus.EXPIRED:
            logger.info("Request %s expired", request_id)
            raise RequestExpiredError("Request expired", request_id=request_id, attempts=attempt)
        logger.debug("Request %s still pending (attempt %d/%d)", request_id, attempt, policy.max_attempts)

    if last_transport_error is not None:
        raise PollTransportError(
            f"Backend unreachable after {policy.max_attempts} attempts: {last_transport_error}",
            request_id=request_id,
            attempts=policy.max_attempts,
            transport_failures=transport_failures,
        ) from last_transport_error
    message = f"Request still pending after {policy.max_attempts} attempts"
    if transport_failures:
        message += f" ({transport_failures} failed to reach the backend)"
    raise PollTimeoutError(
        message,
        request_id=request_id,
        attempts=policy.max_attempts,
        transport_failures=transport_failures,
    )
