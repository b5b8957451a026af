"""Per-identifier request throttle with a cooldown penalty.

Each identifier owns a short rolling window. Exceeding ``max_requests`` inside
the window blocks the identifier for ``block_ms``; while blocked every call is
rejected without touching the window counters and without extending the
block.

Records that have gone idle are swept periodically so the table cannot grow
without bound for an ever-growing set of identifiers.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .. import constants
from ..errors import MissingIdentifier, RateLimited

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(slots=True)
class RateRecord:
    """Throttle state for a single identifier."""

    request_count: int
    window_start: float
    last_seen: float
    blocked_until: Optional[float] = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and now < self.blocked_until


@dataclass(frozen=True, slots=True)
class RateDecision:
    allowed: bool
    retry_after_ms: int = 0

    def __bool__(self) -> bool:
        return self.allowed


class RateGate:
    """Windowed throttle keyed by an opaque caller identifier.

    Usage:
        gate = RateGate()

        decision = gate.check(uid)
        if not decision:
            return too_many_requests(decision.retry_after_ms)

    ``check`` never awaits, so on a single event loop each call is atomic. The
    internal lock additionally protects callers on other threads (for example
    the stdin reader thread).
    """

    def __init__(
        self,
        *,
        window_ms: int = constants.DEFAULT_RATE_WINDOW_MS,
        max_requests: int = constants.DEFAULT_RATE_MAX_REQUESTS,
        block_ms: int = constants.DEFAULT_RATE_BLOCK_MS,
        max_entries: int = constants.DEFAULT_RATE_MAX_ENTRIES,
        idle_ms: int = constants.DEFAULT_RATE_IDLE_MS,
        cleanup_interval: int = constants.DEFAULT_RATE_CLEANUP_INTERVAL,
        clock: Optional[Clock] = None,
    ) -> None:
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.block_ms = block_ms
        self.max_entries = max_entries
        self.idle_ms = idle_ms
        self.cleanup_interval = cleanup_interval
        self._clock: Clock = clock or _monotonic_ms
        self._records: Dict[str, RateRecord] = {}
        self._lock = threading.Lock()
        self._operation_count = 0

    def check(self, identifier: Optional[str]) -> RateDecision:
        """Register a call for ``identifier`` and decide whether it may proceed."""

        if not identifier:
            raise MissingIdentifier("Identifier is required")

        with self._lock:
            now = self._clock()
            self._maybe_cleanup(now)

            record = self._records.get(identifier)
            if record is not None and record.is_blocked(now):
                record.last_seen = now
                assert record.blocked_until is not None
                return RateDecision(
                    allowed=False, retry_after_ms=int(record.blocked_until - now)
                )

            if record is None or record.blocked_until is not None:
                # First call, or the first call after a block has lapsed.
                record = RateRecord(request_count=0, window_start=now, last_seen=now)
                self._records[identifier] = record

            if now - record.window_start >= self.window_ms:
                record.request_count = 1
                record.window_start = now
            else:
                record.request_count += 1
            record.last_seen = now

            if record.request_count > self.max_requests:
                record.blocked_until = now + self.block_ms
                LOGGER.warning(
                    "Rate limit exceeded for %s (%d requests in %dms); blocked for %dms",
                    identifier,
                    record.request_count,
                    self.window_ms,
                    self.block_ms,
                )
                return RateDecision(allowed=False, retry_after_ms=self.block_ms)

            return RateDecision(allowed=True)

    def enforce(self, identifier: Optional[str]) -> None:
        """Like :meth:`check` but raise :class:`RateLimited` on rejection."""

        decision = self.check(identifier)
        if not decision:
            raise RateLimited(decision.retry_after_ms, constants.RATE_LIMITED_MESSAGE)

    def get_record(self, identifier: str) -> Optional[RateRecord]:
        with self._lock:
            return self._records.get(identifier)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._operation_count = 0

    @property
    def entry_count(self) -> int:
        return len(self._records)

    def _maybe_cleanup(self, now: float) -> None:
        self._operation_count += 1

        if (
            self._operation_count % self.cleanup_interval != 0
            and len(self._records) < self.max_entries
        ):
            return

        self._cleanup(now)

    def _cleanup(self, now: float) -> None:
        stale = [
            key
            for key, record in self._records.items()
            if not record.is_blocked(now) and now - record.last_seen > self.idle_ms
        ]
        for key in stale:
            del self._records[key]

        if stale:
            LOGGER.debug("Evicted %d idle rate-limit records", len(stale))

        if len(self._records) < self.max_entries:
            return

        # Still full: drop the least recently seen half, unblocked records first.
        ordered = sorted(
            self._records.items(),
            key=lambda item: (item[1].is_blocked(now), item[1].last_seen),
        )
        remove_count = len(ordered) // 2 or 1
        for key, _ in ordered[:remove_count]:
            del self._records[key]
        LOGGER.warning(
            "Forced eviction of %d rate-limit records (max_entries=%d reached)",
            remove_count,
            self.max_entries,
        )
