"""
Process-local registry of uploads that are currently being ingested.

Admission is a fast-path guard against double submission inside one process.
It gives no guarantee across processes; the unique index on the files table
is what keeps records unique there.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

STALE_AFTER_SECONDS = 5.0
TTL_SECONDS = 10.0

REJECT_IN_PROGRESS = "processing-in-progress"


@dataclass
class InFlightIngestion:
    fingerprint: str
    start_time: float
    owner_id: Optional[int] = None
    original_name: Optional[str] = None
    sweep: Optional[asyncio.TimerHandle] = field(default=None, repr=False)


@dataclass(frozen=True)
class Admission:
    admitted: bool
    reason: Optional[str] = None
    recovered_stale: bool = False

    def __bool__(self) -> bool:
        return self.admitted


class InFlightRegistry:
    def __init__(
        self,
        stale_after: float = STALE_AFTER_SECONDS,
        ttl: float = TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._stale_after = stale_after
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, InFlightIngestion] = {}
        self._lock = threading.Lock()

    def try_admit(
        self,
        fingerprint: str,
        owner_id: Optional[int] = None,
        original_name: Optional[str] = None,
    ) -> Admission:
        now = self._clock()
        with self._lock:
            current = self._entries.get(fingerprint)
            recovered = False
            if current is not None:
                age = now - current.start_time
                if age <= self._stale_after:
                    return Admission(False, REJECT_IN_PROGRESS)
                logger.warning(
                    f"Recovered stale in-flight entry '{fingerprint}' ({age:.1f}s old)"
                )
                self._cancel_sweep(current)
                recovered = True

            entry = InFlightIngestion(fingerprint, now, owner_id, original_name)
            entry.sweep = self._schedule_sweep(fingerprint)
            self._entries[fingerprint] = entry
        return Admission(True, recovered_stale=recovered)

    def release(self, fingerprint: str) -> bool:
        """Idempotent. Returns True if an entry was removed."""
        with self._lock:
            entry = self._entries.pop(fingerprint, None)
            if entry is None:
                return False
            self._cancel_sweep(entry)
            return True

    def get(self, fingerprint: str) -> Optional[InFlightIngestion]:
        with self._lock:
            return self._entries.get(fingerprint)

    def clear(self):
        with self._lock:
            for entry in self._entries.values():
                self._cancel_sweep(entry)
            self._entries.clear()

    def __contains__(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _schedule_sweep(self, fingerprint: str) -> Optional[asyncio.TimerHandle]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop (sync callers); staleness eviction still applies
            return None
        return loop.call_later(self._ttl, self._sweep, fingerprint)

    def _sweep(self, fingerprint: str):
        if self.release(fingerprint):
            logger.warning(f"TTL sweep released in-flight entry '{fingerprint}'")

    @staticmethod
    def _cancel_sweep(entry: InFlightIngestion):
        if entry.sweep is not None:
            entry.sweep.cancel()
            entry.sweep = None
