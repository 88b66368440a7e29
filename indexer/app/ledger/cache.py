"""
Time-bounded memoization of scanner output.

One shared slot, not per-key: the scanner always scans the same program.
The clock is injected so expiry can be driven deterministically.

Concurrency:
- default: no mutual exclusion. Callers racing through an expired window
  may each run an independent scan; the last writer wins.
- single_flight=True: callers arriving while a scan is in progress await
  that scan's result instead of starting their own.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol

import anyio

from indexer.app.errors import ScanUnavailable
from indexer.app.schemas.records import LedgerEntry

logger = logging.getLogger("indexer.scan_cache")


def monotonic_millis() -> int:
    return time.monotonic_ns() // 1_000_000


class Scanner(Protocol):
    def scan(self) -> Awaitable[List[LedgerEntry]]:
        ...


@dataclass(frozen=True)
class ScanCacheEntry:
    captured_at_millis: int
    entries: tuple[LedgerEntry, ...]


@dataclass
class _Flight:
    """One in-progress shared scan."""

    done: anyio.Event = field(default_factory=anyio.Event)
    entries: List[LedgerEntry] = field(default_factory=list)
    error: Optional[Exception] = None


class ScanCache:
    def __init__(
        self,
        scanner: Scanner,
        *,
        ttl_millis: int = 5000,
        clock: Callable[[], int] = monotonic_millis,
        single_flight: bool = False,
    ) -> None:
        self._scanner = scanner
        self._ttl_millis = ttl_millis
        self._clock = clock
        self._single_flight = single_flight

        self._slot: Optional[ScanCacheEntry] = None
        self._in_flight: Optional[_Flight] = None

    @property
    def slot(self) -> Optional[ScanCacheEntry]:
        return self._slot

    def is_fresh(self) -> bool:
        if self._slot is None:
            return False
        return self._clock() - self._slot.captured_at_millis < self._ttl_millis

    async def get(self) -> List[LedgerEntry]:
        """
        Return cached entries while fresh, otherwise rescan.

        Scanner errors propagate and leave the previous slot untouched.
        """
        if self.is_fresh():
            return list(self._slot.entries)

        if not self._single_flight:
            return await self._refresh()

        flight = self._in_flight
        if flight is not None:
            await flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return list(flight.entries)

        flight = _Flight()
        self._in_flight = flight
        try:
            flight.entries = await self._refresh()
            return list(flight.entries)
        except Exception as exc:
            flight.error = exc
            raise
        except BaseException:
            # Leader cancelled; waiters get an ordinary failure instead
            flight.error = ScanUnavailable("shared scan was cancelled")
            raise
        finally:
            self._in_flight = None
            flight.done.set()

    def invalidate(self) -> None:
        self._slot = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _refresh(self) -> List[LedgerEntry]:
        entries = await self._scanner.scan()
        self._slot = ScanCacheEntry(
            captured_at_millis=self._clock(),
            entries=tuple(entries),
        )
        logger.debug(
            "scan_cache_refreshed",
            extra={"entries": len(entries)},
        )
        return list(entries)
