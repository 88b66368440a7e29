"""
Reconciliation of storage objects with ledger entries and sidecars.

For each listed object:
    1. fetch the optional sidecar (best-effort)
    2. find the first ledger entry with the same content hash
    3. merge, ledger first

Merge policy (FROZEN):
- ledger match present: timestamp, location, payer and signature all come
  from the ledger entry; the sidecar contributes nothing to them
- no ledger match: those fields come from the sidecar, when present
- neither: fields are absent

Items are independent. One item's failure never blocks or fails its
siblings, and output order always equals listing order.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Sequence

import anyio

from indexer.app.schemas.records import LedgerEntry, PhotoRecord, StorageObject
from indexer.app.storage.keys import UNKNOWN
from indexer.app.storage.sidecar import SidecarLookup

logger = logging.getLogger("indexer.reconciler")

AbandonProbe = Callable[[], Awaitable[bool]]


class SidecarSource(Protocol):
    async def fetch(self, object_key: str) -> Optional[SidecarLookup]:
        ...


def find_ledger_match(
    hash_hex: str,
    entries: Sequence[LedgerEntry],
) -> Optional[LedgerEntry]:
    """First entry with a matching hash. Linear; fine at catalog scale."""
    for entry in entries:
        if entry.hash_hex == hash_hex:
            return entry
    return None


def merge_record(
    obj: StorageObject,
    match: Optional[LedgerEntry],
    sidecar: Optional[SidecarLookup],
) -> PhotoRecord:
    base = {
        "key": obj.key,
        "device_group_id": obj.device_group_id,
        "hash_hex": obj.hash_hex,
        "url": obj.access_url,
        "sidecar_url": sidecar.url if sidecar else None,
    }

    if match is not None:
        return PhotoRecord(
            **base,
            storage_uri=match.storage_uri,
            location=match.location,
            timestamp=match.timestamp,
            payer_address=match.payer_address,
            signature=match.signature,
            transaction_url=match.source_url,
            ledger=match,
        )

    if sidecar is not None:
        document = sidecar.document
        return PhotoRecord(
            **base,
            location=document.payload.location,
            timestamp=document.payload.timestamp,
            payer_address=document.payload.owner,
            signature=document.signature,
        )

    return PhotoRecord(**base)


def group_by_device(records: Iterable[PhotoRecord]) -> Dict[str, List[PhotoRecord]]:
    """Group records by device group id, preserving first-seen order."""
    groups: Dict[str, List[PhotoRecord]] = {}
    for record in records:
        groups.setdefault(record.device_group_id or UNKNOWN, []).append(record)
    return groups


class Reconciler:
    def __init__(
        self,
        sidecars: SidecarSource,
        *,
        max_concurrency: int = 16,
    ) -> None:
        self._sidecars = sidecars
        self._max_concurrency = max_concurrency

    async def reconcile(
        self,
        objects: Sequence[StorageObject],
        entries: Sequence[LedgerEntry],
        *,
        is_abandoned: Optional[AbandonProbe] = None,
    ) -> List[PhotoRecord]:
        """
        Produce one PhotoRecord per object, in listing order.

        When `is_abandoned` reports that the caller has gone away, no new
        sidecar fetches are started; the remaining objects are emitted from
        the ledger alone.
        """
        results: List[Optional[PhotoRecord]] = [None] * len(objects)
        limiter = anyio.CapacityLimiter(self._max_concurrency)

        async def run_one(index: int, obj: StorageObject) -> None:
            async with limiter:
                results[index] = await self._reconcile_one(obj, entries, is_abandoned)

        async with anyio.create_task_group() as tg:
            for index, obj in enumerate(objects):
                tg.start_soon(run_one, index, obj)

        return [record for record in results if record is not None]

    async def _reconcile_one(
        self,
        obj: StorageObject,
        entries: Sequence[LedgerEntry],
        is_abandoned: Optional[AbandonProbe],
    ) -> PhotoRecord:
        match = find_ledger_match(obj.hash_hex, entries)

        sidecar: Optional[SidecarLookup] = None
        if is_abandoned is None or not await is_abandoned():
            try:
                sidecar = await self._sidecars.fetch(obj.key)
            except Exception:
                logger.warning(
                    "sidecar_fetch_error",
                    exc_info=True,
                    extra={"key": obj.key},
                )

        return merge_record(obj, match, sidecar)
