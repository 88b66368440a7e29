"""
Index coordinator.

Ties one request's worth of work together:

    storage listing ─┐
                     ├─> Reconciler ─> ListResponse / GroupsResponse
    cached ledger ───┘

A ledger outage degrades to "no ledger matches" (every record falls back
to its sidecar). A storage listing failure is the only error that fails
the request.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import anyio

from indexer.app.errors import ScanUnavailable
from indexer.app.ledger.cache import ScanCache
from indexer.app.reconcile.reconciler import AbandonProbe, Reconciler, group_by_device
from indexer.app.schemas.records import (
    GroupsResponse,
    LedgerEntry,
    ListResponse,
    PhotoRecord,
)
from indexer.app.schemas.verification import VerificationResponse
from indexer.app.storage.s3 import PhotoObjectStore
from indexer.app.verify.integrity import IntegrityVerifier

logger = logging.getLogger("indexer.coordinator")


class IndexCoordinator:
    def __init__(
        self,
        *,
        store: PhotoObjectStore,
        cache: ScanCache,
        reconciler: Reconciler,
        verifier: IntegrityVerifier,
    ) -> None:
        self.store = store
        self.cache = cache
        self.reconciler = reconciler
        self.verifier = verifier

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_records(
        self,
        *,
        is_abandoned: Optional[AbandonProbe] = None,
    ) -> ListResponse:
        records = await self._records(is_abandoned)
        return ListResponse(
            items=records,
            bucket=self.store.bucket,
            prefix=self.store.prefix,
        )

    async def groups(
        self,
        *,
        is_abandoned: Optional[AbandonProbe] = None,
    ) -> GroupsResponse:
        records = await self._records(is_abandoned)
        return GroupsResponse(
            groups=group_by_device(records),
            bucket=self.store.bucket,
            prefix=self.store.prefix,
        )

    async def verify(self) -> VerificationResponse:
        records = await self._records(None)
        results = await self.verifier.verify_many(records)
        return VerificationResponse(results=results)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _records(self, is_abandoned: Optional[AbandonProbe]) -> List[PhotoRecord]:
        keys = await anyio.to_thread.run_sync(self.store.list_photo_keys)
        objects = [self.store.describe(key) for key in keys]

        entries = await self._ledger_entries()

        records = await self.reconciler.reconcile(
            objects,
            entries,
            is_abandoned=is_abandoned,
        )
        logger.info(
            "records_reconciled",
            extra={
                "objects": len(objects),
                "ledger_entries": len(entries),
                "ledger_matches": sum(1 for r in records if r.ledger is not None),
            },
        )
        return records

    async def _ledger_entries(self) -> List[LedgerEntry]:
        try:
            return await self.cache.get()
        except ScanUnavailable:
            logger.warning("ledger_unavailable_serving_storage_only", exc_info=True)
            return []
