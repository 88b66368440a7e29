"""
Content integrity verification.

Re-fetches each served object through its access URL and recomputes the
BLAKE3 digest over the full byte sequence.

Outcomes:
- VERIFIED      digest equals the claimed hash
- MISMATCH      digest differs from the claimed hash
- FETCH_FAILED  transport error or non-2xx; never reported as MISMATCH

Definitive outcomes are cached per key for the process lifetime (object
keys are content-addressed, so the bytes behind a key do not change).
FETCH_FAILED is not cached so a later call can retry.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import anyio
import httpx

from indexer.app.schemas.records import PhotoRecord
from indexer.app.schemas.verification import VerificationResult, VerificationStatus
from indexer.app.utils.hashing import content_hash_hex

logger = logging.getLogger("indexer.verifier")


class IntegrityVerifier:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        timeout: float = 10.0,
        max_concurrency: int = 16,
    ) -> None:
        self._client = http_client
        self._timeout = timeout
        self._max_concurrency = max_concurrency
        self._results: Dict[str, VerificationStatus] = {}

    def cached(self, key: str) -> Optional[VerificationStatus]:
        return self._results.get(key)

    async def verify(self, record: PhotoRecord) -> VerificationResult:
        status = self._results.get(record.key)
        if status is not None:
            return VerificationResult(key=record.key, status=status)

        status = await self._check(record)
        if status is not VerificationStatus.FETCH_FAILED:
            self._results[record.key] = status

        return VerificationResult(key=record.key, status=status)

    async def verify_many(
        self,
        records: Sequence[PhotoRecord],
    ) -> List[VerificationResult]:
        """Verify every record concurrently; output order equals input order."""
        results: List[Optional[VerificationResult]] = [None] * len(records)
        limiter = anyio.CapacityLimiter(self._max_concurrency)

        async def run_one(index: int, record: PhotoRecord) -> None:
            async with limiter:
                results[index] = await self.verify(record)

        async with anyio.create_task_group() as tg:
            for index, record in enumerate(records):
                tg.start_soon(run_one, index, record)

        return [result for result in results if result is not None]

    async def _check(self, record: PhotoRecord) -> VerificationStatus:
        if not record.url:
            logger.warning("integrity_url_missing", extra={"key": record.key})
            return VerificationStatus.FETCH_FAILED

        try:
            response = await self._client.get(record.url, timeout=self._timeout)
        except httpx.HTTPError as exc:
            logger.warning(
                "integrity_fetch_failed",
                extra={"key": record.key, "error_type": type(exc).__name__},
            )
            return VerificationStatus.FETCH_FAILED

        if not response.is_success:
            logger.warning(
                "integrity_fetch_failed",
                extra={"key": record.key, "status_code": response.status_code},
            )
            return VerificationStatus.FETCH_FAILED

        actual = content_hash_hex(response.content)
        if actual == record.hash_hex.lower():
            return VerificationStatus.VERIFIED

        logger.warning(
            "integrity_mismatch",
            extra={"key": record.key, "claimed": record.hash_hex, "actual": actual},
        )
        return VerificationStatus.MISMATCH
