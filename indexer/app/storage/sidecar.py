"""
Best-effort sidecar document retrieval.

A sidecar is optional JSON stored next to a photo under the same base name:

    photos/Seek1/<hash>.jpg  ->  photos/Seek1/<hash>.json

Any non-2xx response, transport error, invalid JSON, or unexpected shape is
"no sidecar", never a failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from pydantic import ValidationError

from indexer.app.errors import FetchFailed
from indexer.app.schemas.records import SidecarDocument
from indexer.app.storage.keys import sidecar_key

logger = logging.getLogger("indexer.sidecar")


@dataclass(frozen=True)
class SidecarLookup:
    document: SidecarDocument
    url: str


class PresignedReader(Protocol):
    def presigned_get_url(self, key: str) -> str:
        ...


class SidecarFetcher:
    def __init__(
        self,
        store: PresignedReader,
        http_client: httpx.AsyncClient,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._client = http_client
        self._timeout = timeout

    async def fetch(self, object_key: str) -> Optional[SidecarLookup]:
        key = sidecar_key(object_key)

        try:
            url = self._store.presigned_get_url(key)
            response = await self._client.get(url, timeout=self._timeout)
        except (FetchFailed, httpx.HTTPError) as exc:
            logger.debug(
                "sidecar_unavailable",
                extra={"key": key, "error_type": type(exc).__name__},
            )
            return None

        if not response.is_success:
            return None

        try:
            document = SidecarDocument.model_validate(response.json())
        except (ValueError, ValidationError):
            logger.info("sidecar_malformed", extra={"key": key})
            return None

        return SidecarLookup(document=document, url=url)
