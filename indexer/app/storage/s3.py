"""S3-compatible object store for photo objects and their sidecars."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from indexer.app.errors import FetchFailed
from indexer.app.schemas.records import StorageObject
from indexer.app.storage.keys import cdn_url, is_photo_key, parse_photo_key

logger = logging.getLogger("indexer.storage")


def create_s3_client(
    *,
    region: str,
    endpoint_url: Optional[str] = None,
) -> Any:
    client_kwargs = {
        "service_name": "s3",
        "region_name": region,
        "config": Config(signature_version="s3v4"),
    }
    if endpoint_url:
        client_kwargs["endpoint_url"] = endpoint_url

    return boto3.client(**client_kwargs)


class PhotoObjectStore:
    """
    Read side of the photo bucket.

    Listing is a blocking boto3 call; async callers run it in a worker
    thread. Presigning is a local computation and is safe to call inline.
    """

    def __init__(
        self,
        client: Any,
        *,
        bucket: str,
        prefix: str,
        cdn_domain: Optional[str] = None,
        presign_expiry_seconds: int = 60,
    ) -> None:
        self.client = client
        self.bucket = bucket
        self.prefix = prefix
        self.cdn_domain = cdn_domain
        self.presign_expiry_seconds = presign_expiry_seconds

    def list_photo_keys(self) -> List[str]:
        """
        List every photo key under the configured prefix.

        Directory placeholders and non-image keys are excluded. Errors
        propagate: a listing failure fails the whole request.
        """
        paginator = self.client.get_paginator("list_objects_v2")

        keys: List[str] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
            for obj in page.get("Contents", []):
                key = obj.get("Key", "")
                if is_photo_key(key):
                    keys.append(key)

        logger.info(
            "photo_objects_listed",
            extra={"bucket": self.bucket, "prefix": self.prefix, "count": len(keys)},
        )
        return keys

    def presigned_get_url(self, key: str) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.presign_expiry_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise FetchFailed(f"could not presign {key}: {exc}") from exc

    def access_url(self, key: str) -> str:
        """CDN URL when a CDN domain is configured, otherwise a presigned GET."""
        if self.cdn_domain:
            return cdn_url(self.cdn_domain, key)
        return self.presigned_get_url(key)

    def describe(self, key: str) -> StorageObject:
        """
        Describe one listed object.

        A presign failure leaves the access URL absent; the object is still
        described so it can be reconciled with the ledger.
        """
        device_group_id, hash_hex = parse_photo_key(key, self.prefix)

        try:
            access_url: Optional[str] = self.access_url(key)
        except FetchFailed:
            logger.warning("access_url_unavailable", exc_info=True, extra={"key": key})
            access_url = None

        return StorageObject(
            key=key,
            device_group_id=device_group_id,
            hash_hex=hash_hex,
            access_url=access_url,
        )
