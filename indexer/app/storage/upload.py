"""
Presigned upload client.

The write half of the catalog: a capture client hashes the photo bytes,
asks the presign collaborator for a one-shot PUT URL, and uploads the raw
bytes under a content-addressed key.

    POST <presign-endpoint>  {"key": ..., "contentType": ...}
        -> {"uploadURL": ..., "key": ...}
    PUT  <uploadURL>         raw bytes, Content-Type header

Any non-2xx from either step is an UploadFailed. No retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from indexer.app.errors import UploadFailed
from indexer.app.storage.keys import (
    build_photo_key,
    build_storage_uri,
    extension_for_content_type,
)
from indexer.app.utils.hashing import content_hash

logger = logging.getLogger("indexer.upload")

DEFAULT_CONTENT_TYPE = "image/jpeg"


class PresignResponse(BaseModel):
    upload_url: str = Field(..., alias="uploadURL")
    key: str

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


@dataclass(frozen=True)
class UploadedPhoto:
    key: str
    storage_uri: str
    hash32: bytes

    @property
    def hash_hex(self) -> str:
        return self.hash32.hex()


async def request_presigned_put(
    client: httpx.AsyncClient,
    endpoint: str,
    key: str,
    content_type: str,
) -> PresignResponse:
    try:
        response = await client.post(
            endpoint,
            json={"key": key, "contentType": content_type},
        )
    except httpx.HTTPError as exc:
        raise UploadFailed(f"presign request failed: {exc}") from exc

    if not response.is_success:
        raise UploadFailed(
            f"presign endpoint returned {response.status_code}",
            status_code=response.status_code,
        )

    try:
        return PresignResponse.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise UploadFailed(f"malformed presign response: {exc}") from exc


async def put_to_presigned_url(
    client: httpx.AsyncClient,
    url: str,
    data: Union[bytes, bytearray],
    content_type: str,
) -> None:
    try:
        response = await client.put(
            url,
            content=bytes(data),
            headers={"Content-Type": content_type},
        )
    except httpx.HTTPError as exc:
        raise UploadFailed(f"upload failed: {exc}") from exc

    if not response.is_success:
        raise UploadFailed(
            f"upload returned {response.status_code}",
            status_code=response.status_code,
        )


async def upload_photo(
    client: httpx.AsyncClient,
    *,
    presign_endpoint: str,
    bucket: str,
    device_group_id: str,
    data: Union[bytes, bytearray],
    content_type: str = DEFAULT_CONTENT_TYPE,
    base_prefix: str = "photos/",
) -> UploadedPhoto:
    """
    Hash, presign and upload one photo.

    Returns the object key, its s3:// URI and the raw content hash, which
    together are what a ledger record for this photo commits to.
    """
    hash32 = content_hash(data)
    key = build_photo_key(
        device_group_id,
        hash32.hex(),
        extension=extension_for_content_type(content_type),
        base_prefix=base_prefix,
    )

    presigned = await request_presigned_put(client, presign_endpoint, key, content_type)
    await put_to_presigned_url(client, presigned.upload_url, data, content_type)

    uploaded = UploadedPhoto(
        key=presigned.key,
        storage_uri=build_storage_uri(bucket, presigned.key),
        hash32=hash32,
    )
    logger.info(
        "photo_uploaded",
        extra={"key": uploaded.key, "bytes": len(data)},
    )
    return uploaded
