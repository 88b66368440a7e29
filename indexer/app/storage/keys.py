"""
Object key conventions.

Photo objects are stored as:

    <prefix>/<deviceGroupId>/<hashHex>.<ext>

where hashHex is the lowercase BLAKE3 digest of the object bytes. Because
the key embeds the content hash, any change to the bytes yields a new key.
"""

from __future__ import annotations

import posixpath
import re
from typing import Tuple

from indexer.app.errors import ValidationFailed

PHOTO_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}
SIDECAR_EXTENSION = ".json"
UNKNOWN = "unknown"

_EXTENSION_RE = re.compile(r"\.[^./]+$")


def is_photo_key(key: str) -> bool:
    """True for non-placeholder keys with a recognized image extension."""
    if not key or key.endswith("/"):
        return False
    return key.lower().endswith(PHOTO_EXTENSIONS)


def parse_photo_key(key: str, prefix: str) -> Tuple[str, str]:
    """
    Return (device_group_id, hash_hex) for a key under `prefix`.

    Missing components come back as "unknown".
    """
    rest = key[len(prefix):] if prefix and key.startswith(prefix) else key
    parts = rest.split("/")

    device_group_id = parts[0] or UNKNOWN
    filename = "/".join(parts[1:])
    hash_hex = filename.split(".")[0] if filename else ""

    return device_group_id, (hash_hex.lower() or UNKNOWN)


def extension_for_content_type(content_type: str) -> str:
    """
    File extension for a photo content type. Parameters such as
    "; charset=..." are ignored. Raises ValidationFailed for non-photo types.
    """
    media_type = content_type.split(";", 1)[0].strip().lower()
    try:
        return CONTENT_TYPE_EXTENSIONS[media_type]
    except KeyError:
        raise ValidationFailed(f"unsupported photo content type: {content_type!r}") from None


def sidecar_key(key: str) -> str:
    """Replace the object's extension with .json."""
    return _EXTENSION_RE.sub("", key) + SIDECAR_EXTENSION


def build_photo_key(
    device_group_id: str,
    hash_hex: str,
    *,
    extension: str = "jpg",
    base_prefix: str = "photos/",
) -> str:
    prefix = base_prefix.strip().strip("/")
    name = f"{device_group_id}/{hash_hex.lower()}.{extension.lstrip('.')}"
    return posixpath.join(prefix, name) if prefix else name


def build_storage_uri(bucket: str, key: str) -> str:
    return f"s3://{bucket}/{key.lstrip('/')}"


def cdn_url(cdn_domain: str, key: str) -> str:
    path = key if key.startswith("/") else "/" + key
    return f"https://{cdn_domain}{path}"
