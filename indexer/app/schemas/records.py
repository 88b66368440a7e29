"""
Record schemas.

Defines the decoded ledger entry, the storage-derived object descriptor,
the optional sidecar document, and the enriched PhotoRecord served to
clients.

All models are immutable. JSON field names are camelCase so the served
payload keeps the shape consumed by the gallery front-end; Python
attribute names remain snake_case.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


_RECORD_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
)


# ---------------------------------------------------------------------------
# Ledger side
# ---------------------------------------------------------------------------

class LedgerEntry(BaseModel):
    """
    One decoded "create photo record" instruction.

    Produced by the ledger scanner, deduplicated by signature.
    """

    hash32: bytes = Field(
        ...,
        exclude=True,
        description="Raw 32-byte content hash as written to the ledger",
    )
    hash_hex: str = Field(
        ...,
        description="Lowercase hex encoding of hash32",
    )
    storage_uri: str
    location: str
    timestamp: Optional[str] = None
    payer_address: str
    signature: str
    source_url: str = Field(
        ...,
        description="Explorer URL of the transaction that wrote the record",
    )

    model_config = _RECORD_CONFIG

    @model_validator(mode="before")
    @classmethod
    def derive_hash_hex(cls, data):
        if isinstance(data, dict) and "hash_hex" not in data and "hashHex" not in data:
            raw = data.get("hash32")
            if isinstance(raw, (bytes, bytearray)):
                data = {**data, "hash_hex": bytes(raw).hex()}
        return data

    @field_validator("hash32")
    @classmethod
    def hash32_is_32_bytes(cls, v: bytes) -> bytes:
        if len(v) != 32:
            raise ValueError(f"hash32 must be exactly 32 bytes, got {len(v)}")
        return v

    @model_validator(mode="after")
    def hash_hex_matches(self) -> "LedgerEntry":
        if self.hash_hex != self.hash32.hex():
            raise ValueError("hash_hex does not match hash32")
        return self


# ---------------------------------------------------------------------------
# Storage side
# ---------------------------------------------------------------------------

class StorageObject(BaseModel):
    """
    A listed photo object, described purely from its key.

    Key convention: <prefix>/<deviceGroupId>/<hashHex>.<ext>
    """

    key: str
    device_group_id: str
    hash_hex: str
    access_url: Optional[str] = None

    model_config = _RECORD_CONFIG


def _coordinates(value: Dict[str, Any]) -> Optional[str]:
    lat = value.get("latitude")
    lon = value.get("longitude")
    if isinstance(lat, bool) or isinstance(lon, bool):
        return None
    if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
        return f"{lat},{lon}"
    return None


class SidecarPayload(BaseModel):
    """
    Signed payload written by the capture app.

    Fields are lenient: a value of an unexpected type becomes None rather
    than invalidating the document. The capture app records location as
    {latitude, longitude, accuracy}; it is flattened to "lat,lon".
    """

    timestamp: Optional[str] = None
    location: Optional[str] = None
    owner: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("timestamp", mode="before")
    @classmethod
    def lenient_timestamp(cls, v: Any) -> Optional[str]:
        if isinstance(v, str):
            return v
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return None

    @field_validator("location", mode="before")
    @classmethod
    def flatten_location(cls, v: Any) -> Optional[str]:
        if isinstance(v, str):
            return v
        if isinstance(v, dict):
            return _coordinates(v)
        return None

    @field_validator("owner", mode="before")
    @classmethod
    def lenient_owner(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None


class SidecarDocument(BaseModel):
    """
    Optional proof document stored next to a photo object.

    Best-effort metadata only; ledger values always take precedence.
    """

    payload: SidecarPayload = Field(default_factory=SidecarPayload)
    signature: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("payload", mode="before")
    @classmethod
    def missing_payload(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("signature", mode="before")
    @classmethod
    def lenient_signature(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None


# ---------------------------------------------------------------------------
# Served record
# ---------------------------------------------------------------------------

class PhotoRecord(BaseModel):
    """
    Enriched photo record produced by reconciliation.

    Provenance fields come from the matched ledger entry when one exists,
    otherwise from the sidecar document, otherwise they are absent.
    """

    key: str
    device_group_id: str
    hash_hex: str
    url: Optional[str] = Field(
        default=None,
        description="Resolved object access URL; absent when it could not be resolved",
    )

    storage_uri: Optional[str] = None
    location: Optional[str] = None
    timestamp: Optional[str] = None
    payer_address: Optional[str] = None
    signature: Optional[str] = None

    sidecar_url: Optional[str] = None
    transaction_url: Optional[str] = None
    ledger: Optional[LedgerEntry] = None

    model_config = _RECORD_CONFIG


# ---------------------------------------------------------------------------
# Endpoint payloads
# ---------------------------------------------------------------------------

class ListResponse(BaseModel):
    items: List[PhotoRecord]
    bucket: str
    prefix: str

    model_config = _RECORD_CONFIG


class GroupsResponse(BaseModel):
    groups: Dict[str, List[PhotoRecord]]
    bucket: str
    prefix: str

    model_config = _RECORD_CONFIG
