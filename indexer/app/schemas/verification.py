"""
Integrity verification schemas.
"""

from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class VerificationStatus(str, Enum):
    """
    Outcome of recomputing an object's content hash.

    A fetch error is always FETCH_FAILED, never MISMATCH.
    """

    VERIFIED = "verified"
    MISMATCH = "mismatch"
    FETCH_FAILED = "fetch-failed"


class VerificationResult(BaseModel):
    key: str
    status: VerificationStatus

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class VerificationResponse(BaseModel):
    results: List[VerificationResult]

    model_config = ConfigDict(frozen=True)
