"""
Failure taxonomy for the Indexer.

Only a total inability to reach storage surfaces as a request-level error.
Everything else degrades to a per-item status or an absent value.
"""

from __future__ import annotations

from dataclasses import dataclass


class IndexerError(Exception):
    """Base class for all Indexer errors."""


class FetchFailed(IndexerError):
    """
    A single network or storage call for one item failed.

    Always caught at the item boundary. Never aggregated into a
    whole-request failure.
    """


class ScanUnavailable(IndexerError):
    """
    The ledger signature listing could not be retrieved.

    Callers serve an empty entry list and log the cause.
    """


class ValidationFailed(IndexerError, ValueError):
    """
    A field violates its encode-time constraints.

    Raised before submission; values are never silently truncated.
    """


class UploadFailed(IndexerError):
    """The presign endpoint or the presigned PUT returned a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class DecodeSkip:
    """
    Returned (not raised) when an instruction payload is not a
    well-formed photo record write.

    Non-fatal: the scanner moves on to the next signature.
    """

    reason: str
