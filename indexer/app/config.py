"""
Centralized configuration management for the Indexer service.

Pydantic v2 settings management to enforce strict validation and
fast-failure on invalid configuration. Values are parsed once at startup
and remain immutable for the lifetime of the process.
"""

from functools import lru_cache
from typing import Annotated, Optional

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from solders.pubkey import Pubkey


# -------------------------------------------------------------------------
# Defaults
# -------------------------------------------------------------------------

DEFAULT_PROGRAM_ID = "J8U2PEf8ZaXcG5Q7xPCob92qFA8H8LWj1j3xiuKA6QEt"


def normalize_prefix(prefix: str) -> str:
    """Strip surrounding slashes and re-append exactly one trailing slash."""
    trimmed = prefix.strip().strip("/")
    return f"{trimmed}/" if trimmed else ""


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Fails fast at startup if the program id is not a valid public key or
    any operational bound is out of range.
    """

    # ---------------------------------------------------------------------
    # Object storage
    # ---------------------------------------------------------------------

    s3_bucket: Annotated[
        str,
        Field(default="photoverifier", min_length=3),
    ]

    s3_region: Annotated[
        str,
        Field(default="us-east-1"),
    ]

    s3_prefix: Annotated[
        str,
        Field(
            default="photos/",
            description="Key prefix under which photo objects are listed",
        ),
    ]

    s3_cdn_domain: Annotated[
        Optional[str],
        Field(
            default=None,
            description=(
                "Content-delivery domain. When set, access URLs are built "
                "as https://<domain>/<key> instead of being presigned."
            ),
        ),
    ]

    s3_endpoint_url: Annotated[
        Optional[AnyHttpUrl],
        Field(
            default=None,
            description="S3-compatible endpoint override (MinIO, LocalStack)",
        ),
    ]

    presign_expiry_seconds: Annotated[
        int,
        Field(default=60, ge=1, le=3600),
    ]

    # ---------------------------------------------------------------------
    # Ledger
    # ---------------------------------------------------------------------

    rpc_url: Annotated[
        AnyHttpUrl,
        Field(
            default="https://api.devnet.solana.com",
            description="JSON-RPC endpoint of the ledger cluster",
        ),
    ]

    program_id: Annotated[
        str,
        Field(
            default=DEFAULT_PROGRAM_ID,
            description="Address of the photo provenance program",
        ),
    ]

    cluster: Annotated[
        str,
        Field(default="devnet"),
    ]

    explorer_tx_url_template: Annotated[
        str,
        Field(
            default="https://solscan.io/tx/{signature}?cluster={cluster}",
            description="Transaction reference URL; {signature} and {cluster} are substituted",
        ),
    ]

    # ---------------------------------------------------------------------
    # Scanner and cache bounds
    # ---------------------------------------------------------------------

    scan_max_signatures: Annotated[
        int,
        Field(default=300, ge=1),
    ]

    scan_page_size: Annotated[
        int,
        Field(default=100, ge=1, le=1000),
    ]

    transaction_batch_size: Annotated[
        int,
        Field(default=10, ge=1, le=100),
    ]

    scan_cache_ttl_ms: Annotated[
        int,
        Field(default=5000, ge=0),
    ]

    scan_single_flight: Annotated[
        bool,
        Field(
            default=False,
            description="Let concurrent callers share one in-flight scan",
        ),
    ]

    # ---------------------------------------------------------------------
    # Operational boundaries
    # ---------------------------------------------------------------------

    http_timeout_seconds: Annotated[
        float,
        Field(default=10.0, gt=0, le=120),
    ]

    max_concurrency: Annotated[
        int,
        Field(
            default=16,
            ge=1,
            description="Upper bound on concurrent per-item fetches",
        ),
    ]

    log_level: Annotated[
        str,
        Field(default="INFO"),
    ]

    # ---------------------------------------------------------------------
    # Validators (Pydantic v2)
    # ---------------------------------------------------------------------

    @field_validator("s3_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        return normalize_prefix(v)

    @field_validator("s3_cdn_domain")
    @classmethod
    def validate_cdn_domain(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().rstrip("/")
        if not v:
            return None
        if "://" in v:
            raise ValueError("s3_cdn_domain must be a bare host name, not a URL")
        return v

    @field_validator("program_id")
    @classmethod
    def validate_program_id(cls, v: str) -> str:
        try:
            Pubkey.from_string(v)
        except ValueError as exc:
            raise ValueError(f"Invalid program_id '{v}': {exc}") from exc
        return v

    @field_validator("explorer_tx_url_template")
    @classmethod
    def validate_explorer_template(cls, v: str) -> str:
        if "{signature}" not in v:
            raise ValueError(
                "explorer_tx_url_template must contain a {signature} placeholder"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level = v.upper()
        if level not in allowed:
            raise ValueError(
                f"Unsupported log_level '{v}'. Allowed values: {sorted(allowed)}"
            )
        return level

    # ---------------------------------------------------------------------
    # Derived values
    # ---------------------------------------------------------------------

    def transaction_url(self, signature: str) -> str:
        return self.explorer_tx_url_template.format(
            signature=signature,
            cluster=self.cluster,
        )

    model_config = SettingsConfigDict(
        env_prefix="INDEXER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Process-wide settings, parsed once.

    Tests that change the environment call get_settings.cache_clear().
    """
    return Settings()
