import sys
import logging
import httpx

from contextlib import asynccontextmanager
from importlib.metadata import version, PackageNotFoundError

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from indexer.app.api.routes import router as index_router
from indexer.app.config import Settings, get_settings
from indexer.app.ledger.cache import ScanCache
from indexer.app.ledger.rpc_client import SolanaRpcClient
from indexer.app.ledger.scanner import LedgerScanner
from indexer.app.reconcile.coordinator import IndexCoordinator
from indexer.app.reconcile.reconciler import Reconciler
from indexer.app.storage.s3 import PhotoObjectStore, create_s3_client
from indexer.app.storage.sidecar import SidecarFetcher
from indexer.app.verify.integrity import IntegrityVerifier

logger = logging.getLogger("indexer.main")


def get_app_version() -> str:
    """
    Resolve application version deterministically.

    Falls back to the source version when the package is not installed.
    """
    try:
        return version("photo-provenance-indexer")
    except PackageNotFoundError:
        return "0.1.0"


def build_coordinator(
    settings: Settings,
    http_client: httpx.AsyncClient,
    s3_client,
) -> IndexCoordinator:
    """Wire the scanner, cache, reconciler and verifier for one process."""
    store = PhotoObjectStore(
        s3_client,
        bucket=settings.s3_bucket,
        prefix=settings.s3_prefix,
        cdn_domain=settings.s3_cdn_domain,
        presign_expiry_seconds=settings.presign_expiry_seconds,
    )

    rpc = SolanaRpcClient(
        http_client,
        str(settings.rpc_url),
        timeout=settings.http_timeout_seconds,
    )
    scanner = LedgerScanner(
        rpc,
        program_id=settings.program_id,
        transaction_url=settings.transaction_url,
        max_signatures=settings.scan_max_signatures,
        page_size=settings.scan_page_size,
        batch_size=settings.transaction_batch_size,
    )
    cache = ScanCache(
        scanner,
        ttl_millis=settings.scan_cache_ttl_ms,
        single_flight=settings.scan_single_flight,
    )

    sidecars = SidecarFetcher(
        store,
        http_client,
        timeout=settings.http_timeout_seconds,
    )

    return IndexCoordinator(
        store=store,
        cache=cache,
        reconciler=Reconciler(sidecars, max_concurrency=settings.max_concurrency),
        verifier=IntegrityVerifier(
            http_client,
            timeout=settings.http_timeout_seconds,
            max_concurrency=settings.max_concurrency,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Guarantees:
    - Fail-fast startup if configuration is invalid
    - One shared HTTP transport for ledger, sidecar and integrity fetches
    - One S3 client for listing and presigning
    """
    # ------------------------------------------------------------------
    # Load and validate configuration (FAIL FAST)
    # ------------------------------------------------------------------
    try:
        settings = get_settings()
    except Exception:
        logger.exception("invalid_indexer_configuration")
        raise

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )

    logger.info(
        "indexer_startup_begin",
        extra={
            "service": "indexer",
            "version": get_app_version(),
            "bucket": settings.s3_bucket,
            "program_id": settings.program_id,
        },
    )

    if hasattr(app.state, "settings"):
        raise RuntimeError("settings already initialized")

    app.state.settings = settings

    # ------------------------------------------------------------------
    # Persistent HTTP client
    #
    # Notes:
    # - Per-call timeouts are applied on top of this hard upper bound
    # - Connection limits bound the reconciliation fan-out
    # ------------------------------------------------------------------
    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(
            timeout=settings.http_timeout_seconds,
            connect=5.0,
        ),
        limits=httpx.Limits(
            max_keepalive_connections=settings.max_concurrency,
            max_connections=settings.max_concurrency * 2,
        ),
        headers={
            "User-Agent": f"photo-indexer/{get_app_version()}",
        },
    )

    app.state.s3_client = create_s3_client(
        region=settings.s3_region,
        endpoint_url=str(settings.s3_endpoint_url) if settings.s3_endpoint_url else None,
    )

    app.state.coordinator = build_coordinator(
        settings,
        app.state.http_client,
        app.state.s3_client,
    )

    try:
        yield
    finally:
        logger.info("indexer_shutdown_begin")

        # Idempotent shutdown
        try:
            await app.state.http_client.aclose()
        except Exception:
            logger.warning("http_client_shutdown_failed")


def create_app() -> FastAPI:
    """
    Application factory for the photo provenance indexer.
    """
    app = FastAPI(
        title="Photo Provenance Indexer",
        description=(
            "Joins stored photo objects with their on-chain provenance "
            "records and re-verifies content hashes."
        ),
        version=get_app_version(),
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    # The gallery front-end is served from a different origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(index_router)

    @app.get(
        "/health",
        tags=["Monitoring"],
        summary="Liveness probe",
    )
    async def health_check():
        """
        Verifies that the runtime is alive.

        NOTE:
        - Does NOT call the ledger
        - Does NOT list storage
        """
        return JSONResponse(
            content={
                "status": "ok",
                "service": "indexer",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
            }
        )

    return app


app = create_app()
