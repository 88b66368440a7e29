import logging
import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse

from indexer.app.reconcile.coordinator import IndexCoordinator
from indexer.app.schemas.records import GroupsResponse, ListResponse
from indexer.app.schemas.verification import VerificationResponse

logger = logging.getLogger("indexer.api")

router = APIRouter(tags=["Photo Index"])

# =============================================================================
# Dependency providers
# =============================================================================

def get_correlation_id(
    x_correlation_id: Annotated[
        Optional[str],
        Header(description="Request trace ID"),
    ] = None,
) -> str:
    """Extract or generate a correlation ID for end-to-end traceability."""
    if x_correlation_id and len(x_correlation_id) > 128:
        return str(uuid.uuid4())
    return x_correlation_id or str(uuid.uuid4())


def get_coordinator(request: Request) -> IndexCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise RuntimeError("coordinator not initialized")
    return coordinator


def _serialize(model) -> JSONResponse:
    # Bypasses response-model re-validation; LedgerEntry.hash32 is not serialized
    return JSONResponse(content=model.model_dump(mode="json", by_alias=True))


def _storage_error(exc: Exception, correlation_id: str) -> JSONResponse:
    logger.exception(
        "storage_listing_failed",
        extra={"trace_id": correlation_id},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": str(exc) or type(exc).__name__},
        headers={"X-Correlation-ID": correlation_id},
    )


# =============================================================================
# GET /list
# =============================================================================

@router.get(
    "/list",
    summary="List photo records enriched with ledger provenance",
    response_model=ListResponse,
    responses={500: {"description": "Storage listing failure"}},
)
async def list_photos(
    request: Request,
    coordinator: Annotated[IndexCoordinator, Depends(get_coordinator)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
):
    """
    One record per stored photo, in listing order.

    A ledger outage still returns 200 with storage-only records. Only a
    storage listing failure is reported as an error.
    """
    try:
        return _serialize(
            await coordinator.list_records(is_abandoned=request.is_disconnected)
        )
    except Exception as exc:
        return _storage_error(exc, correlation_id)


# =============================================================================
# GET /groups
# =============================================================================

@router.get(
    "/groups",
    summary="Photo records grouped by device group",
    response_model=GroupsResponse,
    responses={500: {"description": "Storage listing failure"}},
)
async def list_groups(
    request: Request,
    coordinator: Annotated[IndexCoordinator, Depends(get_coordinator)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
):
    try:
        return _serialize(
            await coordinator.groups(is_abandoned=request.is_disconnected)
        )
    except Exception as exc:
        return _storage_error(exc, correlation_id)


# =============================================================================
# GET /verify
# =============================================================================

@router.get(
    "/verify",
    summary="Recompute content hashes of the served photo set",
    response_model=VerificationResponse,
    responses={500: {"description": "Storage listing failure"}},
)
async def verify_photos(
    coordinator: Annotated[IndexCoordinator, Depends(get_coordinator)],
    correlation_id: Annotated[str, Depends(get_correlation_id)],
):
    try:
        return _serialize(await coordinator.verify())
    except Exception as exc:
        return _storage_error(exc, correlation_id)
