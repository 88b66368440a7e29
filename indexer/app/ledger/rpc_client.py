"""
Async JSON-RPC client for the ledger cluster.

Only the two read calls the scanner needs are implemented:

- getSignaturesForAddress (newest-first, cursor-paginated)
- getTransaction, sent as JSON-RPC batches so a fixed number of
  transactions share one HTTP round trip

Transactions are requested base64-encoded and parsed with solders, then
flattened into plain dataclasses so the scanner does not depend on the
wire representation.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence, Tuple, Union

import httpx
from solders.transaction import VersionedTransaction

from indexer.app.errors import FetchFailed, ScanUnavailable

logger = logging.getLogger("indexer.rpc_client")


class RpcError(FetchFailed):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, error: Any) -> None:
        super().__init__(f"{method} failed: {error}")
        self.method = method
        self.error = error


# ---------------------------------------------------------------------------
# Transport-independent views
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SignatureInfo:
    signature: str
    failed: bool = False


@dataclass(frozen=True)
class CompiledCall:
    """One compiled instruction: indices into the account key table plus data."""

    program_id_index: int
    accounts: Tuple[int, ...]
    data: bytes


@dataclass(frozen=True)
class LedgerTransaction:
    signature: str
    account_keys: Tuple[str, ...]
    instructions: Tuple[CompiledCall, ...]
    failed: bool = False


# A batch slot is the parsed transaction, None when the node does not know
# the signature, or the FetchFailed that explains why the slot is empty.
TransactionSlot = Union[LedgerTransaction, None, FetchFailed]


class LedgerClient(Protocol):
    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int,
        before: Optional[str] = None,
    ) -> List[SignatureInfo]:
        ...

    async def get_transactions(
        self,
        signatures: Sequence[str],
    ) -> List[TransactionSlot]:
        ...


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_transaction(signature: str, result: dict) -> LedgerTransaction:
    """
    Flatten a getTransaction result (base64 encoding) into LedgerTransaction.

    Only static account keys are resolved; instructions whose program id
    sits in an address lookup table cannot match the provenance program.
    """
    encoded = result.get("transaction")
    if not isinstance(encoded, list) or not encoded:
        raise ValueError("transaction is not base64-encoded")

    tx = VersionedTransaction.from_bytes(base64.b64decode(encoded[0]))
    message = tx.message

    account_keys = tuple(str(key) for key in message.account_keys)
    instructions = tuple(
        CompiledCall(
            program_id_index=ix.program_id_index,
            accounts=tuple(ix.accounts),
            data=bytes(ix.data),
        )
        for ix in message.instructions
    )

    meta = result.get("meta") or {}
    return LedgerTransaction(
        signature=signature,
        account_keys=account_keys,
        instructions=instructions,
        failed=meta.get("err") is not None,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class SolanaRpcClient:
    """
    Read-only JSON-RPC client.

    Every call is a single bounded request. There are no retries: a failed
    call degrades to a per-item skip in the scanner.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        rpc_url: str,
        *,
        timeout: float = 10.0,
        commitment: str = "confirmed",
    ) -> None:
        self.client = http_client
        self.rpc_url = str(rpc_url)
        self.timeout = timeout
        self.commitment = commitment

    async def _post(self, body: Any) -> Any:
        response = await self.client.post(
            self.rpc_url,
            json=body,
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _request(request_id: int, method: str, params: list) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int,
        before: Optional[str] = None,
    ) -> List[SignatureInfo]:
        """
        Return up to `limit` signatures newest-first, older than `before`.

        Raises ScanUnavailable when the listing cannot be retrieved.
        """
        options: dict = {"limit": limit, "commitment": self.commitment}
        if before:
            options["before"] = before

        method = "getSignaturesForAddress"
        try:
            payload = await self._post(
                self._request(1, method, [address, options])
            )
            if not isinstance(payload, dict):
                raise RpcError(method, f"unexpected response body: {type(payload).__name__}")
            if "error" in payload:
                raise RpcError(method, payload["error"])
            rows = payload.get("result") or []
            if not isinstance(rows, list):
                raise RpcError(method, f"unexpected result: {type(rows).__name__}")
            return [
                SignatureInfo(
                    signature=row["signature"],
                    failed=row.get("err") is not None,
                )
                for row in rows
            ]
        except (
            httpx.HTTPError,
            FetchFailed,
            ValueError,
            KeyError,
            TypeError,
            AttributeError,
        ) as exc:
            logger.warning(
                "signature_listing_failed",
                extra={
                    "address": address,
                    "before": before,
                    "error_type": type(exc).__name__,
                },
            )
            raise ScanUnavailable(f"{method} failed: {exc}") from exc

    async def get_transactions(
        self,
        signatures: Sequence[str],
    ) -> List[TransactionSlot]:
        """
        Fetch several transactions in one JSON-RPC batch.

        The returned list is aligned with `signatures`. A transport failure
        marks every slot in the batch as failed.
        """
        if not signatures:
            return []

        method = "getTransaction"
        options = {
            "encoding": "base64",
            "commitment": self.commitment,
            "maxSupportedTransactionVersion": 0,
        }
        batch = [
            self._request(index, method, [signature, options])
            for index, signature in enumerate(signatures)
        ]

        try:
            payload = await self._post(batch)
        except (httpx.HTTPError, ValueError) as exc:
            failure = FetchFailed(f"{method} batch failed: {exc}")
            return [failure for _ in signatures]

        if not isinstance(payload, list):
            # Some nodes answer a rejected batch with a single error object
            failure = RpcError(method, payload.get("error") if isinstance(payload, dict) else payload)
            return [failure for _ in signatures]

        by_id = {
            item.get("id"): item
            for item in payload
            if isinstance(item, dict)
        }

        slots: List[TransactionSlot] = []
        for index, signature in enumerate(signatures):
            item = by_id.get(index)
            if item is None:
                slots.append(FetchFailed(f"{method} returned no response for {signature}"))
                continue
            if "error" in item:
                slots.append(RpcError(method, item["error"]))
                continue

            result = item.get("result")
            if result is None:
                slots.append(None)
                continue

            try:
                slots.append(parse_transaction(signature, result))
            except Exception as exc:
                slots.append(
                    FetchFailed(f"unparseable transaction {signature}: {exc}")
                )

        return slots
