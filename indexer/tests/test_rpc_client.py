import json

import httpx
import pytest

from indexer.app.errors import FetchFailed, ScanUnavailable
from indexer.app.ledger.rpc_client import (
    LedgerTransaction,
    RpcError,
    SolanaRpcClient,
    parse_transaction,
)
from indexer.tests.fixtures.ledger_factory import (
    PROGRAM_ID,
    get_transaction_result,
    photo_hash,
    signed_create_photo_transaction,
)

pytestmark = pytest.mark.anyio

RPC_URL = "https://rpc.test"


def make_client(handler) -> SolanaRpcClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SolanaRpcClient(http_client, RPC_URL, timeout=1.0)


# ------------------------------------------------------------------
# getSignaturesForAddress
# ------------------------------------------------------------------

async def test_signature_listing_sends_cursor_and_limit():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(
            200,
            json={
                "jsonrpc": "2.0",
                "id": body["id"],
                "result": [
                    {"signature": "sigA", "err": None},
                    {"signature": "sigB", "err": {"InstructionError": [0, "Custom"]}},
                ],
            },
        )

    client = make_client(handler)
    rows = await client.get_signatures_for_address(PROGRAM_ID, limit=50, before="sig0")

    assert [r.signature for r in rows] == ["sigA", "sigB"]
    assert [r.failed for r in rows] == [False, True]

    body = seen[0]
    assert body["method"] == "getSignaturesForAddress"
    assert body["params"][0] == PROGRAM_ID
    assert body["params"][1]["limit"] == 50
    assert body["params"][1]["before"] == "sig0"


async def test_signature_listing_omits_cursor_on_first_page():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": []})

    await make_client(handler).get_signatures_for_address(PROGRAM_ID, limit=10)

    assert "before" not in seen[0]["params"][1]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32005}}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=[{"jsonrpc": "2.0", "id": 1, "result": []}]),
        httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"signature": "x"}}),
        httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": ["sigA"]}),
    ],
)
async def test_signature_listing_failure_is_scan_unavailable(response):
    client = make_client(lambda request: response)

    with pytest.raises(ScanUnavailable):
        await client.get_signatures_for_address(PROGRAM_ID, limit=10)


async def test_signature_listing_transport_error_is_scan_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ScanUnavailable):
        await make_client(handler).get_signatures_for_address(PROGRAM_ID, limit=10)


# ------------------------------------------------------------------
# getTransaction batches
# ------------------------------------------------------------------

async def test_batch_slots_are_aligned_with_signatures():
    signature, raw, payer = signed_create_photo_transaction(hash32=photo_hash("rpc"))

    def handler(request: httpx.Request) -> httpx.Response:
        batch = json.loads(request.content)
        assert [item["params"][0] for item in batch] == [signature, "missing", "broken"]
        assert batch[0]["params"][1]["encoding"] == "base64"
        assert batch[0]["params"][1]["maxSupportedTransactionVersion"] == 0

        # Deliberately out of order
        return httpx.Response(
            200,
            json=[
                {"jsonrpc": "2.0", "id": 2, "error": {"code": -32600, "message": "bad"}},
                {"jsonrpc": "2.0", "id": 1, "result": None},
                {"jsonrpc": "2.0", "id": 0, "result": get_transaction_result(raw)},
            ],
        )

    slots = await make_client(handler).get_transactions([signature, "missing", "broken"])

    assert isinstance(slots[0], LedgerTransaction)
    assert slots[0].signature == signature
    assert slots[0].account_keys[0] == payer
    assert PROGRAM_ID in slots[0].account_keys
    assert slots[1] is None
    assert isinstance(slots[2], RpcError)


async def test_batch_transport_failure_fails_every_slot():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    slots = await make_client(handler).get_transactions(["a", "b"])

    assert len(slots) == 2
    assert all(isinstance(slot, FetchFailed) for slot in slots)


async def test_empty_batch_makes_no_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert await make_client(handler).get_transactions([]) == []


async def test_unparseable_transaction_is_fetch_failed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[{"jsonrpc": "2.0", "id": 0, "result": {"transaction": ["AAAA", "base64"]}}],
        )

    slots = await make_client(handler).get_transactions(["x"])

    assert isinstance(slots[0], FetchFailed)


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------

def test_parse_transaction_marks_failed_meta():
    signature, raw, _ = signed_create_photo_transaction(hash32=photo_hash("failed"))

    tx = parse_transaction(signature, get_transaction_result(raw, err={"InstructionError": [0, "x"]}))

    assert tx.failed is True


def test_parse_transaction_requires_base64_encoding():
    with pytest.raises(ValueError):
        parse_transaction("sig", {"transaction": {"message": {}}})
