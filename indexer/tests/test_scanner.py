from typing import Dict, List, Optional

import pytest

from indexer.app.codec.instruction import encode_create_photo
from indexer.app.errors import DecodeSkip, FetchFailed, ScanUnavailable
from indexer.app.ledger.rpc_client import CompiledCall, SignatureInfo
from indexer.app.ledger.scanner import LedgerScanner, extract_entry
from indexer.tests.fixtures.ledger_factory import (
    PAYER,
    PROGRAM_ID,
    explorer_url,
    ledger_transaction,
    photo_hash,
)

pytestmark = pytest.mark.anyio


class FakeLedger:
    """In-memory ledger: newest-first signature history plus transactions."""

    def __init__(self, history: List[SignatureInfo], transactions: Dict[str, object]):
        self.history = history
        self.transactions = transactions
        self.page_calls: List[dict] = []
        self.batch_calls: List[List[str]] = []
        self.fail_batches_containing: Optional[str] = None

    async def get_signatures_for_address(self, address, *, limit, before=None):
        self.page_calls.append({"limit": limit, "before": before})
        start = 0
        if before is not None:
            start = next(
                i for i, info in enumerate(self.history) if info.signature == before
            ) + 1
        return self.history[start:start + limit]

    async def get_transactions(self, signatures):
        self.batch_calls.append(list(signatures))
        if self.fail_batches_containing in signatures:
            raise FetchFailed("batch down")
        return [self.transactions.get(signature) for signature in signatures]


def make_scanner(ledger, **kwargs) -> LedgerScanner:
    return LedgerScanner(
        ledger,
        program_id=PROGRAM_ID,
        transaction_url=explorer_url,
        **kwargs,
    )


def history(*signatures: str) -> List[SignatureInfo]:
    return [SignatureInfo(signature=s) for s in signatures]


# ------------------------------------------------------------------
# Pagination
# ------------------------------------------------------------------

async def test_pages_are_sequential_with_cursor():
    sigs = [f"sig{i}" for i in range(25)]
    ledger = FakeLedger(history(*sigs), {})

    await make_scanner(ledger, page_size=10, max_signatures=300).scan()

    assert [c["before"] for c in ledger.page_calls] == [None, "sig9", "sig19", "sig24"]


async def test_signature_limit_caps_collection():
    sigs = [f"sig{i}" for i in range(50)]
    ledger = FakeLedger(history(*sigs), {})

    await make_scanner(ledger, page_size=20, max_signatures=30, batch_size=100).scan()

    assert [c["limit"] for c in ledger.page_calls] == [20, 10]
    assert len(ledger.batch_calls[0]) == 30


async def test_transactions_are_fetched_in_batches():
    sigs = [f"sig{i}" for i in range(23)]
    ledger = FakeLedger(history(*sigs), {})

    await make_scanner(ledger, batch_size=10).scan()

    assert [len(b) for b in ledger.batch_calls] == [10, 10, 3]


async def test_listing_failure_propagates_scan_unavailable():
    class DownLedger(FakeLedger):
        async def get_signatures_for_address(self, address, *, limit, before=None):
            raise ScanUnavailable("rpc down")

    with pytest.raises(ScanUnavailable):
        await make_scanner(DownLedger([], {})).scan()


# ------------------------------------------------------------------
# Decoding and failure isolation
# ------------------------------------------------------------------

async def test_entries_in_discovery_order_with_provenance():
    h1, h2 = photo_hash("one"), photo_hash("two")
    ledger = FakeLedger(
        history("newer", "older"),
        {
            "newer": ledger_transaction("newer", hash32=h1, location="A"),
            "older": ledger_transaction("older", hash32=h2, location="B", timestamp=None),
        },
    )

    entries = await make_scanner(ledger).scan()

    assert [e.signature for e in entries] == ["newer", "older"]
    assert entries[0].hash_hex == h1.hex()
    assert entries[0].payer_address == PAYER
    assert entries[0].source_url == explorer_url("newer")
    assert entries[1].timestamp is None


async def test_missing_and_failed_transactions_are_skipped():
    h = photo_hash("ok")
    ledger = FakeLedger(
        history("gone", "reverted", "ok"),
        {
            "reverted": ledger_transaction("reverted", hash32=photo_hash("r"), failed=True),
            "ok": ledger_transaction("ok", hash32=h),
        },
    )

    entries = await make_scanner(ledger).scan()

    assert [e.signature for e in entries] == ["ok"]


async def test_failed_signature_infos_are_not_fetched():
    ledger = FakeLedger(
        [SignatureInfo("bad", failed=True), SignatureInfo("good")],
        {"good": ledger_transaction("good", hash32=photo_hash("g"))},
    )

    await make_scanner(ledger).scan()

    assert ledger.batch_calls == [["good"]]


async def test_per_transaction_fetch_failure_is_isolated():
    ledger = FakeLedger(
        history("a", "b"),
        {
            "a": FetchFailed("timeout"),
            "b": ledger_transaction("b", hash32=photo_hash("b")),
        },
    )

    entries = await make_scanner(ledger).scan()

    assert [e.signature for e in entries] == ["b"]


async def test_whole_batch_failure_only_drops_that_batch():
    ledger = FakeLedger(
        history("a", "b", "c"),
        {sig: ledger_transaction(sig, hash32=photo_hash(sig)) for sig in "abc"},
    )
    ledger.fail_batches_containing = "a"

    entries = await make_scanner(ledger, batch_size=2).scan()

    assert [e.signature for e in entries] == ["c"]


async def test_undecodable_payload_is_skipped():
    ledger = FakeLedger(
        history("junk", "ok"),
        {
            "junk": ledger_transaction("junk", hash32=photo_hash("j"), data=b"\x00" * 60),
            "ok": ledger_transaction("ok", hash32=photo_hash("ok")),
        },
    )

    entries = await make_scanner(ledger).scan()

    assert [e.signature for e in entries] == ["ok"]


async def test_duplicate_signatures_are_indexed_once():
    ledger = FakeLedger(
        history("a", "a"),
        {"a": ledger_transaction("a", hash32=photo_hash("a"))},
    )

    entries = await make_scanner(ledger, page_size=1, max_signatures=2).scan()

    assert len(entries) == 1


# ------------------------------------------------------------------
# extract_entry
# ------------------------------------------------------------------

def test_first_matching_instruction_wins():
    first = photo_hash("first")
    second_call = CompiledCall(
        program_id_index=3,
        accounts=(0,),
        data=encode_create_photo(photo_hash("second"), "u", "l", "t"),
    )
    tx = ledger_transaction("sig", hash32=first, extra_calls=[second_call])

    entry = extract_entry(tx, program_id=PROGRAM_ID, transaction_url=explorer_url)

    assert entry.hash_hex == first.hex()


def test_transaction_without_program_instruction():
    tx = ledger_transaction("sig", hash32=photo_hash("x"), program_id="Other1111111111111111111111111111111111111")

    result = extract_entry(tx, program_id=PROGRAM_ID, transaction_url=explorer_url)

    assert result == DecodeSkip("no_program_instruction")


def test_payer_falls_back_to_fee_payer_without_accounts():
    tx = ledger_transaction("sig", hash32=photo_hash("x"))
    bare = CompiledCall(program_id_index=3, accounts=(), data=tx.instructions[0].data)
    tx = type(tx)(
        signature=tx.signature,
        account_keys=tx.account_keys,
        instructions=(bare,),
    )

    entry = extract_entry(tx, program_id=PROGRAM_ID, transaction_url=explorer_url)

    assert entry.payer_address == PAYER


def test_invalid_bounds_are_rejected():
    with pytest.raises(ValueError):
        make_scanner(FakeLedger([], {}), page_size=0)
