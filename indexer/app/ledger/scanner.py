"""
Ledger scanner.

Walks the provenance program's signature history newest-first, fetches the
transactions in fixed-size batches, and decodes the first instruction that
targets the program in each transaction.

Failure policy:
- signature listing failure  -> ScanUnavailable (whole scan)
- one transaction not found  -> skipped
- one transaction fetch fails -> logged, skipped
- payload does not decode    -> skipped

Pages are strictly sequential: each page's cursor is the last signature of
the page before it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence

from indexer.app.codec.instruction import (
    CreatePhotoArgs,
    DecoderStrategy,
    DEFAULT_STRATEGIES,
    decode_create_photo,
)
from indexer.app.errors import DecodeSkip, FetchFailed
from indexer.app.ledger.rpc_client import (
    LedgerClient,
    LedgerTransaction,
    SignatureInfo,
    TransactionSlot,
)
from indexer.app.schemas.records import LedgerEntry

logger = logging.getLogger("indexer.scanner")


@dataclass
class ScanStats:
    signatures: int = 0
    decoded: int = 0
    not_found: int = 0
    fetch_failed: int = 0
    failed_transactions: int = 0
    no_program_instruction: int = 0
    decode_skipped: int = 0
    duplicates: int = 0


def _chunks(items: Sequence, size: int) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def extract_entry(
    tx: LedgerTransaction,
    *,
    program_id: str,
    transaction_url: Callable[[str], str],
    strategies: Sequence[DecoderStrategy] = DEFAULT_STRATEGIES,
) -> LedgerEntry | DecodeSkip:
    """
    Decode the provenance record carried by one transaction.

    First match wins: when a transaction carries several instructions for
    the program, only the first (in message order) is indexed.
    """
    keys = tx.account_keys

    call = next(
        (
            ix
            for ix in tx.instructions
            if 0 <= ix.program_id_index < len(keys)
            and keys[ix.program_id_index] == program_id
        ),
        None,
    )
    if call is None:
        return DecodeSkip("no_program_instruction")

    decoded = decode_create_photo(call.data, strategies)
    if not isinstance(decoded, CreatePhotoArgs):
        return decoded

    # Payer is the instruction's first account; fall back to the fee payer
    payer_index = call.accounts[0] if call.accounts else 0
    payer = keys[payer_index] if 0 <= payer_index < len(keys) else ""

    return LedgerEntry(
        hash32=decoded.hash32,
        storage_uri=decoded.storage_uri,
        location=decoded.location,
        timestamp=decoded.timestamp,
        payer_address=payer,
        signature=tx.signature,
        source_url=transaction_url(tx.signature),
    )


class LedgerScanner:
    """
    Paginated scanner over the provenance program's history.

    Output order is discovery order (newest signature first), not
    chronological order of the records themselves.
    """

    def __init__(
        self,
        client: LedgerClient,
        *,
        program_id: str,
        transaction_url: Callable[[str], str],
        max_signatures: int = 300,
        page_size: int = 100,
        batch_size: int = 10,
        strategies: Sequence[DecoderStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        if max_signatures < 1 or page_size < 1 or batch_size < 1:
            raise ValueError("scanner bounds must be positive")

        self._client = client
        self._program_id = program_id
        self._transaction_url = transaction_url
        self._max_signatures = max_signatures
        self._page_size = page_size
        self._batch_size = batch_size
        self._strategies = tuple(strategies)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def scan(self) -> List[LedgerEntry]:
        stats = ScanStats()

        signatures = await self._collect_signatures()
        stats.signatures = len(signatures)

        entries: List[LedgerEntry] = []
        seen: set[str] = set()

        pending: List[SignatureInfo] = []
        for info in signatures:
            if info.signature in seen:
                stats.duplicates += 1
                continue
            seen.add(info.signature)
            if info.failed:
                stats.failed_transactions += 1
                continue
            pending.append(info)

        for batch in _chunks(pending, self._batch_size):
            try:
                slots = await self._client.get_transactions(
                    [info.signature for info in batch]
                )
            except FetchFailed as exc:
                slots = [exc] * len(batch)

            for info, slot in zip(batch, slots):
                entry = self._entry_from_slot(info, slot, stats)
                if entry is not None:
                    entries.append(entry)

        logger.info(
            "ledger_scan_complete",
            extra={
                "program_id": self._program_id,
                "signatures": stats.signatures,
                "decoded": stats.decoded,
                "not_found": stats.not_found,
                "fetch_failed": stats.fetch_failed,
                "failed_transactions": stats.failed_transactions,
                "no_program_instruction": stats.no_program_instruction,
                "decode_skipped": stats.decode_skipped,
            },
        )
        return entries

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _collect_signatures(self) -> List[SignatureInfo]:
        collected: List[SignatureInfo] = []
        before: Optional[str] = None

        while len(collected) < self._max_signatures:
            limit = min(self._page_size, self._max_signatures - len(collected))
            page = await self._client.get_signatures_for_address(
                self._program_id,
                limit=limit,
                before=before,
            )
            if not page:
                break

            collected.extend(page)
            before = page[-1].signature

        return collected

    def _entry_from_slot(
        self,
        info: SignatureInfo,
        slot: TransactionSlot,
        stats: ScanStats,
    ) -> Optional[LedgerEntry]:
        if isinstance(slot, FetchFailed):
            stats.fetch_failed += 1
            logger.warning(
                "transaction_fetch_failed",
                extra={
                    "signature": info.signature,
                    "error": str(slot),
                    "error_type": type(slot).__name__,
                },
            )
            return None

        if slot is None:
            stats.not_found += 1
            return None

        if slot.failed:
            stats.failed_transactions += 1
            return None

        result = extract_entry(
            slot,
            program_id=self._program_id,
            transaction_url=self._transaction_url,
            strategies=self._strategies,
        )
        if isinstance(result, DecodeSkip):
            if result.reason == "no_program_instruction":
                stats.no_program_instruction += 1
            else:
                stats.decode_skipped += 1
                logger.debug(
                    "instruction_decode_skipped",
                    extra={"signature": info.signature, "reason": result.reason},
                )
            return None

        stats.decoded += 1
        return result
