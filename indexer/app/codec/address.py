"""
Deterministic record address derivation and write-path instruction assembly.

A photo record lives at a program-derived address computed from:

    [b"photo", payer public key, hash32, timestamp UTF-8 bytes]

The derivation is pure: identical inputs always yield the identical
(address, bump) pair, with no randomness and no network access. The write
path uses it to compute the expected record address before submission and
to check for an existing record there; that duplicate check lives with the
caller.
"""

from __future__ import annotations

from typing import Tuple, Union

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from indexer.app.codec.instruction import HASH_LEN, encode_create_photo
from indexer.app.errors import ValidationFailed


RECORD_SEED = b"photo"
MAX_SEED_LEN = 32

PubkeyLike = Union[str, Pubkey]


def _as_pubkey(value: PubkeyLike, field: str) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    try:
        return Pubkey.from_string(value)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed(f"{field} is not a valid public key: {value!r}") from exc


def record_seeds(payer: Pubkey, hash32: bytes, timestamp: str) -> list[bytes]:
    if len(hash32) != HASH_LEN:
        raise ValidationFailed(f"hash32 must be exactly {HASH_LEN} bytes")

    timestamp_bytes = timestamp.encode("utf-8")
    if len(timestamp_bytes) > MAX_SEED_LEN:
        raise ValidationFailed(
            f"timestamp is {len(timestamp_bytes)} bytes; "
            f"address seeds are limited to {MAX_SEED_LEN} bytes"
        )

    return [RECORD_SEED, bytes(payer), bytes(hash32), timestamp_bytes]


def derive_photo_address(
    program_id: PubkeyLike,
    payer_address: PubkeyLike,
    hash32: bytes,
    timestamp: str,
) -> Tuple[str, int]:
    """
    Compute the record address and its bump seed.

    Returns the base58 address string and the bump.
    """
    program = _as_pubkey(program_id, "program_id")
    payer = _as_pubkey(payer_address, "payer_address")

    address, bump = Pubkey.find_program_address(
        record_seeds(payer, hash32, timestamp),
        program,
    )
    return str(address), bump


def build_create_photo_instruction(
    *,
    program_id: PubkeyLike,
    payer_address: PubkeyLike,
    hash32: bytes,
    storage_uri: str,
    location: str,
    timestamp: str,
) -> Tuple[Instruction, str]:
    """
    Assemble the "create photo record" instruction for the write path.

    Accounts, in program order:
        0. payer          signer, writable
        1. record address writable
        2. system program
    """
    program = _as_pubkey(program_id, "program_id")
    payer = _as_pubkey(payer_address, "payer_address")

    data = encode_create_photo(hash32, storage_uri, location, timestamp)
    address, _ = derive_photo_address(program, payer, hash32, timestamp)

    instruction = Instruction(
        program,
        data,
        [
            AccountMeta(payer, True, True),
            AccountMeta(Pubkey.from_string(address), False, True),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )
    return instruction, address
