"""
Content hashing primitives.

Photo objects are named by the BLAKE3 digest of their bytes, and the same
32-byte digest is what the ledger record commits to.

IMPORTANT DESIGN RULE:
- This module hashes bytes, and bytes only.
- No decoding, re-encoding, or image normalization occurs here.
"""

from typing import Union

import blake3


def content_hash(data: Union[bytes, bytearray, memoryview]) -> bytes:
    """
    Compute the 32-byte BLAKE3 content hash of a full byte sequence.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(
            "content_hash expects bytes, "
            f"got {type(data).__name__}"
        )
    return blake3.blake3(bytes(data)).digest()


def content_hash_hex(data: Union[bytes, bytearray, memoryview]) -> str:
    """Lowercase hex form of content_hash, as used in object keys."""
    return content_hash(data).hex()
