"""Canonical state digests (v1)."""
from __future__ import annotations

from blake3 import blake3

from .encoding import encode_escrow_record
from .types import EscrowRecord, WorldState


def _u64_be(value: int) -> bytes:
    if value < 0:
        raise ValueError("u64 must be non-negative")
    return int(value).to_bytes(8, "big", signed=False)


def compute_record_digest(record: EscrowRecord) -> str:
    """BLAKE3-256 of the canonical record encoding."""
    return blake3(encode_escrow_record(record)).hexdigest()


def compute_state_digest(state: WorldState) -> str:
    """Digest over every escrow record and account balance.

    Escrows and accounts are each sorted by key so the digest does not
    depend on insertion order.
    """
    buf = bytearray()
    escrows = sorted(state.escrows.items(), key=lambda x: x[0])
    buf += _u64_be(len(escrows))
    for _, record in escrows:
        buf += encode_escrow_record(record)

    accounts = sorted(state.accounts.items(), key=lambda x: x[0])
    buf += _u64_be(len(accounts))
    for addr, acct in accounts:
        buf += addr
        buf += _u64_be(acct.balance)

    return blake3(bytes(buf)).hexdigest()
