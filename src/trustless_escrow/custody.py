"""Fund custody: exactly-once payout under a per-instance re-entrancy lock."""

from __future__ import annotations

import logging
from typing import Callable

from .errors import ErrorCode, EscrowError
from .types import EscrowRecord, Payout

logger = logging.getLogger(__name__)

# Host value transfer primitive: send(destination, amount) -> success.
SendFn = Callable[[bytes, int], bool]
# Ledger transfer: transfer(source, destination, amount) -> success.
TransferFn = Callable[[bytes, bytes, int], bool]


class ReentrancyGuard:
    """Hold the lock flag of a stored escrow record for one transfer.

    The flag lives on the persisted record, so any call that re-enters the
    runtime while the transfer is in flight sees it. It is cleared on every
    exit path, including a raising transfer.
    """

    def __init__(self, record: EscrowRecord):
        self.record = record

    def __enter__(self) -> EscrowRecord:
        if self.record.locked:
            raise EscrowError(ErrorCode.REENTRANT_CALL, "ReentrancyGuard: reentrant call")
        self.record.locked = True
        return self.record

    def __exit__(self, exc_type, exc, tb) -> None:
        self.record.locked = False


def payout(send: SendFn, stored: EscrowRecord, staged: Payout) -> None:
    """Transfer the whole escrowed amount once, or raise.

    `stored` is the live record in the store (the one re-entrant calls
    observe); the caller only commits its staged copy after this returns.
    """
    if staged.amount <= 0 or staged.amount != stored.amount:
        raise EscrowError(ErrorCode.INTERNAL_ERROR, "payout must cover the full escrowed amount")

    with ReentrancyGuard(stored):
        logger.debug(
            "payout %s -> %s amount=%d", stored.escrow_id.hex(), staged.destination.hex(), staged.amount
        )
        ok = send(staged.destination, staged.amount)

    if not ok:
        raise EscrowError(ErrorCode.TRANSFER_FAILED, "Transfer failed")


def deposit(transfer: TransferFn, stored: EscrowRecord, source: bytes, amount: int) -> None:
    """Pull `amount` from `source` into the escrow's custody account.

    Runs under the same lock as a payout: a receive hook on the escrow
    address that calls back into this instance is refused.
    """
    with ReentrancyGuard(stored):
        ok = transfer(source, stored.escrow_id, amount)

    if not ok:
        raise EscrowError(ErrorCode.INSUFFICIENT_BALANCE, "insufficient balance")
