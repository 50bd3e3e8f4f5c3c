"""Escrow transition rules.

`verify` runs every guard against the stored record without mutating it.
`apply` works on a deep copy and returns the staged record together with the
payout it requires and the audit records it produces; nothing is committed
here. The runtime decides when a staged transition becomes visible.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Optional

from blake3 import blake3

from .config import ADDRESS_SIZE
from .errors import ErrorCode, EscrowError
from .guards import (
    NEXT_STATE,
    REQUIRED_ROLE,
    check_identities,
    check_reason,
    check_role,
    check_state,
    check_unlocked,
    check_window,
    dispute_deadline,
    dispute_window_open,
)
from .types import (
    AuditKind,
    AuditRecord,
    Call,
    EscrowDetails,
    EscrowRecord,
    EscrowState,
    Operation,
    Payout,
    Role,
)


@dataclass
class Transition:
    record: EscrowRecord
    payout: Optional[Payout] = None
    events: list[AuditRecord] = field(default_factory=list)


def derive_escrow_id(client: bytes, freelancer: bytes, arbiter: bytes, nonce: int) -> bytes:
    buf = bytearray()
    buf += client
    buf += freelancer
    buf += arbiter
    buf += nonce.to_bytes(8, "big")
    return blake3(bytes(buf)).digest()[:ADDRESS_SIZE]


# --- CREATE ---


def create(
    escrow_id: bytes,
    client: bytes,
    freelancer: bytes,
    arbiter: bytes,
    now: int,
    height: int = 0,
) -> Transition:
    check_identities(client, freelancer, arbiter)
    record = EscrowRecord(
        escrow_id=escrow_id,
        client=bytes(client),
        freelancer=bytes(freelancer),
        arbiter=bytes(arbiter),
        state=EscrowState.CREATED,
        created_at=now,
    )
    event = AuditRecord(
        kind=AuditKind.ESCROW_CREATED,
        escrow_id=escrow_id,
        timestamp=now,
        block_height=height,
        client=record.client,
        freelancer=record.freelancer,
        arbiter=record.arbiter,
    )
    return Transition(record=record, events=[event])


# --- dispatch ---


def verify(record: EscrowRecord, call: Call, now: int) -> None:
    op = call.operation
    if op not in REQUIRED_ROLE:
        raise EscrowError(ErrorCode.INVALID_PAYLOAD, f"operation {op.value} is not callable")

    check_unlocked(record)
    check_role(record, op, call.caller)
    check_state(record, op)

    if op == Operation.DEPOSIT_FUNDS:
        if call.value <= 0:
            raise EscrowError(ErrorCode.INVALID_AMOUNT, "Must deposit funds")
    elif call.value != 0:
        raise EscrowError(ErrorCode.INVALID_AMOUNT, f"{op.value} does not accept value")

    if op in (Operation.RAISE_DISPUTE, Operation.REQUEST_REFUND):
        check_reason(call.reason)

    check_window(record, op, now)


def apply(record: EscrowRecord, call: Call, now: int, height: int = 0) -> Transition:
    op = call.operation
    staged = deepcopy(record)
    old_state = staged.state
    staged.state = NEXT_STATE[op]

    handler = _HANDLERS[op]
    payout, events = handler(staged, call, now, height)

    events.append(
        AuditRecord(
            kind=AuditKind.STATE_TRANSITION,
            escrow_id=staged.escrow_id,
            timestamp=now,
            block_height=height,
            actor=call.caller,
            old_state=old_state,
            new_state=staged.state,
        )
    )
    return Transition(record=staged, payout=payout, events=events)


def _event(kind: AuditKind, record: EscrowRecord, now: int, height: int, **kwargs) -> AuditRecord:
    return AuditRecord(kind=kind, escrow_id=record.escrow_id, timestamp=now, block_height=height, **kwargs)


# --- DEPOSIT_FUNDS ---


def _apply_deposit(record: EscrowRecord, call: Call, now: int, height: int):
    record.amount = call.value
    return None, [
        _event(
            AuditKind.FUNDS_DEPOSITED, record, now, height, actor=call.caller, amount=call.value
        )
    ]


# --- COMPLETE_WORK ---


def _apply_complete_work(record: EscrowRecord, call: Call, now: int, height: int):
    record.work_completed_at = now
    return None, [_event(AuditKind.WORK_COMPLETED, record, now, height, actor=call.caller)]


# --- APPROVE_AND_PAY / AUTO_RELEASE_PAYMENT ---


def _apply_release(record: EscrowRecord, call: Call, now: int, height: int):
    return Payout(record.freelancer, record.amount), [
        _event(
            AuditKind.PAYMENT_RELEASED,
            record,
            now,
            height,
            actor=call.caller,
            destination=record.freelancer,
            amount=record.amount,
        )
    ]


# --- RAISE_DISPUTE ---


def _apply_raise_dispute(record: EscrowRecord, call: Call, now: int, height: int):
    return None, [
        _event(AuditKind.DISPUTE_RAISED, record, now, height, actor=call.caller, reason=call.reason)
    ]


# --- RESOLVE_DISPUTE_FOR_FREELANCER / RESOLVE_DISPUTE_FOR_CLIENT ---


def _apply_resolve_for_freelancer(record: EscrowRecord, call: Call, now: int, height: int):
    resolved = _event(
        AuditKind.DISPUTE_RESOLVED, record, now, height, actor=call.caller, in_favor_of=Role.FREELANCER
    )
    payout, released = _apply_release(record, call, now, height)
    return payout, [resolved, *released]


def _apply_resolve_for_client(record: EscrowRecord, call: Call, now: int, height: int):
    resolved = _event(
        AuditKind.DISPUTE_RESOLVED, record, now, height, actor=call.caller, in_favor_of=Role.CLIENT
    )
    payout, refunded = _apply_refund(record, call, now, height)
    return payout, [resolved, *refunded]


# --- REQUEST_REFUND ---


def _apply_refund(record: EscrowRecord, call: Call, now: int, height: int):
    return Payout(record.client, record.amount), [
        _event(
            AuditKind.FUNDS_REFUNDED,
            record,
            now,
            height,
            actor=call.caller,
            destination=record.client,
            amount=record.amount,
            reason=call.reason or None,
        )
    ]


_HANDLERS = {
    Operation.DEPOSIT_FUNDS: _apply_deposit,
    Operation.COMPLETE_WORK: _apply_complete_work,
    Operation.APPROVE_AND_PAY: _apply_release,
    Operation.AUTO_RELEASE_PAYMENT: _apply_release,
    Operation.RAISE_DISPUTE: _apply_raise_dispute,
    Operation.RESOLVE_DISPUTE_FOR_FREELANCER: _apply_resolve_for_freelancer,
    Operation.RESOLVE_DISPUTE_FOR_CLIENT: _apply_resolve_for_client,
    Operation.REQUEST_REFUND: _apply_refund,
}


# --- queries ---

# States that can only be reached through complete_work. A refunded record
# may or may not have passed through it, so it reports no deadline.
_WORK_COMPLETED = frozenset({EscrowState.WORK_DONE, EscrowState.DISPUTED, EscrowState.PAID})


def details(record: EscrowRecord, balance: int) -> EscrowDetails:
    return EscrowDetails(
        escrow_id=record.escrow_id,
        state=record.state,
        client=record.client,
        freelancer=record.freelancer,
        arbiter=record.arbiter,
        amount=record.amount,
        created_at=record.created_at,
        work_completed_at=record.work_completed_at,
        dispute_deadline=dispute_deadline(record) if record.state in _WORK_COMPLETED else 0,
        balance=balance,
    )


def is_dispute_window_open(record: EscrowRecord, now: int) -> bool:
    return dispute_window_open(record, now)


def time_until_auto_release(record: EscrowRecord, now: int) -> int:
    if record.state != EscrowState.WORK_DONE:
        return 0
    return max(0, dispute_deadline(record) - now)
