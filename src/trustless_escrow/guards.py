"""Role, state and time-window guards.

The whole authorization policy lives in three tables so it can be audited
in one place: which role may call an operation, which state the escrow
must be in, and which state it moves to.
"""

from __future__ import annotations

from .config import AUTO_REFUND_WINDOW, DISPUTE_WINDOW, MAX_REASON_LEN, ZERO_ADDRESS
from .errors import ErrorCode, EscrowError
from .types import EscrowRecord, EscrowState, Operation, Role

REQUIRED_ROLE: dict[Operation, Role] = {
    Operation.DEPOSIT_FUNDS: Role.CLIENT,
    Operation.COMPLETE_WORK: Role.FREELANCER,
    Operation.APPROVE_AND_PAY: Role.CLIENT,
    Operation.AUTO_RELEASE_PAYMENT: Role.ANYONE,
    Operation.RAISE_DISPUTE: Role.CLIENT,
    Operation.RESOLVE_DISPUTE_FOR_FREELANCER: Role.ARBITER,
    Operation.RESOLVE_DISPUTE_FOR_CLIENT: Role.ARBITER,
    Operation.REQUEST_REFUND: Role.CLIENT,
}

REQUIRED_STATE: dict[Operation, EscrowState] = {
    Operation.DEPOSIT_FUNDS: EscrowState.CREATED,
    Operation.COMPLETE_WORK: EscrowState.FUNDED,
    Operation.APPROVE_AND_PAY: EscrowState.WORK_DONE,
    Operation.AUTO_RELEASE_PAYMENT: EscrowState.WORK_DONE,
    Operation.RAISE_DISPUTE: EscrowState.WORK_DONE,
    Operation.RESOLVE_DISPUTE_FOR_FREELANCER: EscrowState.DISPUTED,
    Operation.RESOLVE_DISPUTE_FOR_CLIENT: EscrowState.DISPUTED,
    Operation.REQUEST_REFUND: EscrowState.FUNDED,
}

NEXT_STATE: dict[Operation, EscrowState] = {
    Operation.DEPOSIT_FUNDS: EscrowState.FUNDED,
    Operation.COMPLETE_WORK: EscrowState.WORK_DONE,
    Operation.APPROVE_AND_PAY: EscrowState.PAID,
    Operation.AUTO_RELEASE_PAYMENT: EscrowState.PAID,
    Operation.RAISE_DISPUTE: EscrowState.DISPUTED,
    Operation.RESOLVE_DISPUTE_FOR_FREELANCER: EscrowState.PAID,
    Operation.RESOLVE_DISPUTE_FOR_CLIENT: EscrowState.REFUNDED,
    Operation.REQUEST_REFUND: EscrowState.REFUNDED,
}

# Operations that end in a payout out of custody.
FUND_MOVING = frozenset({
    Operation.APPROVE_AND_PAY,
    Operation.AUTO_RELEASE_PAYMENT,
    Operation.RESOLVE_DISPUTE_FOR_FREELANCER,
    Operation.RESOLVE_DISPUTE_FOR_CLIENT,
    Operation.REQUEST_REFUND,
})

CALLABLE_OPERATIONS = tuple(REQUIRED_ROLE)

_ROLE_MESSAGES = {
    Role.CLIENT: "Only client can call this",
    Role.FREELANCER: "Only freelancer can call this",
    Role.ARBITER: "Only arbiter can call this",
}


def roles_of(record: EscrowRecord, caller: bytes) -> frozenset[Role]:
    """All roles held by `caller`; the arbiter may coincide with a party."""
    roles = {Role.ANYONE}
    if caller == record.client:
        roles.add(Role.CLIENT)
    if caller == record.freelancer:
        roles.add(Role.FREELANCER)
    if caller == record.arbiter:
        roles.add(Role.ARBITER)
    return frozenset(roles)


# --- window arithmetic ---


def dispute_deadline(record: EscrowRecord) -> int:
    """First instant at which auto-release is allowed.

    Only meaningful once the record has left `FUNDED`; a timestamp of 0 is a
    valid completion time.
    """
    return record.work_completed_at + DISPUTE_WINDOW


def refund_available_at(record: EscrowRecord) -> int:
    return record.created_at + AUTO_REFUND_WINDOW


def dispute_window_open(record: EscrowRecord, now: int) -> bool:
    # The deadline instant itself belongs to auto-release.
    return record.state == EscrowState.WORK_DONE and now < dispute_deadline(record)


def auto_release_ready(record: EscrowRecord, now: int) -> bool:
    return record.state == EscrowState.WORK_DONE and now >= dispute_deadline(record)


def refund_ready(record: EscrowRecord, now: int) -> bool:
    return now >= refund_available_at(record)


# --- checks ---


def check_unlocked(record: EscrowRecord) -> None:
    if record.locked:
        raise EscrowError(ErrorCode.REENTRANT_CALL, "ReentrancyGuard: reentrant call")


def check_role(record: EscrowRecord, op: Operation, caller: bytes) -> None:
    role = REQUIRED_ROLE[op]
    if role not in roles_of(record, caller):
        raise EscrowError(ErrorCode.UNAUTHORIZED, _ROLE_MESSAGES[role])


def check_state(record: EscrowRecord, op: Operation) -> None:
    if record.state != REQUIRED_STATE[op]:
        raise EscrowError(ErrorCode.ESCROW_WRONG_STATE, "Invalid state for this action")


def check_reason(reason: str) -> None:
    if len(reason) > MAX_REASON_LEN:
        raise EscrowError(ErrorCode.INVALID_PAYLOAD, "reason too long")


def check_window(record: EscrowRecord, op: Operation, now: int) -> None:
    if op == Operation.RAISE_DISPUTE and not dispute_window_open(record, now):
        raise EscrowError(ErrorCode.WINDOW_CLOSED, "Dispute period has ended")
    if op == Operation.AUTO_RELEASE_PAYMENT and not auto_release_ready(record, now):
        raise EscrowError(ErrorCode.WINDOW_NOT_OPEN, "Dispute period not yet ended")
    if op == Operation.REQUEST_REFUND and not refund_ready(record, now):
        raise EscrowError(ErrorCode.WINDOW_NOT_OPEN, "Refund period not yet reached")


def check_identities(client: bytes, freelancer: bytes, arbiter: bytes) -> None:
    for name, addr in (("client", client), ("freelancer", freelancer), ("arbiter", arbiter)):
        if not isinstance(addr, (bytes, bytearray)) or len(addr) != len(ZERO_ADDRESS):
            raise EscrowError(ErrorCode.INVALID_ADDRESS, f"{name} must be {len(ZERO_ADDRESS)} bytes")
        if bytes(addr) == ZERO_ADDRESS:
            raise EscrowError(ErrorCode.INVALID_ADDRESS, f"Invalid {name} address")
    if client == freelancer:
        raise EscrowError(ErrorCode.SELF_OPERATION, "Client and freelancer must differ")
