"""Core types for the trustless escrow state machine.

One escrow instance binds a client, a freelancer and an arbiter to a single
deposited amount. The host side (balances, the store of escrow records and
the current block) is modelled by `WorldState`, in the same shape as a
chain state snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional


class EscrowState(IntEnum):
    # Ordinals match the deployed contract's enum.
    CREATED = 0
    FUNDED = 1
    WORK_DONE = 2
    PAID = 3
    REFUNDED = 4
    DISPUTED = 5

    @property
    def is_terminal(self) -> bool:
        return self in (EscrowState.PAID, EscrowState.REFUNDED)


class Role(Enum):
    CLIENT = "client"
    FREELANCER = "freelancer"
    ARBITER = "arbiter"
    ANYONE = "anyone"


class Operation(Enum):
    CREATE = "create"
    DEPOSIT_FUNDS = "deposit_funds"
    COMPLETE_WORK = "complete_work"
    APPROVE_AND_PAY = "approve_and_pay"
    AUTO_RELEASE_PAYMENT = "auto_release_payment"
    RAISE_DISPUTE = "raise_dispute"
    RESOLVE_DISPUTE_FOR_FREELANCER = "resolve_dispute_for_freelancer"
    RESOLVE_DISPUTE_FOR_CLIENT = "resolve_dispute_for_client"
    REQUEST_REFUND = "request_refund"


class AuditKind(Enum):
    ESCROW_CREATED = "escrow_created"
    FUNDS_DEPOSITED = "funds_deposited"
    WORK_COMPLETED = "work_completed"
    PAYMENT_RELEASED = "payment_released"
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_RESOLVED = "dispute_resolved"
    FUNDS_REFUNDED = "funds_refunded"
    STATE_TRANSITION = "state_transition"


@dataclass
class EscrowRecord:
    """Persisted fields of one escrow instance."""

    escrow_id: bytes
    client: bytes
    freelancer: bytes
    arbiter: bytes
    state: EscrowState = EscrowState.CREATED
    amount: int = 0
    created_at: int = 0
    work_completed_at: int = 0
    # Re-entrancy lock, held only while a payout is in flight.
    locked: bool = False


@dataclass
class Call:
    caller: bytes
    operation: Operation
    escrow_id: bytes
    value: int = 0
    reason: str = ""


@dataclass(frozen=True)
class Payout:
    destination: bytes
    amount: int


@dataclass(frozen=True)
class AuditRecord:
    kind: AuditKind
    escrow_id: bytes
    timestamp: int
    block_height: int = 0
    actor: Optional[bytes] = None
    destination: Optional[bytes] = None
    amount: Optional[int] = None
    old_state: Optional[EscrowState] = None
    new_state: Optional[EscrowState] = None
    reason: Optional[str] = None
    in_favor_of: Optional[Role] = None
    client: Optional[bytes] = None
    freelancer: Optional[bytes] = None
    arbiter: Optional[bytes] = None


@dataclass(frozen=True)
class EscrowDetails:
    escrow_id: bytes
    state: EscrowState
    client: bytes
    freelancer: bytes
    arbiter: bytes
    amount: int
    created_at: int
    work_completed_at: int
    dispute_deadline: int
    balance: int


@dataclass
class AccountState:
    address: bytes
    balance: int = 0


@dataclass
class GlobalState:
    block_height: int = 0
    timestamp: int = 0


@dataclass
class WorldState:
    accounts: dict[bytes, AccountState] = field(default_factory=dict)
    escrows: dict[bytes, EscrowRecord] = field(default_factory=dict)
    global_state: GlobalState = field(default_factory=GlobalState)
