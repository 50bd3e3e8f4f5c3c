"""Runtime entrypoints for the escrow state machine.

`EscrowRuntime` plays the part of the hosting environment: it owns the
persisted records and the ledger, serializes invocations, takes one clock
reading per call, and applies each transition as a two-phase commit.

Failed-call semantics:
- Guard failure (role, state, window, arguments, lock): nothing changes.
- Transfer failure, including a receive hook that raises: the staged record
  is discarded, the lock flag is restored and no audit record is emitted, so
  the instance is byte-for-byte what it was before the call.
"""

from __future__ import annotations

import logging
from typing import Optional

from . import escrow as machine
from .audit import AuditLog, AuditSink
from .custody import deposit, payout
from .errors import ErrorCode, EscrowError
from .guards import FUND_MOVING
from .host import Clock, Ledger, ManualClock
from .types import Call, EscrowDetails, EscrowRecord, Operation, WorldState

logger = logging.getLogger(__name__)


class TransitionResult:
    """Thin wrapper for invoke results."""

    def __init__(self, ok: bool, error: Optional[EscrowError] = None):
        self.ok = ok
        self.error = error

    @classmethod
    def success(cls) -> "TransitionResult":
        return cls(True, None)

    @classmethod
    def failure(cls, error: EscrowError) -> "TransitionResult":
        return cls(False, error)

    def __repr__(self) -> str:
        if self.ok:
            return "TransitionResult(ok)"
        return f"TransitionResult({self.error})"


class EscrowRuntime:
    """Serial, atomically-invoked host for any number of escrow instances."""

    def __init__(
        self,
        state: Optional[WorldState] = None,
        clock: Optional[Clock] = None,
        sink: Optional[AuditSink] = None,
    ):
        self.state = state if state is not None else WorldState()
        self.clock = clock if clock is not None else ManualClock()
        self.sink = sink if sink is not None else AuditLog()
        self.ledger = Ledger(self.state)
        self._nonce = 0

    # --- lifecycle ---

    def create_escrow(self, client: bytes, freelancer: bytes, arbiter: bytes) -> bytes:
        now, height = self._tick()
        escrow_id = machine.derive_escrow_id(client, freelancer, arbiter, self._nonce)
        transition = machine.create(escrow_id, client, freelancer, arbiter, now, height)
        if escrow_id in self.state.escrows:
            raise EscrowError(ErrorCode.INTERNAL_ERROR, "escrow id collision")
        self._nonce += 1
        self.state.escrows[escrow_id] = transition.record
        self._emit(transition.events)
        logger.info("escrow %s created", escrow_id.hex())
        return escrow_id

    def invoke(self, call: Call) -> TransitionResult:
        try:
            self._invoke(call)
        except EscrowError as exc:
            logger.debug("%s on %s rejected: %s", call.operation.value, call.escrow_id.hex(), exc)
            return TransitionResult.failure(exc)
        return TransitionResult.success()

    def _invoke(self, call: Call) -> None:
        stored = self._get(call.escrow_id)
        now, height = self._tick()

        machine.verify(stored, call, now)
        transition = machine.apply(stored, call, now, height)

        if call.operation == Operation.DEPOSIT_FUNDS:
            deposit(self.ledger.transfer, stored, call.caller, call.value)
        elif call.operation in FUND_MOVING:
            send = self._sender(stored.escrow_id)
            payout(send, stored, transition.payout)

        # Commit.
        self.state.escrows[stored.escrow_id] = transition.record
        self._emit(transition.events)
        logger.info(
            "escrow %s %s: %s -> %s",
            stored.escrow_id.hex(),
            call.operation.value,
            stored.state.name,
            transition.record.state.name,
        )

    def _sender(self, escrow_id: bytes):
        def send(destination: bytes, amount: int) -> bool:
            return self.ledger.transfer(escrow_id, destination, amount)

        return send

    def _tick(self) -> tuple[int, int]:
        now = self.clock.now()
        height = self.clock.height()
        self.state.global_state.timestamp = now
        self.state.global_state.block_height = height
        return now, height

    def _emit(self, events) -> None:
        for event in events:
            self.sink.emit(event)

    def _get(self, escrow_id: bytes) -> EscrowRecord:
        record = self.state.escrows.get(escrow_id)
        if record is None:
            raise EscrowError(ErrorCode.ESCROW_NOT_FOUND, "escrow not found")
        return record

    # --- operations ---

    def _call(self, caller: bytes, op: Operation, escrow_id: bytes, value: int = 0, reason: str = "") -> None:
        result = self.invoke(Call(caller=caller, operation=op, escrow_id=escrow_id, value=value, reason=reason))
        if not result.ok:
            raise result.error

    def deposit_funds(self, caller: bytes, escrow_id: bytes, value: int) -> None:
        self._call(caller, Operation.DEPOSIT_FUNDS, escrow_id, value=value)

    def complete_work(self, caller: bytes, escrow_id: bytes) -> None:
        self._call(caller, Operation.COMPLETE_WORK, escrow_id)

    def approve_and_pay(self, caller: bytes, escrow_id: bytes) -> None:
        self._call(caller, Operation.APPROVE_AND_PAY, escrow_id)

    def auto_release_payment(self, caller: bytes, escrow_id: bytes) -> None:
        self._call(caller, Operation.AUTO_RELEASE_PAYMENT, escrow_id)

    def raise_dispute(self, caller: bytes, escrow_id: bytes, reason: str) -> None:
        self._call(caller, Operation.RAISE_DISPUTE, escrow_id, reason=reason)

    def resolve_dispute_for_freelancer(self, caller: bytes, escrow_id: bytes) -> None:
        self._call(caller, Operation.RESOLVE_DISPUTE_FOR_FREELANCER, escrow_id)

    def resolve_dispute_for_client(self, caller: bytes, escrow_id: bytes) -> None:
        self._call(caller, Operation.RESOLVE_DISPUTE_FOR_CLIENT, escrow_id)

    def request_refund(self, caller: bytes, escrow_id: bytes, reason: str = "") -> None:
        self._call(caller, Operation.REQUEST_REFUND, escrow_id, reason=reason)

    # --- queries ---

    def get_escrow(self, escrow_id: bytes) -> EscrowRecord:
        return self._get(escrow_id)

    def get_escrow_details(self, escrow_id: bytes) -> EscrowDetails:
        record = self._get(escrow_id)
        return machine.details(record, self.ledger.balance_of(escrow_id))

    def is_dispute_window_open(self, escrow_id: bytes) -> bool:
        return machine.is_dispute_window_open(self._get(escrow_id), self.clock.now())

    def time_until_auto_release(self, escrow_id: bytes) -> int:
        return machine.time_until_auto_release(self._get(escrow_id), self.clock.now())
