"""Escrow lifecycle specs: one case per transition plus the end-to-end flows."""

from __future__ import annotations

import pytest

from trustless_escrow.config import AUTO_REFUND_WINDOW, DISPUTE_WINDOW, ETHER
from trustless_escrow.errors import ErrorCode
from trustless_escrow.host import ManualClock
from trustless_escrow.state_transition import EscrowRuntime
from trustless_escrow.test_accounts import ARBITER, CLIENT, FREELANCER, OTHER
from trustless_escrow.types import AuditKind, Call, EscrowState, Operation

DEPOSIT = 1 * ETHER


def _call(caller: bytes, op: Operation, escrow_id: bytes, value: int = 0, reason: str = "") -> Call:
    return Call(caller=caller, operation=op, escrow_id=escrow_id, value=value, reason=reason)


def _fund(runtime, escrow_id: bytes, amount: int = DEPOSIT) -> None:
    runtime.deposit_funds(CLIENT, escrow_id, amount)


def _work_done(runtime, escrow_id: bytes) -> None:
    _fund(runtime, escrow_id)
    runtime.complete_work(FREELANCER, escrow_id)


def _disputed(runtime, escrow_id: bytes) -> None:
    _work_done(runtime, escrow_id)
    runtime.raise_dispute(CLIENT, escrow_id, "Poor quality work")


# --- create ---


def test_create_starts_in_created_state(runtime, escrow_id) -> None:
    details = runtime.get_escrow_details(escrow_id)
    assert details.state == EscrowState.CREATED
    assert (details.client, details.freelancer, details.arbiter) == (CLIENT, FREELANCER, ARBITER)
    assert details.amount == 0
    assert details.created_at == runtime.clock.now()
    assert details.work_completed_at == 0
    assert details.dispute_deadline == 0


def test_create_assigns_distinct_ids(runtime) -> None:
    a = runtime.create_escrow(CLIENT, FREELANCER, ARBITER)
    b = runtime.create_escrow(CLIENT, FREELANCER, ARBITER)
    assert a != b
    assert len(a) == 20


def test_create_allows_arbiter_equal_to_client(runtime) -> None:
    eid = runtime.create_escrow(CLIENT, FREELANCER, CLIENT)
    assert runtime.get_escrow(eid).arbiter == CLIENT


# --- deposit_funds ---


def test_deposit_funds_success(runtime, escrow_id, escrow_case) -> None:
    before = runtime.ledger.balance_of(CLIENT)
    result = escrow_case(
        "escrow/deposit_funds.json",
        "deposit_funds_success",
        runtime,
        _call(CLIENT, Operation.DEPOSIT_FUNDS, escrow_id, value=DEPOSIT),
    )
    assert result.ok
    record = runtime.get_escrow(escrow_id)
    assert record.state == EscrowState.FUNDED
    assert record.amount == DEPOSIT
    assert runtime.ledger.balance_of(escrow_id) == DEPOSIT
    assert runtime.ledger.balance_of(CLIENT) == before - DEPOSIT


def test_deposit_funds_zero_value(runtime, escrow_id, escrow_case) -> None:
    result = escrow_case(
        "escrow/deposit_funds.json",
        "deposit_funds_zero_value",
        runtime,
        _call(CLIENT, Operation.DEPOSIT_FUNDS, escrow_id, value=0),
    )
    assert result.error.code == ErrorCode.INVALID_AMOUNT
    assert runtime.get_escrow(escrow_id).state == EscrowState.CREATED


def test_deposit_funds_insufficient_balance(runtime, escrow_id, escrow_case) -> None:
    too_much = runtime.ledger.balance_of(CLIENT) + 1
    result = escrow_case(
        "escrow/deposit_funds.json",
        "deposit_funds_insufficient_balance",
        runtime,
        _call(CLIENT, Operation.DEPOSIT_FUNDS, escrow_id, value=too_much),
    )
    assert result.error.code == ErrorCode.INSUFFICIENT_BALANCE
    record = runtime.get_escrow(escrow_id)
    assert record.state == EscrowState.CREATED
    assert record.amount == 0


def test_deposit_funds_by_freelancer(runtime, escrow_id, escrow_case) -> None:
    result = escrow_case(
        "escrow/deposit_funds.json",
        "deposit_funds_by_freelancer",
        runtime,
        _call(FREELANCER, Operation.DEPOSIT_FUNDS, escrow_id, value=DEPOSIT),
    )
    assert result.error.code == ErrorCode.UNAUTHORIZED
    assert result.error.message == "Only client can call this"


def test_deposit_funds_twice(runtime, escrow_id, escrow_case) -> None:
    _fund(runtime, escrow_id)
    result = escrow_case(
        "escrow/deposit_funds.json",
        "deposit_funds_twice",
        runtime,
        _call(CLIENT, Operation.DEPOSIT_FUNDS, escrow_id, value=DEPOSIT),
    )
    assert result.error.code == ErrorCode.ESCROW_WRONG_STATE
    assert result.error.message == "Invalid state for this action"
    assert runtime.get_escrow(escrow_id).amount == DEPOSIT


# --- complete_work ---


def test_complete_work_success(runtime, escrow_id, escrow_case) -> None:
    _fund(runtime, escrow_id)
    result = escrow_case(
        "escrow/complete_work.json",
        "complete_work_success",
        runtime,
        _call(FREELANCER, Operation.COMPLETE_WORK, escrow_id),
    )
    assert result.ok
    record = runtime.get_escrow(escrow_id)
    assert record.state == EscrowState.WORK_DONE
    assert record.work_completed_at == runtime.clock.now()


def test_complete_work_before_funding(runtime, escrow_id, escrow_case) -> None:
    result = escrow_case(
        "escrow/complete_work.json",
        "complete_work_before_funding",
        runtime,
        _call(FREELANCER, Operation.COMPLETE_WORK, escrow_id),
    )
    assert result.error.code == ErrorCode.ESCROW_WRONG_STATE


def test_complete_work_by_client(runtime, escrow_id, escrow_case) -> None:
    _fund(runtime, escrow_id)
    result = escrow_case(
        "escrow/complete_work.json",
        "complete_work_by_client",
        runtime,
        _call(CLIENT, Operation.COMPLETE_WORK, escrow_id),
    )
    assert result.error.code == ErrorCode.UNAUTHORIZED
    assert result.error.message == "Only freelancer can call this"


# --- approve_and_pay ---


def test_approve_and_pay_success(runtime, escrow_id, escrow_case) -> None:
    _work_done(runtime, escrow_id)
    before = runtime.ledger.balance_of(FREELANCER)
    result = escrow_case(
        "escrow/approve_and_pay.json",
        "approve_and_pay_success",
        runtime,
        _call(CLIENT, Operation.APPROVE_AND_PAY, escrow_id),
    )
    assert result.ok
    assert runtime.get_escrow(escrow_id).state == EscrowState.PAID
    assert runtime.ledger.balance_of(FREELANCER) == before + DEPOSIT
    assert runtime.ledger.balance_of(escrow_id) == 0


def test_approve_and_pay_by_freelancer(runtime, escrow_id, escrow_case) -> None:
    _fund(runtime, escrow_id)
    result = escrow_case(
        "escrow/approve_and_pay.json",
        "approve_and_pay_by_freelancer",
        runtime,
        _call(FREELANCER, Operation.APPROVE_AND_PAY, escrow_id),
    )
    assert result.error.code == ErrorCode.UNAUTHORIZED
    assert result.error.message == "Only client can call this"


# --- auto_release_payment ---


def test_auto_release_payment_after_window(runtime, escrow_id, escrow_case) -> None:
    _work_done(runtime, escrow_id)
    runtime.clock.advance(DISPUTE_WINDOW + 1)
    result = escrow_case(
        "escrow/auto_release_payment.json",
        "auto_release_payment_after_window",
        runtime,
        _call(OTHER, Operation.AUTO_RELEASE_PAYMENT, escrow_id),
    )
    assert result.ok
    assert runtime.get_escrow(escrow_id).state == EscrowState.PAID


def test_auto_release_payment_too_early(runtime, escrow_id, escrow_case) -> None:
    _work_done(runtime, escrow_id)
    runtime.clock.advance(DISPUTE_WINDOW - 1)
    result = escrow_case(
        "escrow/auto_release_payment.json",
        "auto_release_payment_too_early",
        runtime,
        _call(OTHER, Operation.AUTO_RELEASE_PAYMENT, escrow_id),
    )
    assert result.error.code == ErrorCode.WINDOW_NOT_OPEN
    assert runtime.get_escrow(escrow_id).state == EscrowState.WORK_DONE


# --- raise_dispute ---


def test_raise_dispute_within_window(runtime, escrow_id, escrow_case, audit_log) -> None:
    _work_done(runtime, escrow_id)
    result = escrow_case(
        "escrow/raise_dispute.json",
        "raise_dispute_within_window",
        runtime,
        _call(CLIENT, Operation.RAISE_DISPUTE, escrow_id, reason="Poor quality work"),
    )
    assert result.ok
    assert runtime.get_escrow(escrow_id).state == EscrowState.DISPUTED
    raised = [r for r in audit_log.records(escrow_id) if r.kind == AuditKind.DISPUTE_RAISED]
    assert raised[0].reason == "Poor quality work"


def test_raise_dispute_by_arbiter(runtime, escrow_id, escrow_case) -> None:
    _work_done(runtime, escrow_id)
    result = escrow_case(
        "escrow/raise_dispute.json",
        "raise_dispute_by_arbiter",
        runtime,
        _call(ARBITER, Operation.RAISE_DISPUTE, escrow_id, reason="x"),
    )
    assert result.error.code == ErrorCode.UNAUTHORIZED


# --- resolve_dispute_* ---


def test_resolve_dispute_for_freelancer(runtime, escrow_id, escrow_case) -> None:
    _disputed(runtime, escrow_id)
    before = runtime.ledger.balance_of(FREELANCER)
    result = escrow_case(
        "escrow/resolve_dispute.json",
        "resolve_dispute_for_freelancer",
        runtime,
        _call(ARBITER, Operation.RESOLVE_DISPUTE_FOR_FREELANCER, escrow_id),
    )
    assert result.ok
    assert runtime.get_escrow(escrow_id).state == EscrowState.PAID
    assert runtime.ledger.balance_of(FREELANCER) == before + DEPOSIT


def test_resolve_dispute_for_client(runtime, escrow_id, escrow_case) -> None:
    _disputed(runtime, escrow_id)
    before = runtime.ledger.balance_of(CLIENT)
    result = escrow_case(
        "escrow/resolve_dispute.json",
        "resolve_dispute_for_client",
        runtime,
        _call(ARBITER, Operation.RESOLVE_DISPUTE_FOR_CLIENT, escrow_id),
    )
    assert result.ok
    assert runtime.get_escrow(escrow_id).state == EscrowState.REFUNDED
    assert runtime.ledger.balance_of(CLIENT) == before + DEPOSIT


def test_resolve_dispute_by_client(runtime, escrow_id, escrow_case) -> None:
    _disputed(runtime, escrow_id)
    result = escrow_case(
        "escrow/resolve_dispute.json",
        "resolve_dispute_by_client",
        runtime,
        _call(CLIENT, Operation.RESOLVE_DISPUTE_FOR_CLIENT, escrow_id),
    )
    assert result.error.code == ErrorCode.UNAUTHORIZED
    assert result.error.message == "Only arbiter can call this"


# --- request_refund ---


def test_request_refund_after_window(runtime, escrow_id, escrow_case) -> None:
    _fund(runtime, escrow_id)
    runtime.clock.advance(AUTO_REFUND_WINDOW + 1)
    before = runtime.ledger.balance_of(CLIENT)
    result = escrow_case(
        "escrow/request_refund.json",
        "request_refund_after_window",
        runtime,
        _call(CLIENT, Operation.REQUEST_REFUND, escrow_id, reason="work never delivered"),
    )
    assert result.ok
    assert runtime.get_escrow(escrow_id).state == EscrowState.REFUNDED
    assert runtime.ledger.balance_of(CLIENT) == before + DEPOSIT


def test_request_refund_too_early(runtime, escrow_id, escrow_case) -> None:
    _fund(runtime, escrow_id)
    runtime.clock.advance(AUTO_REFUND_WINDOW - 1)
    result = escrow_case(
        "escrow/request_refund.json",
        "request_refund_too_early",
        runtime,
        _call(CLIENT, Operation.REQUEST_REFUND, escrow_id),
    )
    assert result.error.code == ErrorCode.WINDOW_NOT_OPEN


def test_request_refund_exact_boundary(runtime, escrow_id) -> None:
    created_at = runtime.get_escrow(escrow_id).created_at
    _fund(runtime, escrow_id)
    runtime.clock.set(created_at + AUTO_REFUND_WINDOW)
    runtime.request_refund(CLIENT, escrow_id)
    assert runtime.get_escrow(escrow_id).state == EscrowState.REFUNDED


# --- end-to-end scenarios ---


def test_scenario_a_happy_path(runtime, escrow_id) -> None:
    freelancer_before = runtime.ledger.balance_of(FREELANCER)

    runtime.deposit_funds(CLIENT, escrow_id, 100)
    record = runtime.get_escrow(escrow_id)
    assert (record.state, record.amount) == (EscrowState.FUNDED, 100)

    runtime.complete_work(FREELANCER, escrow_id)
    assert runtime.get_escrow(escrow_id).state == EscrowState.WORK_DONE

    runtime.approve_and_pay(CLIENT, escrow_id)
    assert runtime.get_escrow(escrow_id).state == EscrowState.PAID
    assert runtime.ledger.balance_of(FREELANCER) == freelancer_before + 100

    result = runtime.invoke(_call(CLIENT, Operation.APPROVE_AND_PAY, escrow_id))
    assert result.error.code == ErrorCode.ESCROW_WRONG_STATE


def test_scenario_b_auto_release(runtime, escrow_id) -> None:
    _work_done(runtime, escrow_id)
    runtime.clock.advance(DISPUTE_WINDOW + 1)

    result = runtime.invoke(_call(CLIENT, Operation.RAISE_DISPUTE, escrow_id, reason="late"))
    assert result.error.code == ErrorCode.WINDOW_CLOSED

    runtime.auto_release_payment(OTHER, escrow_id)
    assert runtime.get_escrow(escrow_id).state == EscrowState.PAID


def test_scenario_c_refund_without_work(runtime, escrow_id) -> None:
    _fund(runtime, escrow_id)
    runtime.clock.advance(AUTO_REFUND_WINDOW + 1)
    before = runtime.ledger.balance_of(CLIENT)

    runtime.request_refund(CLIENT, escrow_id, "freelancer vanished")
    assert runtime.get_escrow(escrow_id).state == EscrowState.REFUNDED
    assert runtime.ledger.balance_of(CLIENT) == before + DEPOSIT

    result = runtime.invoke(_call(FREELANCER, Operation.COMPLETE_WORK, escrow_id))
    assert result.error.code == ErrorCode.ESCROW_WRONG_STATE


def test_scenario_d_dispute_for_client(runtime, escrow_id) -> None:
    _work_done(runtime, escrow_id)
    runtime.raise_dispute(CLIENT, escrow_id, "Poor quality work")
    assert runtime.get_escrow(escrow_id).state == EscrowState.DISPUTED

    runtime.resolve_dispute_for_client(ARBITER, escrow_id)
    assert runtime.get_escrow(escrow_id).state == EscrowState.REFUNDED

    result = runtime.invoke(_call(ARBITER, Operation.RESOLVE_DISPUTE_FOR_FREELANCER, escrow_id))
    assert result.error.code == ErrorCode.ESCROW_WRONG_STATE


def test_audit_trail_counts_transitions(runtime, escrow_id, audit_log) -> None:
    _work_done(runtime, escrow_id)
    transitions = [r for r in audit_log.records(escrow_id) if r.kind == AuditKind.STATE_TRANSITION]
    assert [(r.old_state, r.new_state) for r in transitions] == [
        (EscrowState.CREATED, EscrowState.FUNDED),
        (EscrowState.FUNDED, EscrowState.WORK_DONE),
    ]
    deposited = [r for r in audit_log.records(escrow_id) if r.kind == AuditKind.FUNDS_DEPOSITED][0]
    assert (deposited.actor, deposited.amount) == (CLIENT, DEPOSIT)
    assert deposited.block_height == runtime.clock.height()


# --- clock starting at zero ---


def _genesis_runtime() -> EscrowRuntime:
    rt = EscrowRuntime(clock=ManualClock(timestamp=0, height=0))
    for addr in (CLIENT, FREELANCER, ARBITER, OTHER):
        rt.ledger.mint(addr, 10 * DEPOSIT)
    return rt


def _completed_at_genesis() -> tuple[EscrowRuntime, bytes]:
    rt = _genesis_runtime()
    eid = rt.create_escrow(CLIENT, FREELANCER, ARBITER)
    rt.deposit_funds(CLIENT, eid, DEPOSIT)
    rt.complete_work(FREELANCER, eid)
    return rt, eid


def test_work_completed_at_time_zero() -> None:
    rt, eid = _completed_at_genesis()
    record = rt.get_escrow(eid)
    assert (record.state, record.work_completed_at) == (EscrowState.WORK_DONE, 0)

    details = rt.get_escrow_details(eid)
    assert details.dispute_deadline == DISPUTE_WINDOW
    assert rt.is_dispute_window_open(eid)
    assert rt.time_until_auto_release(eid) == DISPUTE_WINDOW


@pytest.mark.parametrize(
    "offset,dispute_ok",
    [(0, True), (DISPUTE_WINDOW - 1, True), (DISPUTE_WINDOW, False), (DISPUTE_WINDOW + 1, False)],
)
def test_time_zero_completion_admits_one_exit(offset, dispute_ok) -> None:
    rt, eid = _completed_at_genesis()
    rt.clock.set(offset)

    dispute = rt.invoke(_call(CLIENT, Operation.RAISE_DISPUTE, eid, reason="late"))
    release = rt.invoke(_call(OTHER, Operation.AUTO_RELEASE_PAYMENT, eid))

    assert dispute.ok == dispute_ok
    if dispute_ok:
        # The dispute moved the escrow out of WORK_DONE.
        assert release.error.code == ErrorCode.ESCROW_WRONG_STATE
        assert rt.get_escrow(eid).state == EscrowState.DISPUTED
    else:
        assert dispute.error.code == ErrorCode.WINDOW_CLOSED
        assert release.ok
        assert rt.get_escrow(eid).state == EscrowState.PAID
        assert rt.ledger.balance_of(eid) == 0
