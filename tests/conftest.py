"""Pytest hooks and fixtures for escrow specs (EEST-style fixture output)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest

from trustless_escrow.audit import AuditLog
from trustless_escrow.config import ETHER
from trustless_escrow.host import ManualClock
from trustless_escrow.state_transition import EscrowRuntime, TransitionResult
from trustless_escrow.test_accounts import ARBITER, CLIENT, FREELANCER, MALLORY, OTHER
from trustless_escrow.types import Call
from tools.fixtures_io import call_to_json, state_to_json

START_TIME = 1_700_000_000
STARTING_BALANCE = 10_000 * ETHER

_CASES: dict[str, list[dict[str, Any]]] = {}


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--output",
        action="store",
        default=None,
        help="Output directory for generated fixtures",
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(timestamp=START_TIME, height=1)


@pytest.fixture
def audit_log() -> AuditLog:
    return AuditLog()


@pytest.fixture
def runtime(clock: ManualClock, audit_log: AuditLog) -> EscrowRuntime:
    rt = EscrowRuntime(clock=clock, sink=audit_log)
    for addr in (CLIENT, FREELANCER, ARBITER, OTHER, MALLORY):
        rt.ledger.mint(addr, STARTING_BALANCE)
    return rt


@pytest.fixture
def escrow_id(runtime: EscrowRuntime) -> bytes:
    return runtime.create_escrow(CLIENT, FREELANCER, ARBITER)


@pytest.fixture
def escrow_case() -> Callable[[str, str, EscrowRuntime, Call], TransitionResult]:
    """Invoke a call, collect it as a fixture case and return the result."""

    def _escrow_case(rel_path: str, name: str, runtime: EscrowRuntime, call: Call) -> TransitionResult:
        pre_state = state_to_json(runtime.state)
        timestamp = runtime.clock.now()
        height = runtime.clock.height()
        result = runtime.invoke(call)
        _CASES.setdefault(rel_path, []).append(
            {
                "name": name,
                "runnable": not runtime.ledger.has_hooks,
                "timestamp": timestamp,
                "block_height": height,
                "pre_state": pre_state,
                "call": call_to_json(call),
                "expected": {
                    "ok": result.ok,
                    "error": result.error.code.name if result.error else None,
                    "post_state": state_to_json(runtime.state),
                },
            }
        )
        return result

    return _escrow_case


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    output_dir = session.config.getoption("--output")
    if not output_dir:
        return

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    for rel_path, cases in _CASES.items():
        if not cases:
            continue
        target = out / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps({"cases": cases}, indent=2))
