"""Consume escrow fixtures and validate against the Python state machine."""

from __future__ import annotations

import json
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT / "tools"))

from trustless_escrow.host import ManualClock  # noqa: E402
from trustless_escrow.state_digest import compute_state_digest  # noqa: E402
from trustless_escrow.state_transition import EscrowRuntime  # noqa: E402
from fixtures_io import call_from_json, state_from_json  # noqa: E402


def _check_cases(path: Path) -> list[str]:
    failures: list[str] = []
    data = json.loads(path.read_text())

    for case in data.get("cases", []):
        if not case.get("runnable", True):
            continue
        pre_state = state_from_json(case["pre_state"])
        clock = ManualClock(timestamp=case["timestamp"], height=case["block_height"])
        runtime = EscrowRuntime(state=pre_state, clock=clock)
        result = runtime.invoke(call_from_json(case["call"]))

        expected = case["expected"]
        if result.ok != expected["ok"]:
            failures.append(f"{case['name']}: ok_mismatch")
            continue

        actual_err = result.error.code.name if result.error else None
        if actual_err != expected["error"]:
            failures.append(f"{case['name']}: error_mismatch")
            continue

        expected_state = state_from_json(expected["post_state"])
        if compute_state_digest(runtime.state) != compute_state_digest(expected_state):
            failures.append(f"{case['name']}: state_digest_mismatch")

    return failures


def main() -> None:
    fixtures = ROOT / "fixtures"

    failures: list[str] = []
    for path in sorted(fixtures.glob("**/*.json")):
        failures.extend(_check_cases(path))

    if failures:
        for f in failures:
            print("FAIL", f)
        raise SystemExit(1)

    print("All fixtures passed")


if __name__ == "__main__":
    main()
