#!/usr/bin/env python3
"""
Escrow Scenario Runner

Replays YAML scenario suites (parties, calls, clock moves, recipient
behaviour) against an in-process escrow runtime and checks every
expectation along the way.
"""

import glob
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import click
import yaml

from comparator import ComparisonResult, OutcomeComparator
from config import HarnessConfig
from reporter import ReportGenerator, ScenarioReport, ScenarioResult, SuiteResult

from trustless_escrow.audit import AuditLog
from trustless_escrow.config import DAY, ETHER, HOUR, MINUTE
from trustless_escrow.errors import EscrowError
from trustless_escrow.host import ManualClock
from trustless_escrow.state_transition import EscrowRuntime
from trustless_escrow.test_accounts import NAMED_ACCOUNTS
from trustless_escrow.types import AuditKind, Call, Operation

logger = logging.getLogger(__name__)

AMOUNT_UNITS = {"wei": 1, "gwei": 10**9, "ether": ETHER}
DURATION_UNITS = {
    "second": 1, "seconds": 1,
    "minute": MINUTE, "minutes": MINUTE,
    "hour": HOUR, "hours": HOUR,
    "day": DAY, "days": DAY,
}


class ScenarioFormatError(ValueError):
    """Raised for malformed scenario steps."""


def _parse_quantity(value: Any, units: Dict[str, int]) -> int:
    """Parse `5`, `"5 ether"` or `"7 days"` into base units."""
    if isinstance(value, bool):
        raise ScenarioFormatError(f"invalid quantity: {value!r}")
    if isinstance(value, int):
        return value
    parts = str(value).split()
    if len(parts) == 1:
        return int(parts[0])
    if len(parts) == 2 and parts[1] in units:
        return int(parts[0]) * units[parts[1]]
    raise ScenarioFormatError(f"invalid quantity: {value!r}")


def parse_amount(value: Any) -> int:
    return _parse_quantity(value, AMOUNT_UNITS)


def parse_duration(value: Any) -> int:
    return _parse_quantity(value, DURATION_UNITS)


@dataclass
class ScenarioContext:
    """Live state of one scenario run."""
    runtime: EscrowRuntime
    clock: ManualClock
    audit: AuditLog
    genesis: Dict[str, int]
    escrows: Dict[str, bytes] = field(default_factory=dict)
    nested: List[str] = field(default_factory=list)

    def account(self, name: str) -> bytes:
        if name not in NAMED_ACCOUNTS:
            raise ScenarioFormatError(f"unknown account: {name}")
        return NAMED_ACCOUNTS[name]

    def escrow(self, alias: str) -> bytes:
        if alias not in self.escrows:
            raise ScenarioFormatError(f"unknown escrow alias: {alias}")
        return self.escrows[alias]

    def address(self, name: str) -> bytes:
        """Resolve an escrow alias or a named account."""
        if name in self.escrows:
            return self.escrows[name]
        return self.account(name)

    def balance(self, name: str) -> int:
        return self.runtime.ledger.balance_of(self.address(name))


class ScenarioHarness:
    """Drives scenario suites against fresh runtimes."""

    def __init__(self, config: HarnessConfig):
        self.config = config
        self.comparator = OutcomeComparator()
        self.reporter = ReportGenerator(config.result_dir)
        self._steps: Dict[str, Callable[[ScenarioContext, Dict[str, Any], str, int], ComparisonResult]] = {
            "create": self._step_create,
            "call": self._step_call,
            "advance": self._step_advance,
            "set_time": self._step_set_time,
            "hook": self._step_hook,
            "check": self._step_check,
        }

    def new_context(self, scenario: Dict[str, Any]) -> ScenarioContext:
        """Fresh runtime with every named account funded."""
        clock = ManualClock(timestamp=self.config.start_time, height=self.config.start_height)
        audit = AuditLog()
        runtime = EscrowRuntime(clock=clock, sink=audit)

        overrides = scenario.get("balances", {})
        genesis = {}
        for name, address in NAMED_ACCOUNTS.items():
            if name in overrides:
                balance = parse_amount(overrides[name])
            else:
                balance = self.config.balance_for(name)
            runtime.ledger.mint(address, balance)
            genesis[name] = balance

        return ScenarioContext(runtime=runtime, clock=clock, audit=audit, genesis=genesis)

    # --- step handlers ---

    def _step_create(self, ctx: ScenarioContext, step: Dict[str, Any], name: str, index: int) -> ComparisonResult:
        alias = step["create"]
        parties = [
            ctx.account(step.get(role, role))
            for role in ("client", "freelancer", "arbiter")
        ]
        try:
            ctx.escrows[alias] = ctx.runtime.create_escrow(*parties)
            outcome = {"ok": True, "error": None, "state": "CREATED"}
        except EscrowError as exc:
            outcome = {"ok": False, "error": exc.code.name, "message": exc.message}

        return self.comparator.compare_call(step.get("expect", {}), outcome, name, index)

    def _build_call(self, ctx: ScenarioContext, step: Dict[str, Any]) -> Call:
        try:
            operation = Operation(step["call"])
        except ValueError:
            raise ScenarioFormatError(f"unknown operation: {step['call']}")
        return Call(
            caller=ctx.account(step["caller"]),
            operation=operation,
            escrow_id=ctx.escrow(step["escrow"]),
            value=parse_amount(step.get("value", 0)),
            reason=step.get("reason", ""),
        )

    def _step_call(self, ctx: ScenarioContext, step: Dict[str, Any], name: str, index: int) -> ComparisonResult:
        call = self._build_call(ctx, step)
        result = ctx.runtime.invoke(call)
        outcome = {
            "ok": result.ok,
            "error": result.error.code.name if result.error else None,
            "message": result.error.message if result.error else None,
            "state": ctx.runtime.get_escrow(call.escrow_id).state.name,
        }
        logger.debug("  step %d %s -> %s", index, call.operation.value, outcome["error"] or "ok")
        return self.comparator.compare_call(step.get("expect", {}), outcome, name, index)

    def _step_advance(self, ctx: ScenarioContext, step: Dict[str, Any], name: str, index: int) -> ComparisonResult:
        ctx.clock.advance(parse_duration(step["advance"]))
        return ComparisonResult(success=True, divergences=[])

    def _step_set_time(self, ctx: ScenarioContext, step: Dict[str, Any], name: str, index: int) -> ComparisonResult:
        params = step["set_time"]
        record = ctx.runtime.get_escrow(ctx.escrow(params["escrow"]))
        anchor = params.get("anchor", "work_completed_at")
        if anchor not in ("created_at", "work_completed_at"):
            raise ScenarioFormatError(f"invalid time anchor: {anchor}")
        target = getattr(record, anchor) + parse_duration(params.get("offset", 0)) + int(params.get("adjust", 0))
        ctx.clock.set(target)
        return ComparisonResult(success=True, divergences=[])

    def _step_hook(self, ctx: ScenarioContext, step: Dict[str, Any], name: str, index: int) -> ComparisonResult:
        params = step["hook"]
        address = ctx.address(params["account"])
        action = params.get("action", "accept")

        if action == "accept":
            ctx.runtime.ledger.set_receive_hook(address, None)
        elif action == "refuse":
            ctx.runtime.ledger.set_receive_hook(address, lambda source, amount: False)
        elif action == "reenter":
            nested_call = self._build_call(ctx, params["reenter"])

            def reenter(source: bytes, amount: int) -> bool:
                result = ctx.runtime.invoke(nested_call)
                ctx.nested.append(result.error.code.name if result.error else "OK")
                return True

            ctx.runtime.ledger.set_receive_hook(address, reenter)
        else:
            raise ScenarioFormatError(f"unknown hook action: {action}")

        return ComparisonResult(success=True, divergences=[])

    def _step_check(self, ctx: ScenarioContext, step: Dict[str, Any], name: str, index: int) -> ComparisonResult:
        params = step["check"]
        results = []

        if "escrow" in params:
            escrow_id = ctx.escrow(params["escrow"])
            record = ctx.runtime.get_escrow(escrow_id)
            actual = {
                "state": record.state.name,
                "amount": record.amount,
                "locked": record.locked,
                "dispute_window_open": ctx.runtime.is_dispute_window_open(escrow_id),
                "time_until_auto_release": ctx.runtime.time_until_auto_release(escrow_id),
                "events": [
                    r.kind.value
                    for r in ctx.audit.records(escrow_id)
                    if r.kind != AuditKind.STATE_TRANSITION
                ],
            }
            expected = {k: v for k, v in params.items() if k in actual}
            if "amount" in expected:
                expected["amount"] = parse_amount(expected["amount"])
            if "time_until_auto_release" in expected:
                expected["time_until_auto_release"] = parse_duration(expected["time_until_auto_release"])
            results.append(self.comparator.compare_values(expected, actual, name, index))

        if "balances" in params:
            expected = {k: parse_amount(v) for k, v in params["balances"].items()}
            actual = {k: ctx.balance(k) for k in expected}
            results.append(self.comparator.compare_balances(expected, actual, name, index))

        if "deltas" in params:
            expected = {k: parse_amount(v) for k, v in params["deltas"].items()}
            actual = {k: ctx.balance(k) - ctx.genesis.get(k, 0) for k in expected}
            results.append(self.comparator.compare_balances(expected, actual, name, index))

        if "nested" in params:
            results.append(self.comparator.compare_values(
                {"nested": params["nested"]}, {"nested": list(ctx.nested)}, name, index
            ))

        if "audit_chain_valid" in params:
            results.append(self.comparator.compare_values(
                {"audit_chain_valid": params["audit_chain_valid"]},
                {"audit_chain_valid": ctx.audit.verify_chain()},
                name,
                index,
            ))

        return self.comparator.merge(results)

    # --- scenario / suite ---

    def _step_kind(self, step: Dict[str, Any]) -> str:
        kinds = [k for k in self._steps if k in step]
        if len(kinds) != 1:
            raise ScenarioFormatError(f"step must have exactly one of {sorted(self._steps)}: {step}")
        return kinds[0]

    def _result(
        self,
        ctx: Optional[ScenarioContext],
        scenario_name: str,
        suite_name: str,
        steps_run: int,
        comparisons: List[ComparisonResult],
        error: Optional[str] = None,
    ) -> ScenarioResult:
        comparison = self.comparator.merge(comparisons)
        escrows: Dict[str, str] = {}
        audit_records, chain_valid = 0, True
        if ctx is not None:
            escrows = {alias: ctx.runtime.get_escrow(eid).state.name for alias, eid in ctx.escrows.items()}
            audit_records, chain_valid = len(ctx.audit), ctx.audit.verify_chain()
        return ScenarioResult(
            scenario_name=scenario_name,
            suite_name=suite_name,
            passed=error is None and chain_valid and not comparison.has_divergences,
            steps_run=steps_run,
            comparison=comparison,
            error=error,
            escrows=escrows,
            audit_records=audit_records,
            audit_chain_valid=chain_valid,
        )

    def run_scenario(self, scenario: Dict[str, Any], suite_name: str = "") -> ScenarioResult:
        """Run a single scenario on a fresh runtime."""
        scenario_name = scenario.get("name", "unknown")
        comparisons = []
        steps_run = 0
        ctx = None

        try:
            ctx = self.new_context(scenario)
            for index, step in enumerate(scenario.get("steps", [])):
                handler = self._steps[self._step_kind(step)]
                comparison = handler(ctx, step, scenario_name, index)
                comparisons.append(comparison)
                steps_run += 1
                if comparison.has_divergences and self.config.stop_on_first_failure:
                    break
        except (ValueError, KeyError, EscrowError) as e:
            logger.exception(f"Error running scenario {scenario_name}")
            return self._result(ctx, scenario_name, suite_name, steps_run, comparisons, f"{type(e).__name__}: {e}")

        return self._result(ctx, scenario_name, suite_name, steps_run, comparisons)

    def run_suite(self, suite_path: str) -> SuiteResult:
        """Run a scenario suite from a YAML file."""
        suite_name = Path(suite_path).stem
        logger.info(f"Running suite: {suite_name}")

        with open(suite_path) as f:
            suite = yaml.safe_load(f) or {}

        results = []
        for scenario in suite.get("scenarios", []):
            result = self.run_scenario(scenario, suite_name)
            results.append(result)

            status = "PASS" if result.passed else "FAIL"
            logger.info(f"  [{status}] {result.scenario_name} {result.escrows}")

            if not result.passed and self.config.stop_on_first_failure:
                break

        return SuiteResult(suite_name=suite_name, scenario_results=results)

    def run_all(self, suite_paths: List[str]) -> ScenarioReport:
        """Run all scenario suites."""
        suite_results = []
        for path in suite_paths:
            suite_results.append(self.run_suite(path))
            if suite_results[-1].failed_tests and self.config.stop_on_first_failure:
                break

        return self.reporter.generate_report(suite_results)


def find_scenario_files(scenario_dir: str) -> List[str]:
    """Find all scenario YAML files in directory."""
    patterns = [
        os.path.join(scenario_dir, "**", "*.yaml"),
        os.path.join(scenario_dir, "**", "*.yml"),
    ]

    files = []
    for pattern in patterns:
        files.extend(glob.glob(pattern, recursive=True))

    return sorted(files)


@click.command()
@click.option(
    "--scenarios",
    default=None,
    help="Path to scenarios directory or specific YAML file",
)
@click.option(
    "--result-dir",
    default=None,
    help="Directory to write results",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--stop-on-failure",
    is_flag=True,
    help="Stop on first scenario failure",
)
def main(
    scenarios: Optional[str],
    result_dir: Optional[str],
    verbose: bool,
    stop_on_failure: bool,
) -> None:
    """Run escrow scenario suites."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    # Load config from environment, then override with CLI args
    config = HarnessConfig.from_env()

    if result_dir:
        config.result_dir = result_dir
    if verbose or config.verbose:
        config.verbose = True
        logging.getLogger().setLevel(logging.DEBUG)
    if stop_on_failure:
        config.stop_on_first_failure = True

    scenario_dir = scenarios or config.scenario_dir
    if os.path.isfile(scenario_dir):
        scenario_files = [scenario_dir]
    else:
        scenario_files = find_scenario_files(scenario_dir)

    if not scenario_files:
        logger.error(f"No scenario files found in {scenario_dir}")
        sys.exit(1)

    logger.info(f"Found {len(scenario_files)} scenario files")

    harness = ScenarioHarness(config)
    report = harness.run_all(scenario_files)

    harness.reporter.write_json_report(report)
    harness.reporter.write_summary(report)
    harness.reporter.print_summary(report)

    sys.exit(0 if report.total_failed == 0 else 1)


if __name__ == "__main__":
    main()
