"""
Report generation for escrow scenario results.

A scenario result records, besides pass/fail, where every escrow it created
ended up and how much of an audit trail the run produced, so a report shows
which lifecycle paths the suites actually exercised.
"""

import json
import os
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from comparator import ComparisonResult, Divergence


@dataclass
class ScenarioResult:
    """Outcome of one scenario run."""
    scenario_name: str
    suite_name: str
    passed: bool
    steps_run: int
    comparison: Optional[ComparisonResult] = None
    error: Optional[str] = None
    # alias -> final EscrowState name
    escrows: Dict[str, str] = field(default_factory=dict)
    audit_records: int = 0
    audit_chain_valid: bool = True

    @property
    def divergences(self) -> List[Divergence]:
        return self.comparison.divergences if self.comparison else []


@dataclass
class SuiteResult:
    """Results of one scenario file."""
    suite_name: str
    scenario_results: List[ScenarioResult]

    @property
    def total_tests(self) -> int:
        return len(self.scenario_results)

    @property
    def passed_tests(self) -> int:
        return sum(1 for r in self.scenario_results if r.passed)

    @property
    def failed_tests(self) -> int:
        return self.total_tests - self.passed_tests


@dataclass
class ScenarioReport:
    generated_at: str
    suite_results: List[SuiteResult]

    @property
    def total_tests(self) -> int:
        return sum(s.total_tests for s in self.suite_results)

    @property
    def total_failed(self) -> int:
        return sum(s.failed_tests for s in self.suite_results)

    @property
    def final_states(self) -> Dict[str, int]:
        """How many escrows ended in each state across all scenarios."""
        counts: Counter = Counter()
        for suite in self.suite_results:
            for scenario in suite.scenario_results:
                counts.update(scenario.escrows.values())
        return dict(sorted(counts.items()))


class ReportGenerator:
    """Writes scenario reports into `result_dir`."""

    def __init__(self, result_dir: str):
        self.result_dir = result_dir
        os.makedirs(result_dir, exist_ok=True)

    def generate_report(self, suite_results: List[SuiteResult]) -> ScenarioReport:
        return ScenarioReport(
            generated_at=datetime.now(timezone.utc).isoformat(),
            suite_results=suite_results,
        )

    def write_json_report(self, report: ScenarioReport, filename: str = "scenario-report.json") -> str:
        path = os.path.join(self.result_dir, filename)
        with open(path, "w") as f:
            json.dump(self._report_to_dict(report), f, indent=2)
        return path

    def write_summary(self, report: ScenarioReport, filename: str = "scenario-summary.txt") -> str:
        path = os.path.join(self.result_dir, filename)
        with open(path, "w") as f:
            f.write("\n".join(self.summary_lines(report)) + "\n")
        return path

    def summary_lines(self, report: ScenarioReport) -> List[str]:
        lines = [
            f"Escrow scenarios ({report.generated_at})",
            f"  {report.total_tests - report.total_failed}/{report.total_tests} scenarios passed",
        ]
        if report.final_states:
            states = ", ".join(f"{state} {count}" for state, count in report.final_states.items())
            lines.append(f"  Final escrow states: {states}")
        lines.append("")

        for suite in report.suite_results:
            status = "PASS" if suite.failed_tests == 0 else "FAIL"
            lines.append(f"[{status}] {suite.suite_name}: {suite.passed_tests}/{suite.total_tests}")
            for scenario in suite.scenario_results:
                if scenario.passed:
                    continue
                lines.append(f"    {scenario.scenario_name} (after {scenario.steps_run} steps)")
                if scenario.error:
                    lines.append(f"      error: {scenario.error}")
                if not scenario.audit_chain_valid:
                    lines.append("      audit chain broken")
                for div in scenario.divergences:
                    lines.append(
                        f"      step {div.step} {div.field}: expected {div.expected!r}, got {div.actual!r}"
                    )
        return lines

    def print_summary(self, report: ScenarioReport) -> None:
        print("\n".join(self.summary_lines(report)))
        print()
        print(f"Overall: {'PASSED' if report.total_failed == 0 else 'FAILED'}")

    def _report_to_dict(self, report: ScenarioReport) -> Dict[str, Any]:
        return {
            "generated_at": report.generated_at,
            "total_tests": report.total_tests,
            "total_failed": report.total_failed,
            "final_states": report.final_states,
            "suite_results": [
                {
                    "suite_name": s.suite_name,
                    "scenarios": [
                        {
                            "name": r.scenario_name,
                            "passed": r.passed,
                            "steps_run": r.steps_run,
                            "escrows": r.escrows,
                            "audit_records": r.audit_records,
                            "audit_chain_valid": r.audit_chain_valid,
                            "error": r.error,
                            "divergences": [asdict(d) for d in r.divergences],
                        }
                        for r in s.scenario_results
                    ],
                }
                for s in report.suite_results
            ],
        }
