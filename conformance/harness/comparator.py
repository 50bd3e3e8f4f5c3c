"""
Outcome comparison logic for escrow scenarios.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class Divergence:
    """A single mismatch between an expected and an observed value."""
    field: str
    expected: Any
    actual: Any
    scenario_name: str
    step: int
    details: Optional[str] = None


@dataclass
class ComparisonResult:
    """Result of comparing one step against its expectation."""
    success: bool
    divergences: List[Divergence]

    @property
    def has_divergences(self) -> bool:
        return len(self.divergences) > 0


class OutcomeComparator:
    """Compares observed step outcomes with scenario expectations."""

    def compare_call(
        self,
        expected: Dict[str, Any],
        actual: Dict[str, Any],
        scenario_name: str,
        step: int,
    ) -> ComparisonResult:
        """
        Compare a call outcome against the `expect` block of a step.

        Args:
            expected: Parsed `expect` mapping (ok, error, state)
            actual: Observed outcome with the same keys
            scenario_name: Name of the scenario
            step: Index of the step within the scenario

        Returns:
            ComparisonResult with any divergences found
        """
        divergences = []

        exp_error = expected.get("error")
        exp_ok = expected.get("ok", exp_error is None)
        if exp_ok != actual["ok"]:
            divergences.append(Divergence(
                field="ok",
                expected=exp_ok,
                actual=actual["ok"],
                scenario_name=scenario_name,
                step=step,
                details=actual.get("message"),
            ))

        if exp_error is not None and exp_error != actual.get("error"):
            divergences.append(Divergence(
                field="error",
                expected=exp_error,
                actual=actual.get("error"),
                scenario_name=scenario_name,
                step=step,
                details=f"Error code mismatch: expected {exp_error}, got {actual.get('error')}",
            ))

        if "state" in expected and expected["state"] != actual.get("state"):
            divergences.append(Divergence(
                field="state",
                expected=expected["state"],
                actual=actual.get("state"),
                scenario_name=scenario_name,
                step=step,
            ))

        return ComparisonResult(
            success=len(divergences) == 0,
            divergences=divergences,
        )

    def compare_balances(
        self,
        expected: Dict[str, int],
        actual: Dict[str, int],
        scenario_name: str,
        step: int,
    ) -> ComparisonResult:
        """
        Compare account balances by name.

        Args:
            expected: Dict mapping account or escrow name to expected balance
            actual: Dict mapping the same names to observed balances
            scenario_name: Name of the scenario
            step: Index of the step within the scenario

        Returns:
            ComparisonResult with any divergences found
        """
        divergences = []

        for name, exp_balance in expected.items():
            act_balance = actual.get(name)
            if act_balance != exp_balance:
                divergences.append(Divergence(
                    field=f"balance.{name}",
                    expected=exp_balance,
                    actual=act_balance,
                    scenario_name=scenario_name,
                    step=step,
                ))

        return ComparisonResult(
            success=len(divergences) == 0,
            divergences=divergences,
        )

    def compare_values(
        self,
        expected: Dict[str, Any],
        actual: Dict[str, Any],
        scenario_name: str,
        step: int,
    ) -> ComparisonResult:
        """Compare arbitrary named query values (state, window flags, countdowns)."""
        divergences = [
            Divergence(
                field=name,
                expected=exp_value,
                actual=actual.get(name),
                scenario_name=scenario_name,
                step=step,
            )
            for name, exp_value in expected.items()
            if actual.get(name) != exp_value
        ]

        return ComparisonResult(
            success=len(divergences) == 0,
            divergences=divergences,
        )

    @staticmethod
    def merge(results: List[ComparisonResult]) -> ComparisonResult:
        """Fold several step comparisons into one."""
        divergences = [d for r in results for d in r.divergences]
        return ComparisonResult(
            success=len(divergences) == 0,
            divergences=divergences,
        )
