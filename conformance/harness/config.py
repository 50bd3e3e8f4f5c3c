"""
Configuration management for the escrow scenario harness.
"""

import os
from dataclasses import dataclass, field
from typing import Dict

from trustless_escrow.config import ETHER


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("true", "1", "yes")


@dataclass
class HarnessConfig:
    """Main configuration for the scenario harness."""
    # Paths
    scenario_dir: str = "conformance/scenarios"
    result_dir: str = "results"

    # Execution settings
    stop_on_first_failure: bool = False
    verbose: bool = False

    # Genesis
    start_time: int = 1_700_000_000
    start_height: int = 1
    starting_balance: int = 10_000 * ETHER
    funded_accounts: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "HarnessConfig":
        """Load configuration from environment variables."""
        config = cls()

        # Load paths
        config.scenario_dir = os.environ.get("SCENARIO_DIR", config.scenario_dir)
        config.result_dir = os.environ.get("RESULT_DIR", config.result_dir)

        # Load settings
        config.verbose = _env_flag("VERBOSE")
        config.stop_on_first_failure = _env_flag("STOP_ON_FIRST_FAILURE")

        start_time = os.environ.get("START_TIME")
        if start_time:
            config.start_time = int(start_time)

        return config

    def balance_for(self, account: str) -> int:
        """Genesis balance of a named account."""
        return self.funded_accounts.get(account, self.starting_balance)
