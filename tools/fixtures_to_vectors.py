#!/usr/bin/env python3
"""Convert escrow fixtures into client-consumable YAML vectors.

Each fixture case becomes a vector carrying the pre-state, the call, the
numeric error code and the post-state digest, so another implementation can
replay it without the Python state machine.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT / "tools"))

from trustless_escrow.errors import ErrorCode  # noqa: E402
from trustless_escrow.state_digest import compute_state_digest  # noqa: E402
from fixtures_io import state_from_json  # noqa: E402
from yaml_dump import write_yaml  # noqa: E402


def _map_error_code(name: str | None) -> int:
    if not name:
        return int(ErrorCode.SUCCESS)
    try:
        return int(ErrorCode[name])
    except KeyError:
        return int(ErrorCode.UNKNOWN)


def case_to_vector(case: dict[str, Any]) -> dict[str, Any]:
    expected = case.get("expected", {})
    post_state = expected.get("post_state")
    vector: dict[str, Any] = {
        "name": case.get("name", ""),
        "timestamp": case.get("timestamp", 0),
        "block_height": case.get("block_height", 0),
    }
    if case.get("runnable") is False:
        vector["runnable"] = False
    vector.update(
        {
            "pre_state": case.get("pre_state"),
            "call": case.get("call"),
            "expected": {
                "success": bool(expected.get("ok", False)),
                "error_code": _map_error_code(expected.get("error")),
                "state_digest": compute_state_digest(state_from_json(post_state)) if post_state else "",
            },
        }
    )
    return vector


def convert(fixtures: Path, vectors: Path) -> int:
    """Write one YAML vector file per fixture file; returns the file count."""
    count = 0
    for path in sorted(fixtures.rglob("*.json")):
        data = json.loads(path.read_text())
        cases = data.get("cases") if isinstance(data, dict) else None
        if not isinstance(cases, list):
            continue

        dest = (vectors / path.relative_to(fixtures)).with_suffix(".yaml")
        dest.parent.mkdir(parents=True, exist_ok=True)
        write_yaml(dest, {"test_vectors": [case_to_vector(c) for c in cases]})
        count += 1
    return count


def main() -> None:
    parser = argparse.ArgumentParser(description="Convert fixtures to vectors")
    parser.add_argument("--fixtures", default=str(ROOT / "fixtures"))
    parser.add_argument("--vectors", default=str(ROOT / "vectors"))
    args = parser.parse_args()

    fixtures = Path(args.fixtures).resolve()
    vectors = Path(args.vectors).resolve()

    if not fixtures.exists():
        raise SystemExit(f"fixtures dir not found: {fixtures}")

    count = convert(fixtures, vectors)
    print(f"Written {count} vector files into {vectors}")


if __name__ == "__main__":
    main()
