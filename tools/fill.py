"""Fill escrow fixtures by running the pytest specs with `--output`.

Every test that goes through the `escrow_case` fixture contributes a case to
`<output>/escrow/*.json`. With `--vectors` the filled fixtures are converted
to YAML vectors in the same run.
"""

from __future__ import annotations

import argparse
import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "tools"))

from fixtures_to_vectors import convert  # noqa: E402

# Spec modules that record fixture cases.
FIXTURE_SPECS = ("test_escrow_lifecycle.py", "test_custody.py")


def build_command(output: Path, select: str | None = None, all_specs: bool = False) -> list[str]:
    targets = [str(ROOT / "tests")] if all_specs else [str(ROOT / "tests" / name) for name in FIXTURE_SPECS]
    cmd = [sys.executable, "-m", "pytest", *targets, "-q", "--output", str(output)]
    if select:
        cmd += ["-k", select]
    return cmd


def count_cases(output: Path) -> dict[str, int]:
    """Number of cases per fixture file under `output`."""
    counts: dict[str, int] = {}
    for path in sorted(output.rglob("*.json")):
        data = json.loads(path.read_text())
        counts[str(path.relative_to(output))] = len(data.get("cases", []))
    return counts


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate escrow fixtures from the pytest specs")
    parser.add_argument("--output", default=str(ROOT / "fixtures"))
    parser.add_argument("-k", dest="select", default=None, help="pytest -k expression")
    parser.add_argument("--all", dest="all_specs", action="store_true", help="run every spec module")
    parser.add_argument("--clean", action="store_true", help="remove existing fixtures first")
    parser.add_argument("--vectors", default=None, help="also write YAML vectors into this directory")
    args = parser.parse_args(argv)

    output = Path(args.output).resolve()
    if args.clean and output.exists():
        shutil.rmtree(output)

    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join([str(ROOT / "src"), str(ROOT)])
    cmd = build_command(output, args.select, args.all_specs)
    print("Running:", " ".join(cmd))
    status = subprocess.call(cmd, env=env, cwd=str(ROOT))
    if status != 0:
        return status

    for name, count in count_cases(output).items():
        print(f"  {name}: {count} cases")
    if args.vectors:
        written = convert(output, Path(args.vectors).resolve())
        print(f"Written {written} vector files into {args.vectors}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
