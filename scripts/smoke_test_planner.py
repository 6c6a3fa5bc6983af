from __future__ import annotations

"""
Smoke test for the planner export (local, offline).

Builds a few sample plans (no API calls), then:
- captures every section (section_views)
- paginates them (section_paginator)
- writes a multi-page PDF per scenario (plan_pdf)

It writes PDFs to `out/smoke_test_planner/` and exits non-zero if anything breaks.

Usage:
  python3 scripts/smoke_test_planner.py
  python3 scripts/smoke_test_planner.py --out-dir out/smoke_test_planner
"""

import argparse
import logging
import sys
import traceback
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from tqdm import tqdm

# Allow running as `python3 scripts/smoke_test_planner.py` (module imports live at repo root).
_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from deck_models import PlanContent
from plan_pdf import DocumentExportError, PlanExporter, save_plan_pdf
from planner_config import configure_logging
from sample_deck_plan import sample_plan_content


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


@dataclass(frozen=True)
class Scenario:
    name: str
    content: PlanContent


def _scenarios() -> list[Scenario]:
    short = sample_plan_content(project_name="Smoke Short Deck")
    long = sample_plan_content(project_name="Smoke Long   Deck", repeat=12)
    no_cost = replace(sample_plan_content(project_name="Smoke No Cost"), cost=None)
    return [
        Scenario("short", short),
        Scenario("long", long),
        Scenario("no_cost", no_cost),
    ]


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--out-dir",
        default=str(_repo_root() / "out" / "smoke_test_planner"),
        help="Directory to write PDFs into (default: out/smoke_test_planner).",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging.")
    args = parser.parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "WARNING")

    out_dir = Path(args.out_dir).resolve()
    exporter = PlanExporter()
    failures = 0
    for scenario in tqdm(_scenarios(), desc="Scenarios", unit="pdf"):
        try:
            artifact = exporter.export(scenario.content)
        except DocumentExportError:
            failures += 1
            traceback.print_exc()
            continue
        path = save_plan_pdf(artifact, out_dir)
        sections = ", ".join(f"{p.section_id.value}={p.page_count}" for p in artifact.placements)
        tqdm.write(f"[{scenario.name}] {artifact.page_count} pages ({sections}) -> {path}")

    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
