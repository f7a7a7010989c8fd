from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .governance import GovernanceEngine, timeline_frame
from .io_utils import (
    ensure_directory,
    load_capacity_plan,
    load_changes,
    load_config,
    load_lifecycle,
    load_work_items,
    period_labels,
    unknown_states,
    write_csv,
    write_json,
)
from .models import GovernanceConfig, Violation
from .projector import ProposedChange

MODES = ("validate", "schedule", "what-if")

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Portfolio governance batch tool (JSON in/out, no UI)."
    )
    parser.add_argument(
        "--project-dir",
        required=True,
        help="Project directory containing an input/ subfolder",
    )
    parser.add_argument(
        "--mode",
        choices=MODES,
        default="validate",
        help="validate the portfolio, auto-schedule unscheduled items, or evaluate input/changes.json",
    )
    parser.add_argument(
        "--outdir",
        default=None,
        help="Output directory for report.json and decision_log.json (default: <project-dir>/output)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when the evaluated plan has violations",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Evaluate and print the summary without writing output files",
    )
    return parser.parse_args(argv)


def _resolve_inputs(project_dir: Path, mode: str) -> Dict[str, Optional[Path]]:
    if not project_dir.exists():
        raise ValueError(f"project directory not found: {project_dir}")
    input_dir = project_dir / "input"
    paths: Dict[str, Optional[Path]] = {
        "capacity": input_dir / "capacity.json",
        "items": input_dir / "items.json",
    }
    for label, path in paths.items():
        if not path.exists():
            raise ValueError(f"{label} file not found at {path}")
    for optional in ("config", "changes", "lifecycle"):
        candidate = input_dir / f"{optional}.json"
        paths[optional] = candidate if candidate.exists() else None
    if mode == "what-if" and paths["changes"] is None:
        raise ValueError(f"what-if mode requires {input_dir / 'changes.json'}")
    return paths


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _print_violations(violations: Sequence[Violation]) -> None:
    if not violations:
        print("\nViolations: none")
        return
    print("\nViolations:")
    for violation in violations:
        print(f"- [{violation.severity}] {violation.code}: {violation.message}")


def _print_table(title: str, frame: pd.DataFrame) -> None:
    print(title)
    if frame.empty:
        print("(empty)")
    else:
        print(frame.to_string(index=False))


def _run(
    engine: GovernanceEngine,
    args: argparse.Namespace,
    changes: Sequence[ProposedChange],
    cfg: GovernanceConfig,
) -> Tuple[Dict[str, object], bool, pd.DataFrame]:
    labels = period_labels(cfg, engine.plan.periods)
    if args.mode == "schedule":
        pending = [item for item in engine.items() if not item.is_scheduled]
        result = engine.auto_schedule(pending)
        report = engine.validate_portfolio()
        grid = result.scenario.to_frame(labels)
        _print_table("Schedule:", result.to_frame())
        _print_table("\nCapacity grid:", grid)
        _print_violations(result.violations)
        payload = {
            "mode": args.mode,
            "period_labels": labels,
            "schedule": result.to_dict(),
            "health": report.to_dict(),
        }
        return payload, result.feasible, grid

    if args.mode == "what-if":
        result = engine.what_if(changes)
        grid = result.projected.to_frame(labels)
        print(
            f"Utilization: {result.baseline.utilization:.1%} -> {result.projected.utilization:.1%} "
            f"({result.delta.utilization_change:+.1%})"
        )
        _print_table("\nProjected capacity grid:", grid)
        print(f"\nNew violations: {len(result.delta.new_violations)}")
        print(f"Resolved violations: {len(result.delta.resolved_violations)}")
        _print_violations(result.violations)
        payload = {"mode": args.mode, "period_labels": labels, "what_if": result.to_dict()}
        return payload, result.feasible, grid

    report = engine.validate_portfolio()
    _print_table("Portfolio:", report.to_frame())
    print(f"\nHealth score: {report.score} ({'healthy' if report.healthy else 'unhealthy'})")
    print(f"Utilization: {report.summary.overall_utilization:.1%}")
    _print_violations(report.violations)
    payload = {"mode": args.mode, "period_labels": labels, "health": report.to_dict()}
    return payload, report.healthy, report.scenario.to_frame(labels)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    project_dir = Path(args.project_dir).resolve()
    try:
        paths = _resolve_inputs(project_dir, args.mode)
        cfg = load_config(paths["config"]) if paths["config"] else GovernanceConfig()
        plan = load_capacity_plan(paths["capacity"])
        items = load_work_items(paths["items"])
        lifecycle = load_lifecycle(paths["lifecycle"]) if paths["lifecycle"] else None
        changes = load_changes(paths["changes"]) if args.mode == "what-if" else []
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    _configure_logging(cfg.logging_level)
    strays: List[str] = unknown_states(items, lifecycle)
    if strays:
        logger.warning("Items use states outside the lifecycle: %s", ", ".join(strays))

    engine = GovernanceEngine(plan, config=cfg, lifecycle=lifecycle)
    try:
        engine.add_items(items)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    payload, feasible, grid = _run(engine, args, changes, cfg)

    if not args.dry_run:
        outdir = ensure_directory(Path(args.outdir) if args.outdir else project_dir / "output")
        report_path = outdir / "report.json"
        log_path = outdir / "decision_log.json"
        grid_path = outdir / "capacity_grid.csv"
        timeline_path = outdir / "timeline.csv"
        write_json(payload, report_path)
        write_json(engine.decision_log.to_list(), log_path)
        write_csv(grid, grid_path)
        write_csv(timeline_frame(engine.items()), timeline_path)
        for path in (report_path, log_path, grid_path, timeline_path):
            print(f"Wrote {path}")

    if args.strict and not feasible:
        sys.exit(1)


if __name__ == "__main__":
    main()
