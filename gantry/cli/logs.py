"""Logs subcommand for gantry CLI: list and inspect run records."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from tabulate import tabulate

from gantry.infra.tools.env import encode_pipeline_name, get_runs_dir

logs_app = typer.Typer(name="logs", help="List and inspect gantry run records")

# Required keys for valid run records
_REQUIRED_KEYS = {"run_id", "started_at", "config"}

# Default limit for number of runs to display
_DEFAULT_LIMIT = 20


def _discover_run_files(pipeline: str | None) -> list[Path]:
    """Discover run record JSON files.

    Args:
        pipeline: Only search this pipeline's directory. None searches all.

    Returns:
        List of JSON file paths sorted by filename descending (newest first).
    """
    runs_dir = get_runs_dir()
    if pipeline is not None:
        runs_dir = runs_dir / encode_pipeline_name(pipeline)
    if not runs_dir.exists():
        return []
    files = list(runs_dir.rglob("*.json"))
    # Timestamps in filenames give newest first
    return sorted(files, key=lambda p: p.name, reverse=True)


def _parse_run_file(path: Path) -> dict[str, Any] | None:
    """Parse a run record, returning None for corrupt or foreign files."""
    try:
        with path.open() as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        print(f"Warning: skipping corrupt file {path}: {e}", file=sys.stderr)
        return None
    if not isinstance(data, dict) or not _REQUIRED_KEYS.issubset(data.keys()):
        return None
    if not isinstance(data.get("run_id"), str) or not isinstance(data.get("config"), dict):
        return None
    return {**data, "record_path": str(path)}


def _format_null(value: object) -> str:
    """Format value for table display, showing '-' for None."""
    return "-" if value is None else str(value)


def _summary_row(run: dict[str, Any]) -> dict[str, Any]:
    config = run["config"]
    outcome = run.get("outcome") or {}
    return {
        "run_id": run["run_id"],
        "started_at": run.get("started_at"),
        "pipeline": config.get("pipeline"),
        "trigger": config.get("trigger"),
        "ref": config.get("ref"),
        "state": run.get("state"),
        "exit_code": outcome.get("exit_code"),
        "record_path": run["record_path"],
    }


def find_run(run_id: str) -> dict[str, Any] | None:
    """Find a run record by full run id or unique prefix.

    Raises:
        typer.Exit: If the prefix matches more than one run.
    """
    matches = []
    for path in _discover_run_files(None):
        run = _parse_run_file(path)
        if run is not None and run["run_id"].startswith(run_id):
            matches.append(run)
    if len(matches) > 1:
        print(f"Run id prefix '{run_id}' is ambiguous", file=sys.stderr)
        raise typer.Exit(1)
    return matches[0] if matches else None


@logs_app.command(name="list")
def list_runs(
    pipeline: Annotated[
        str | None,
        typer.Option(
            "--pipeline",
            "-p",
            help="Only show runs of this pipeline",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON",
        ),
    ] = False,
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            help="Maximum number of runs to display",
            min=1,
        ),
    ] = _DEFAULT_LIMIT,
) -> None:
    """List recent pipeline runs."""
    runs: list[dict[str, Any]] = []
    for path in _discover_run_files(pipeline):
        run = _parse_run_file(path)
        if run is not None:
            runs.append(_summary_row(run))
        if len(runs) >= limit:
            break

    if not runs:
        print("[]" if json_output else "No runs found")
        return

    if json_output:
        print(json.dumps(runs, indent=2))
        return

    headers = ["run_id", "started_at", "pipeline", "trigger", "ref", "state", "exit", "path"]
    rows = [
        [
            run["run_id"][:8],  # Short ID for display
            _format_null(run["started_at"]),
            _format_null(run["pipeline"]),
            _format_null(run["trigger"]),
            _format_null(run["ref"]),
            _format_null(run["state"]),
            _format_null(run["exit_code"]),
            run["record_path"],
        ]
        for run in runs
    ]
    print(tabulate(rows, headers=headers, tablefmt="simple"))


@logs_app.command()
def show(
    run_id: Annotated[
        str,
        typer.Argument(
            help="Run ID (or unique prefix) to show details for",
        ),
    ],
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON",
        ),
    ] = False,
) -> None:
    """Show gate decision and step results for a specific run."""
    run = find_run(run_id)
    if run is None:
        print(f"No run found with id '{run_id}'", file=sys.stderr)
        raise typer.Exit(1)

    if json_output:
        print(json.dumps(run, indent=2))
        return

    config = run["config"]
    outcome = run.get("outcome") or {}
    gate = run.get("gate") or {}
    details = [
        ["run_id", run["run_id"]],
        ["pipeline", _format_null(config.get("pipeline"))],
        ["trigger", _format_null(config.get("trigger"))],
        ["ref", _format_null(config.get("ref"))],
        ["sha", _format_null(config.get("sha") or None)],
        ["actor", _format_null(config.get("actor") or None)],
        ["runner", _format_null(run.get("runner_label"))],
        ["gate", _format_null(gate.get("reason"))],
        ["state", _format_null(run.get("state"))],
        ["cause", _format_null(outcome.get("cause"))],
        ["teardown_error", _format_null(run.get("teardown_error"))],
        ["record", run["record_path"]],
    ]
    print(tabulate(details, tablefmt="plain"))

    steps = outcome.get("steps") or []
    if steps:
        print()
        rows = [
            [
                s.get("name"),
                s.get("status"),
                _format_null(s.get("exit_code")),
                f"{s.get('duration_seconds', 0.0):.1f}s",
                _format_null(s.get("cause")),
            ]
            for s in steps
        ]
        print(
            tabulate(
                rows,
                headers=["step", "status", "exit", "duration", "cause"],
                tablefmt="simple",
            )
        )
