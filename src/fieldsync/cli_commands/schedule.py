"""Schedule conflict CLI commands."""

import json
from pathlib import Path

import typer
import yaml

from fieldsync.errors import ParseError
from fieldsync.schedule import ScheduleAssignment, TimeSlot, detect_conflicts

schedule_app = typer.Typer(
    name="schedule",
    help="Crew schedule helpers - check a time slot against existing assignments.",
    no_args_is_help=True,
)


def _load_assignments(path: Path) -> list[ScheduleAssignment]:
    """Read assignments from a YAML or JSON list of schedule rows."""
    with open(path) as f:
        rows = yaml.safe_load(f) or []
    if not isinstance(rows, list):
        raise typer.BadParameter("assignments file must contain a list", param_hint="FILE")
    try:
        return [ScheduleAssignment.from_dict(row) for row in rows]
    except (KeyError, TypeError, AttributeError) as e:
        raise typer.BadParameter(f"invalid assignment row: {e}", param_hint="FILE")


@schedule_app.command()
def check(
    assignments_file: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        metavar="FILE",
        help="YAML or JSON list of assignments (id, start_time, end_time, project_name)",
    ),
    start: str = typer.Option(..., "--start", "-s", help="Slot start, HH:MM"),
    end: str = typer.Option(..., "--end", "-e", help="Slot end, HH:MM"),
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Report assignments that overlap START-END. Exits 1 on conflicts."""
    try:
        assignments = _load_assignments(assignments_file)
    except yaml.YAMLError as e:
        raise typer.BadParameter(f"could not parse assignments: {e}", param_hint="FILE")

    try:
        conflicts = detect_conflicts(TimeSlot(start=start, end=end), assignments)
    except ParseError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    if output_json:
        typer.echo(json.dumps([{"job": c.job, "time": c.time} for c in conflicts]))
    elif conflicts:
        typer.echo("Scheduling Conflicts Detected:")
        for conflict in conflicts:
            typer.echo(f"  - {conflict.job} ({conflict.time})")
    else:
        typer.echo(f"No conflicts for {start} - {end}.")

    if conflicts:
        raise typer.Exit(1)
