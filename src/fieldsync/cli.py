"""fieldsync CLI - command-line interface for field photo sync and scheduling."""

import typer

from fieldsync import __version__
from fieldsync.cli_commands.queue import queue_app
from fieldsync.cli_commands.schedule import schedule_app
from fieldsync.config import get_settings
from fieldsync.logging import setup_logging

app = typer.Typer(
    name="fieldsync",
    help="fieldsync - offline photo uploads and crew schedule checks for restoration teams.",
    no_args_is_help=True,
)

app.add_typer(queue_app, name="queue")
app.add_typer(schedule_app, name="schedule")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"fieldsync {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """fieldsync - offline photo uploads and crew schedule checks."""
    settings = get_settings()
    setup_logging(
        settings.log_level,
        log_file=settings.data_path / "fieldsync.log",
        device_id=settings.device_id,
    )


if __name__ == "__main__":
    app()
