"""CLI command modules for fieldsync."""

from fieldsync.cli_commands.queue import queue_app
from fieldsync.cli_commands.schedule import schedule_app

__all__ = ["queue_app", "schedule_app"]
