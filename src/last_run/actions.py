"""
GitHub Actions runner integration.

Renders log records as workflow commands, writes step outputs and wraps
stages in collapsible log groups.
"""

import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Mapping

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(message)s"
DEBUG_FORMAT = "%(name)s: %(message)s"


def escape_data(value: str) -> str:
    """Escape a workflow command message."""
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def issue_command(command: str, message: str = "", stream: IO[str] | None = None) -> None:
    """Write ``::command::message`` to stdout."""
    out = stream or sys.stdout
    out.write(f"::{command}::{escape_data(message)}\n")
    out.flush()


class WorkflowCommandHandler(logging.StreamHandler):
    """
    Logging handler emitting GitHub workflow commands.

    DEBUG -> ``::debug::``, WARNING -> ``::warning::``,
    ERROR and above -> ``::error::``; INFO is printed as plain text.
    """

    COMMANDS = {
        logging.DEBUG: "debug",
        logging.WARNING: "warning",
        logging.ERROR: "error",
        logging.CRITICAL: "error",
    }

    def __init__(self, stream: IO[str] | None = None):
        super().__init__(stream or sys.stdout)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        command = self.COMMANDS.get(record.levelno)
        if command is None:
            return message
        return f"::{command}::{escape_data(message)}"


def debug_enabled(environ: Mapping[str, str] | None = None) -> bool:
    """Return True when the runner requested debug logging."""
    env = os.environ if environ is None else environ
    return env.get("RUNNER_DEBUG") == "1"


def configure_logging(debug: bool = False, stream: IO[str] | None = None) -> logging.Handler:
    """
    Route ``last_run`` logging through a WorkflowCommandHandler.

    Returns:
        The installed handler
    """
    handler = WorkflowCommandHandler(stream)
    handler.setFormatter(logging.Formatter(DEBUG_FORMAT if debug else LOG_FORMAT))

    package_logger = logging.getLogger("last_run")
    for existing in list(package_logger.handlers):
        if isinstance(existing, WorkflowCommandHandler):
            package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    return handler


def set_output(
    name: str,
    value: str,
    environ: Mapping[str, str] | None = None,
    stream: IO[str] | None = None,
) -> None:
    """
    Publish a step output.

    Appends ``name=value`` to the file named by GITHUB_OUTPUT; outside a
    runner the pair is printed instead.
    """
    env = os.environ if environ is None else environ
    output_file = env.get("GITHUB_OUTPUT")
    if "\n" in value or "\r" in value:
        raise ValueError(f"Output '{name}' must be a single line")

    if output_file:
        with open(Path(output_file), "a", encoding="utf-8") as f:
            f.write(f"{name}={value}\n")
        logger.debug("set_output: %s written to %s", name, output_file)
    else:
        out = stream or sys.stdout
        out.write(f"{name}={value}\n")
        out.flush()


@contextmanager
def group(title: str, stream: IO[str] | None = None) -> Iterator[None]:
    """Wrap enclosed output in a collapsible log group."""
    issue_command("group", title, stream)
    try:
        yield
    finally:
        issue_command("endgroup", stream=stream)


def set_failed(message: str, stream: IO[str] | None = None) -> None:
    """Report a step failure; the caller sets the exit code."""
    issue_command("error", message, stream)
