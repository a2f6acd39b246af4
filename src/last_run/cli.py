"""
last-run CLI - Command-line interface.

Retrieve and store the last-run timestamp from a workflow step.
"""

import asyncio
import logging

import typer
from rich.console import Console

from last_run import __version__
from last_run.actions import configure_logging, debug_enabled, group, set_failed, set_output
from last_run.artifacts import ArtifactClient
from last_run.artifacts.github import GitHubArtifactClient
from last_run.config import LastRunConfig
from last_run.core.exceptions import ConfigurationError
from last_run.store import RunOutcome, TimestampStore
from last_run.validation import validate_timestamp

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="last-run",
    help="Persist and retrieve the timestamp of the last workflow run",
    no_args_is_help=True,
)
console = Console()


def build_client(config: LastRunConfig) -> GitHubArtifactClient:
    """Create the GitHub artifact client for a configuration."""
    return GitHubArtifactClient(
        token=config.token,
        repository=config.repository,
        api_url=config.api_url,
        runtime_token=config.runtime_token,
        results_url=config.results_url,
        timeout_seconds=config.timeout_seconds,
    )


async def execute(config: LastRunConfig, client: ArtifactClient) -> RunOutcome:
    """Run the timestamp store against ``client``."""
    store = TimestampStore.from_config(config, client)
    return await store.run(
        config.mode,
        fail_if_missing=config.fail_if_missing,
        on_output=set_output,
        stage=group,
    )


async def _execute(config: LastRunConfig) -> RunOutcome:
    async with build_client(config) as client:
        return await execute(config, client)


@app.command()
def run(
    mode: str = typer.Option(
        "get",
        "--mode",
        "-m",
        envvar="INPUT_MODE",
        help="get, set or get-and-set (unknown values behave like get)",
    ),
    fail_if_missing: bool = typer.Option(
        False,
        "--fail-if-missing",
        envvar="INPUT_FAIL-IF-MISSING",
        help="Fail when no valid previous timestamp exists",
    ),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """Retrieve and/or store the last-run timestamp."""
    configure_logging(debug or debug_enabled())

    try:
        config = LastRunConfig.from_env(mode=mode, fail_if_missing=fail_if_missing)
    except ConfigurationError as e:
        set_failed(str(e))
        logger.debug("Configuration error details: %s", e.to_dict())
        raise typer.Exit(1)

    outcome = asyncio.run(_execute(config))

    # Exit code based on outcome
    if outcome.failed:
        raise typer.Exit(1)


@app.command()
def validate(
    value: str = typer.Argument(..., help="Timestamp to check"),
):
    """Check whether a value is a valid stored timestamp."""
    result = validate_timestamp(value)
    if result.ok:
        console.print(f"[green]valid[/green] {value}")
        return

    console.print(f"[red]invalid ({result.reason.value})[/red] {value!r}")
    raise typer.Exit(1)


@app.command()
def version():
    """Show version information."""
    console.print(f"last-run {__version__}")
