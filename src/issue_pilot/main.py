"""CLI entrypoint for issue-pilot."""

import logging
from pathlib import Path

import rich_click as click

from issue_pilot import __version__
from issue_pilot.config import ConfigError
from issue_pilot.orchestrator.controllers import (
    CheckEnabledCommand,
    IndicateCommand,
    IssuePilotCliController,
    ParseCommandInput,
    PreflightCommand,
    RunCommand,
    UsageSummaryCommand,
)
from issue_pilot.orchestrator.models import AgentRunError, MissingCredentialsError
from issue_pilot.orchestrator.platform import PlatformApiError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = IssuePilotCliController()

_HOME_OPTION = click.option(
    "--home",
    "home_dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Orchestrator home directory. Defaults to ISSUE_PILOT_HOME or `.issue-pilot`.",
)


@click.group()
@click.version_option(version=__version__, prog_name="issue-pilot")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging verbosity.",
)
def issue_pilot(log_level: str) -> None:
    """Issue conversation orchestrator for CI runners."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@issue_pilot.command("run")
@_HOME_OPTION
def run(home_dir: Path | None) -> None:
    """Handle the issue event described by the `GITHUB_*` environment."""

    try:
        lines = CONTROLLER.run(RunCommand(home_dir=home_dir))
    except ConfigError as error:
        raise click.ClickException(f"Configuration error: {error}") from error
    except MissingCredentialsError as error:
        raise click.ClickException(str(error)) from error
    except AgentRunError as error:
        raise click.ClickException(f"Agent run failed: {error}") from error
    except PlatformApiError as error:
        raise click.ClickException(f"Issue platform error: {error}") from error
    _emit_lines(lines)


@issue_pilot.command("preflight")
@_HOME_OPTION
def preflight(home_dir: Path | None) -> None:
    """Validate the orchestrator home before a run."""

    try:
        result = CONTROLLER.preflight(PreflightCommand(home_dir=home_dir))
    except ConfigError as error:
        raise click.ClickException(f"Configuration error: {error}") from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Preflight failed.")


@issue_pilot.command("check-enabled")
@_HOME_OPTION
def check_enabled(home_dir: Path | None) -> None:
    """Fail unless the repository opted in with `ENABLED.md`."""

    result = CONTROLLER.check_enabled(CheckEnabledCommand(home_dir=home_dir))
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("issue-pilot is not enabled for this repository.")


@issue_pilot.command("indicate")
@_HOME_OPTION
def indicate(home_dir: Path | None) -> None:
    """Add the in-progress reaction to the triggering comment or issue."""

    try:
        lines = CONTROLLER.indicate(IndicateCommand(home_dir=home_dir))
    except ConfigError as error:
        raise click.ClickException(f"Configuration error: {error}") from error
    _emit_lines(lines)


@issue_pilot.command("parse")
@click.argument("text")
def parse(text: str) -> None:
    """Show how a comment would be classified."""

    _emit_lines(CONTROLLER.parse(ParseCommandInput(text=text)))


@issue_pilot.command("usage")
@_HOME_OPTION
@click.option(
    "--issue",
    "issue_number",
    type=click.IntRange(min=1),
    default=None,
    help="Only show runs for this issue.",
)
def usage(home_dir: Path | None, issue_number: int | None) -> None:
    """Summarize `state/usage.log` per issue."""

    _emit_lines(
        CONTROLLER.usage(UsageSummaryCommand(home_dir=home_dir, issue_number=issue_number)),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    issue_pilot()
