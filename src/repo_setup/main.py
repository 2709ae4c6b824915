import asyncio
import sys
from pathlib import Path

import click
from rich.console import Console

from repo_setup.orchestrator import RepositorySetup, SetupRunOptions
from repo_setup.settings import SetupSettings
from repo_setup.trusted_publishing import TrustedPublishing, TrustedPublishingOptions
from repo_setup.utilities.logging import configure_logging

cwd_option = click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path.cwd,
    help="The directory of the repository (defaults to the current directory)",
)
force_option = click.option("--force", "-f", is_flag=True, default=False, help="Skip confirmation prompts")
dry_run_option = click.option("--dry-run", is_flag=True, default=False, help="Show what would change without making changes")


@click.group()
@click.pass_context
def cli(ctx: click.Context):
    """Set up GitHub and Bitbucket repositories: branch protection, CI, secrets and npm publishing."""

    settings = SetupSettings.from_env()
    configure_logging(level=settings.logging_level)
    ctx.obj = settings


@cli.command()
@force_option
@dry_run_option
@cwd_option
@click.option(
    "--platform",
    "platform_override",
    type=click.Choice(["github", "bitbucket"]),
    default=None,
    help="Force the hosting platform instead of detecting it from the origin remote",
)
@click.pass_obj
def setup(settings: SetupSettings, force: bool, dry_run: bool, cwd: Path, platform_override: str | None):
    """Configure the repository with branch protection, CI and publishing best practices."""

    options = SetupRunOptions(cwd=cwd, force=force, dry_run=dry_run, platform_override=platform_override)
    repository_setup = RepositorySetup(options=options, settings=settings, console=Console())

    sys.exit(asyncio.run(repository_setup.run()))


@cli.group(name="trusted-publishing")
def trusted_publishing():
    """Migrate npm publishing to OIDC trusted publishing."""


@trusted_publishing.command(name="setup")
@force_option
@dry_run_option
@cwd_option
@click.pass_obj
def trusted_publishing_setup(settings: SetupSettings, force: bool, dry_run: bool, cwd: Path):
    """Update the release workflow for OIDC trusted publishing."""

    options = TrustedPublishingOptions(cwd=cwd, force=force, dry_run=dry_run)
    sys.exit(TrustedPublishing(options=options, settings=settings).setup())


@trusted_publishing.command(name="status")
@cwd_option
@click.pass_obj
def trusted_publishing_status(settings: SetupSettings, cwd: Path):
    """Check the current trusted publishing configuration."""

    options = TrustedPublishingOptions(cwd=cwd)
    sys.exit(TrustedPublishing(options=options, settings=settings).status())


if __name__ == "__main__":
    cli()
