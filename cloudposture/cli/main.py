"""Main CLI entry point for cloudposture."""

from pathlib import Path
from typing import Optional

import click
import structlog
from rich.console import Console
from rich.panel import Panel

from cloudposture import __version__
from cloudposture.config import load_config, load_config_from_file, set_config
from cloudposture.core.exceptions import ConfigurationError
from cloudposture.logger import configure_logging

console = Console()

logger = structlog.get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="cloudposture")
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    envvar="CLOUDPOSTURE_CONFIG",
    help="Path to a YAML or JSON configuration file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug logging",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], verbose: bool, debug: bool) -> None:
    """cloudposture: cloud security posture assessment.

    Scores a tenant's resource snapshot across network and platform
    protection domains and lists the security gaps found.
    """
    ctx.ensure_object(dict)

    try:
        settings = load_config_from_file(config) if config else load_config()
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]✗[/red] Configuration error: {e}", style="red")
        raise click.Abort() from e

    set_config(settings)
    ctx.obj["config"] = settings
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug

    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    else:
        level = settings.log_level
    configure_logging(level, json_output=settings.log_json)

    logger.debug("cli_initialized", config=str(config), verbose=verbose, debug=debug)


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    console.print(
        Panel(
            f"[bold cyan]cloudposture[/bold cyan] v{__version__}\n\n"
            f"Cloud security posture assessment pipeline",
            title="Version Info",
            border_style="cyan",
        )
    )


from cloudposture.cli.commands.assess import assess  # noqa: E402

cli.add_command(assess)


if __name__ == "__main__":
    cli()
