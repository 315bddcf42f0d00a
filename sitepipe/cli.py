"""Command-line interface for sitepipe.

This module defines the CLI commands using Click framework.

Commands:
- default: Bundle, generate, then serve with live reload (also runs when no
  command is given). Runs until interrupted.
- build: Production build.
- build-sp: Production build for the alternate hosting target, renaming
  index.html files to default.aspx.
"""

from __future__ import annotations

from pathlib import Path

import click

from . import __version__
from .config import ConfigError
from .executable_utils import ExecutableNotFoundError
from .tasks import SequenceHalted

_STRICT_HELP = "Abort the build when a tool reports errors"


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="sitepipe")
@click.pass_context
def cli(ctx: click.Context):
    """Sitepipe static site build pipeline."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(default)


@cli.command()
def default():
    """Build for development, then serve and watch for changes."""
    try:
        _run("default")
    except KeyboardInterrupt:
        click.echo("Stopped.")


@cli.command()
@click.option("--strict", is_flag=True, help=_STRICT_HELP)
def build(strict: bool):
    """Production build."""
    _run("build", strict=strict)


@cli.command("build-sp")
@click.option("--strict", is_flag=True, help=_STRICT_HELP)
def build_sp(strict: bool):
    """Production build with index.html renamed to default.aspx."""
    _run("build-sp", strict=strict)


def _run(command: str, strict: bool = False) -> None:
    project_root = Path.cwd()
    from .pipeline import run_command

    try:
        run_command(command, project_root, strict=strict)
    except ConfigError as exc:
        _fail(str(exc))
    except ExecutableNotFoundError as exc:
        _fail(f"'{exc.name}' is not installed or not on PATH")
    except SequenceHalted as exc:
        _fail(f"Task '{exc.result.name}' failed: {exc.result.message}")
    except OSError as exc:
        _fail(str(exc))


def _fail(message: str) -> None:
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    click.echo(click.style(f"  Error: {message}", fg="white"), err=True)
    raise SystemExit(1) from None


def main():
    """Entry point for the CLI application."""
    cli()
