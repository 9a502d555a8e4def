"""Command-line interface for Kiln.

This module defines the CLI commands using Click framework.

Commands:
- new: Scaffold a new Kiln project.
- build: Build the site into the output directory.
- dev: Build, serve and rebuild on change with live reload.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

import click
import questionary

from . import __version__
from .errors import BuildError

# Path to the starter project copied by `kiln new`
_STARTER_DIR = Path(__file__).parent / "starter"


@click.group()
@click.version_option(version=__version__, prog_name="kiln")
def cli():
    """Kiln static site builder."""


@cli.command()
@click.option("--dev", "dev_mode", is_flag=True, help="Include the live reload script")
def build(dev_mode: bool):
    """Build the site into the output directory."""
    project_root = Path.cwd()
    from .build import build_site

    try:
        result = build_site(project_root, dev_mode=dev_mode)
    except BuildError as exc:
        _echo_failure(project_root, exc)
        raise SystemExit(1) from None
    if not result.ok:
        click.echo(
            click.style(
                f"Build failed: {len(result.failures)} page(s) could not be rendered",
                fg="red",
                bold=True,
            ),
            err=True,
        )
        for failure in result.failures:
            click.echo(click.style(f"  {failure.message}", fg="yellow"), err=True)
        raise SystemExit(1)
    click.echo(
        f"Built {len(result.pages)} pages in {len(result.locales)} locales "
        f"into {result.output_dir}"
    )


@cli.command()
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to serve the output directory (overrides kiln.yaml)",
)
@click.option(
    "--reload-port",
    type=int,
    required=False,
    help="Port of the live reload endpoint (overrides kiln.yaml reload_port)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for an optional reload websocket (overrides kiln.yaml ws_port)",
)
def dev(port: int | None, reload_port: int | None, ws_port: int | None):
    """Run dev server with live reload."""
    project_root = Path.cwd()
    from .server import DevServer

    server = DevServer(
        project_root, http_port=port, reload_port=reload_port, ws_port=ws_port
    )
    try:
        server.start()
    except BuildError as exc:
        _echo_failure(project_root, exc)
        raise SystemExit(1) from None
    except OSError as exc:
        raise click.ClickException(f"Cannot start dev server: {exc}") from exc


@cli.command()
@click.argument("directory", required=False)
def new(directory: str | None):
    """Scaffold a new Kiln project."""
    if directory is None:
        directory = questionary.text(
            "Output directory",
            validate=lambda x: len(x.strip()) > 0 or "Directory cannot be empty",
            style=_questionary_style(),
        ).ask()
        if directory is None:
            raise click.Abort()
        directory = directory.strip()
    target = Path(directory).resolve()
    if target.exists():
        raise click.ClickException(f"{directory} already exists")
    _scaffold(target)
    click.echo(f"New Kiln site created at {target}")


def _echo_failure(project_root: Path, exc: BuildError) -> None:
    """Print a user-friendly summary of a build error."""
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    if exc.source_path is not None:
        try:
            rel_path = exc.source_path.relative_to(project_root)
        except ValueError:
            rel_path = exc.source_path
        click.echo(click.style(f"  File: {rel_path}", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Create the starter project in ``root``.

    Args:
        root: Directory for the new project; must not exist yet.
    """
    for src_path in _STARTER_DIR.rglob("*"):
        if src_path.is_dir():
            continue
        rel_path = src_path.relative_to(_STARTER_DIR)
        dest_path = root / rel_path
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)

    _try_npm_setup(root)


def _try_npm_setup(root: Path) -> None:
    """Initialize package.json and install the CSS/JS tools if npm is available."""
    if os.environ.get("KILN_SKIP_NPM_INSTALL") == "1":
        return
    npm_bin = shutil.which("npm")
    if not npm_bin:
        click.echo("npm not found; install tailwindcss and esbuild manually.")
        return
    for args in (
        ["init", "-y"],
        ["install", "--save-dev", "tailwindcss@3", "esbuild"],
    ):
        try:
            subprocess.run(
                [npm_bin, *args],
                cwd=root,
                check=True,
                capture_output=True,
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            # Non-fatal: user can run npm manually
            click.echo(f"npm {' '.join(args)} failed: {exc}", err=True)
            return
