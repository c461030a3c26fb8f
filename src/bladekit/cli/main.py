"""bladekit CLI Main Entry Point

Usage:
    bladekit render pages.home              # Render a view to stdout
    bladekit render pages.home -s title=Hi  # With data
    bladekit render pages.home -o out.html  # Write to file
    bladekit compile                        # Pre-compile every template
    bladekit clear                          # Remove compiled artifacts
    bladekit --version                      # Show version

Settings come from blade.yaml in the current directory or its parents;
-p/--path and --cache override them.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from bladekit._version import __version__
from bladekit.cache import CompiledCache
from bladekit.cli.errors import handle_error
from bladekit.cli.utils import (
    console,
    get_blade,
    load_config,
    load_data_file,
    parse_assignments,
    setup_logging,
)
from bladekit.exceptions import BladeError

typer_app = typer.Typer(no_args_is_help=True, help="Standalone Blade templates.")

ConfigOption = typer.Option(None, "-c", "--config", help="Path to blade.yaml.")
PathOption = typer.Option(None, "-p", "--path", help="View directory (repeatable).")
CacheOption = typer.Option(None, "--cache", help="Compiled template directory.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"bladekit {__version__}")
        raise typer.Exit()


@typer_app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logging."),
) -> None:
    setup_logging(verbose)


@typer_app.command()
def render(
    view: str = typer.Argument(..., help="View name, e.g. pages.home or admin::dashboard."),
    config: Optional[Path] = ConfigOption,
    paths: Optional[List[Path]] = PathOption,
    cache: Optional[Path] = CacheOption,
    data_file: Optional[Path] = typer.Option(
        None, "-d", "--data", help="YAML/JSON file with render data."
    ),
    assignments: Optional[List[str]] = typer.Option(
        None, "-s", "--set", help="Render data as key=value (repeatable)."
    ),
    output: Optional[Path] = typer.Option(
        None, "-o", "--output", help="Write the rendered view to a file."
    ),
) -> None:
    """Render a view."""
    try:
        blade = get_blade(config, paths, cache)
        data = load_data_file(data_file) if data_file is not None else {}
        data.update(parse_assignments(assignments or []))
        text = blade.render(view, data)
    except BladeError as e:
        handle_error(e)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
        console.print(f"Wrote {view} to {output}")
    else:
        typer.echo(text, nl=False)


@typer_app.command()
def compile(
    directory: Optional[Path] = typer.Argument(
        None, help="Directory to compile (defaults to the first view path)."
    ),
    config: Optional[Path] = ConfigOption,
    paths: Optional[List[Path]] = PathOption,
    cache: Optional[Path] = CacheOption,
) -> None:
    """Compile every template ahead of time."""
    try:
        blade = get_blade(config, paths, cache)
        compiled = blade.compile(directory)
    except BladeError as e:
        handle_error(e)

    console.print(f"Compiled [bold]{len(compiled)}[/bold] templates into {blade.cache_path}")


@typer_app.command()
def clear(
    config: Optional[Path] = ConfigOption,
    cache: Optional[Path] = CacheOption,
) -> None:
    """Remove compiled templates from the cache directory."""
    try:
        settings = load_config(config, cache_path=cache)
    except BladeError as e:
        handle_error(e)

    removed = CompiledCache(settings.cache_path).clear()
    console.print(f"Removed {removed} compiled templates from {settings.cache_path}")


def app() -> None:
    """Entry point for the CLI."""
    typer_app()


if __name__ == "__main__":
    app()
