"""Shared error handling for the bladekit CLI."""

import sys
from typing import NoReturn

import typer

from bladekit.exceptions import BladeError, RenderError


def exit_with_error(message: str, exit_code: int = 1) -> NoReturn:
    """Exit the program with an error message."""
    typer.echo(f"Error: {message}", err=True)
    sys.exit(exit_code)


def handle_error(error: Exception) -> NoReturn:
    """Handle and exit on bladekit errors."""
    if isinstance(error, RenderError) and error.line is not None:
        exit_with_error(f"{error} (line {error.line})")
    if isinstance(error, BladeError):
        exit_with_error(str(error))

    # Unexpected error
    typer.echo(f"Unexpected error: {error}", err=True)
    sys.exit(1)
