"""CLI entry point for rootmux.

Each command activates a runtime for a single workspace root, runs one
query against the language server and prints the result as JSON.
"""

import asyncio
from typing import Any, Awaitable, Optional

import typer
from rich.console import Console

from .. import __version__
from ..core.config import ConfigManager
from ..runtime.logging import bootstrap_logging
from ..util.error import format_error, format_unknown_error
from .cmd import query

app = typer.Typer(
    name="rootmux",
    help="rootmux - one language server session per workspace root",
    no_args_is_help=True,
    add_completion=False,
)

console = Console(stderr=True)

ROOT_OPTION = typer.Option(..., "--root", "-r", help="Workspace root URI or directory")
VERBOSE_OPTION = typer.Option(False, "--verbose", help="Print logs to stderr")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"rootmux {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """rootmux - one language server session per workspace root."""


def _execute(coro: Awaitable[Any], verbose: bool) -> Any:
    ConfigManager.provide(ConfigManager())
    bootstrap_logging(mode="cli", console=True if verbose else None)
    try:
        return asyncio.run(coro)
    except Exception as e:
        console.print(f"[red]Error:[/red] {format_error(e) or format_unknown_error(e)}")
        raise typer.Exit(1)


@app.command()
def hover(
    document: str = typer.Argument(..., help="Document URI or path"),
    line: int = typer.Argument(..., help="Zero-based line"),
    character: int = typer.Argument(..., help="Zero-based character"),
    root: str = ROOT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Show hover information at a position."""
    result = _execute(
        query.hover(query.normalize_root(root), query.normalize_uri(document), line, character),
        verbose,
    )
    typer.echo(query.dump(result))


@app.command()
def definition(
    document: str = typer.Argument(..., help="Document URI or path"),
    line: int = typer.Argument(..., help="Zero-based line"),
    character: int = typer.Argument(..., help="Zero-based character"),
    root: str = ROOT_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Find where the symbol at a position is defined."""
    result = _execute(
        query.definition(query.normalize_root(root), query.normalize_uri(document), line, character),
        verbose,
    )
    typer.echo(query.dump(result))


@app.command()
def references(
    document: str = typer.Argument(..., help="Document URI or path"),
    line: int = typer.Argument(..., help="Zero-based line"),
    character: int = typer.Argument(..., help="Zero-based character"),
    root: str = ROOT_OPTION,
    include_declaration: bool = typer.Option(
        True,
        "--include-declaration/--exclude-declaration",
        help="Include the declaration itself",
    ),
    verbose: bool = VERBOSE_OPTION,
):
    """Find references to the symbol at a position."""
    result = _execute(
        query.references(
            query.normalize_root(root),
            query.normalize_uri(document),
            line,
            character,
            include_declaration,
        ),
        verbose,
    )
    typer.echo(query.dump(result))


@app.command()
def preload(
    root: str = typer.Argument(..., help="Workspace root URI or directory"),
    verbose: bool = VERBOSE_OPTION,
):
    """Open every source file under a root on the language server."""
    count = _execute(query.preload(query.normalize_root(root)), verbose)
    typer.echo(query.dump({"root": query.normalize_root(root), "opened": count}))


def run(argv: Optional[list] = None) -> None:
    app(args=argv)


if __name__ == "__main__":
    run()
