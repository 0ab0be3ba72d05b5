"""
User-facing status output.

Everything goes to stderr so that stdout stays reserved for the output of
delegated commands and for values meant to be captured with ``$(...)``.
"""

from rich.console import Console
from rich.markup import escape

_console = Console(stderr=True, highlight=False)


def get_console() -> Console:
    return _console


def set_console(console: Console) -> Console:
    """Swap the output console (used by tests). Returns the previous one."""
    global _console
    previous = _console
    _console = console
    return previous


def emit_info(message: str, markup: bool = False):
    _console.print(message if markup else escape(message))


def emit_success(message: str):
    _console.print(f"[green]{escape(message)}[/green]")


def emit_warning(message: str):
    _console.print(f"[yellow]{escape(message)}[/yellow]")


def emit_error(message: str):
    _console.print(f"[bold red]{escape(message)}[/bold red]")
