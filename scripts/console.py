"""
Colored operator status lines.
"""

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False)


def _status(style: str, marker: str, message: str) -> None:
    console.print(f"[{style}]{escape(marker)}[/{style}] {escape(message)}")


def log(message: str) -> None:
    _status('green', '[✓]', message)


def warn(message: str) -> None:
    _status('yellow', '[!]', message)


def err(message: str) -> None:
    _status('red', '[✗]', message)


def info(message: str) -> None:
    _status('blue', '[i]', message)


def step(title: str) -> None:
    console.print()
    console.print(f"[bold cyan]=== {escape(title)} ===[/bold cyan]")


def plain(message: str = '') -> None:
    """Print verbatim text (subprocess output, summary bullets)."""
    console.print(escape(message), soft_wrap=True)
