"""Console logging for sitepipe.

Every line is stamped with the wall clock time, ``[HH:MM:SS] message``, and
written through click so colors are stripped when output is not a terminal.
"""

from __future__ import annotations

from datetime import datetime

import click


def timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def log(message: str, *, tag: str | None = None, fg: str | None = None, err: bool = False) -> None:
    """Write one log line.

    Args:
        message: Text to write. Tool output is passed through verbatim.
        tag: Optional prefix such as ``"Jekyll"``, rendered in cyan.
        fg: Optional color for the message body.
        err: Write to stderr instead of stdout.
    """
    stamp = click.style(timestamp(), fg="bright_black")
    body = click.style(message, fg=fg) if fg else message
    if tag:
        body = f"{click.style(tag + ':', fg='cyan')} {body}"
    click.echo(f"[{stamp}] {body}", err=err)


def error(message: str, *, tag: str | None = None) -> None:
    log(message, tag=tag, fg="red", err=True)
