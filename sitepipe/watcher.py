"""File watching for sitepipe.

Maps filesystem changes to the task that has to re-run. Each registration pairs
a task name with a list of glob patterns relative to the project root:

- ``*`` matches any run of characters inside one path segment.
- ``?`` matches one character inside a segment.
- ``**/`` matches zero or more whole directories.

watchdog delivers events on its observer thread; they are handed to the event
loop with ``call_soon_threadsafe`` before any task is triggered. There is no
debouncing: a burst of changes can trigger the same task several times.

Key classes:
- WatchRegistration: Patterns and the task they trigger.
- Watcher: Owns the watchdog observer and dispatches events.
- _ChangeHandler: watchdog handler forwarding events to the Watcher.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .log import log

_WILDCARDS = re.compile(r"[*?\[]")

# watchdog event type -> word used in log lines
EVENT_NAMES = {
    "created": "added",
    "modified": "changed",
    "deleted": "deleted",
    "moved": "renamed",
}


def pattern_to_regex(pattern: str) -> re.Pattern:
    """Compile a glob pattern into an anchored regular expression."""
    out = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


def pattern_base(pattern: str) -> str:
    """Return the deepest directory of ``pattern`` that has no wildcard.

    Examples:
        >>> pattern_base("pages/**/*.html")
        'pages'
        >>> pattern_base("js/bundle.js")
        'js'
        >>> pattern_base("*.md")
        '.'
    """
    parts = pattern.split("/")[:-1]
    base = []
    for part in parts:
        if _WILDCARDS.search(part):
            break
        base.append(part)
    return "/".join(base) or "."


@dataclass(frozen=True)
class WatchRegistration:
    """A set of patterns and the task to run when one of them changes."""

    task: str
    patterns: tuple[str, ...]

    def matches(self, rel_path: str) -> bool:
        return any(pattern_to_regex(p).match(rel_path) for p in self.patterns)


def registrations_from(watch: Mapping[str, Iterable[str]]) -> list[WatchRegistration]:
    """Build registrations from the ``watch`` section of the settings."""
    return [WatchRegistration(task, tuple(patterns)) for task, patterns in watch.items()]


class Watcher:
    """Observes the project tree and triggers tasks for matching changes.

    Attributes:
        project_root: Root that patterns are relative to.
        registrations: Pattern sets and their tasks.
        trigger: Called with a task name for every matching change.
    """

    def __init__(
        self,
        project_root: Path,
        registrations: list[WatchRegistration],
        trigger: Callable[[str], object],
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.project_root = project_root.resolve()
        self.registrations = registrations
        self.trigger = trigger
        self._loop = loop
        self._observer: Observer | None = None

    def _relative(self, path: str) -> str | None:
        try:
            return Path(path).resolve().relative_to(self.project_root).as_posix()
        except ValueError:
            return None

    def tasks_for(self, path: str) -> list[str]:
        """Return the tasks registered for ``path``, in registration order."""
        rel = self._relative(path)
        if rel is None:
            return []
        return [reg.task for reg in self.registrations if reg.matches(rel)]

    def handle(self, path: str, event_type: str) -> None:
        """Log the change and trigger every task registered for it."""
        action = EVENT_NAMES.get(event_type, event_type)
        for task in self.tasks_for(path):
            log(f"File {path} was {action}, running {task}", tag="Watcher")
            self.trigger(task)

    def dispatch(self, path: str, event_type: str) -> None:
        """Entry point for the observer thread."""
        if self._loop is None:
            self.handle(path, event_type)
        else:
            self._loop.call_soon_threadsafe(self.handle, path, event_type)

    def watch_dirs(self) -> list[tuple[Path, bool]]:
        """Return ``(directory, recursive)`` pairs covering every pattern."""
        seen: dict[str, bool] = {}
        for reg in self.registrations:
            for pattern in reg.patterns:
                base = pattern_base(pattern)
                seen[base] = seen.get(base, False) or base != "."
        return [(self.project_root / base, recursive) for base, recursive in seen.items()]

    def start(self) -> None:
        handler = _ChangeHandler(self)
        observer = Observer()
        for directory, recursive in self.watch_dirs():
            if directory.exists():
                observer.schedule(handler, str(directory), recursive=recursive)
            else:
                log(f"Skipping missing directory {directory}", tag="Watcher")
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: Watcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event):
        if event.is_directory or event.event_type not in EVENT_NAMES:
            return
        self.watcher.dispatch(event.src_path, event.event_type)
        dest = getattr(event, "dest_path", "")
        if event.event_type == "moved" and dest:
            self.watcher.dispatch(dest, event.event_type)
