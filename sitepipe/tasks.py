"""Task orchestration for sitepipe.

Tasks are named async callables returning a TaskResult. A sequence is a list
of steps; each step is either a single task name or a list of names that run
concurrently. A step starts only after every task in the previous step has
returned, so "A before B" means B never starts before A's underlying work has
finished.

Results carry a status:
- OK: the task did what it was asked.
- WARNING: a tool reported errors. Logged; the sequence continues unless the
  task was registered with ``halt_on_warning``.
- FATAL: the sequence stops with SequenceHalted.

Exceptions raised inside a task are not caught here; they propagate to the
caller of run_sequence.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from .log import error, log


class Status(Enum):
    OK = "ok"
    WARNING = "warning"
    FATAL = "fatal"


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one task run.

    Attributes:
        name: Task name.
        status: OK, WARNING or FATAL.
        message: Optional human-readable detail.
    """

    name: str
    status: Status = Status.OK
    message: str = ""

    @classmethod
    def ok(cls, name: str, message: str = "") -> TaskResult:
        return cls(name, Status.OK, message)

    @classmethod
    def warning(cls, name: str, message: str) -> TaskResult:
        return cls(name, Status.WARNING, message)

    @classmethod
    def fatal(cls, name: str, message: str) -> TaskResult:
        return cls(name, Status.FATAL, message)


class SequenceHalted(Exception):
    """Raised when a task result stops a sequence.

    Attributes:
        result: The result that halted the sequence.
    """

    def __init__(self, result: TaskResult):
        self.result = result
        super().__init__(f"{result.name}: {result.message or result.status.value}")


class UnknownTaskError(KeyError):
    pass


TaskFunc = Callable[[], Awaitable[TaskResult]]
Step = str | Sequence[str]


@dataclass
class _Registered:
    func: TaskFunc
    halt_on_warning: bool


class Orchestrator:
    """Registry of named tasks plus the sequence executor.

    Attributes:
        strict: Default ``halt_on_warning`` for tasks that do not set it.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self._tasks: dict[str, _Registered] = {}
        self._background: set[asyncio.Task] = set()

    def add(self, name: str, func: TaskFunc, halt_on_warning: bool | None = None) -> None:
        """Register a task under ``name``, replacing any previous one."""
        halt = self.strict if halt_on_warning is None else halt_on_warning
        self._tasks[name] = _Registered(func, halt)

    def __contains__(self, name: str) -> bool:
        return name in self._tasks

    @property
    def names(self) -> list[str]:
        return list(self._tasks)

    def _lookup(self, name: str) -> _Registered:
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(name) from None

    async def run(self, name: str) -> TaskResult:
        """Run a single task and log its outcome."""
        registered = self._lookup(name)
        log(f"Starting '{name}'...")
        result = await registered.func()
        if result.status is Status.OK:
            log(f"Finished '{name}'")
        else:
            error(f"'{name}' reported {result.status.value}: {result.message}")
        return result

    def _check(self, result: TaskResult) -> None:
        if result.status is Status.FATAL:
            raise SequenceHalted(result)
        if result.status is Status.WARNING and self._lookup(result.name).halt_on_warning:
            raise SequenceHalted(result)

    async def run_sequence(self, *steps: Step) -> list[TaskResult]:
        """Run steps in order, each step's tasks concurrently.

        Args:
            steps: Task names, or lists of names forming a parallel group.

        Returns:
            Results of every task, in step order.

        Raises:
            SequenceHalted: If a result is FATAL, or a WARNING from a task
                registered with ``halt_on_warning``.
            UnknownTaskError: If a step names an unregistered task.
        """
        results: list[TaskResult] = []
        for step in steps:
            group = [step] if isinstance(step, str) else list(step)
            for name in group:
                self._lookup(name)
            # Every task in the group settles before an exception is re-raised.
            outcomes = await asyncio.gather(
                *(self.run(name) for name in group), return_exceptions=True
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            group_results = list(outcomes)
            results.extend(group_results)
            for result in group_results:
                self._check(result)
        return results

    def trigger(self, name: str) -> asyncio.Task:
        """Schedule a task on the running loop without waiting for it.

        Used for watch-triggered reruns; the outcome is only logged.
        """
        self._lookup(name)
        task = asyncio.get_running_loop().create_task(self.run(name))
        self._background.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            error(f"{type(exc).__name__}: {exc}")

    async def cancel_background(self) -> None:
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
