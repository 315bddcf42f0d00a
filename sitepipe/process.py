"""Spawning external tools for sitepipe.

All real work in the pipeline happens in external processes. This module owns
their lifecycle: it resolves the executable, spawns it on the event loop,
streams stdout and stderr line by line into the log under a fixed tag, and
reports completion only once the process has exited and both streams are
drained.

Key classes:
- ProcessRunner: Spawns one-shot and resident processes for a tool.
- ResidentProcess: Handle for a long-lived watch-mode process.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path

from .executable_utils import require_executable
from .log import log

LineCallback = Callable[[str], None]

_CHUNK_SIZE = 64 * 1024


class ResidentProcess:
    """A watch-mode process that keeps running after its first build.

    ``ready`` is set the first time a line containing ``ready_marker`` is
    seen, or when the process exits, whichever comes first, so callers
    waiting on it never hang on a tool that died during startup.

    Attributes:
        name: Tool name used in log lines.
        process: The underlying asyncio subprocess.
        returncode: Exit status once the process has ended, else None.
    """

    def __init__(self, name: str, process: asyncio.subprocess.Process, ready_marker: str):
        self.name = name
        self.process = process
        self.ready_marker = ready_marker
        self.ready = asyncio.Event()
        self.returncode: int | None = None
        self._task: asyncio.Task | None = None

    def _observe(self, line: str) -> None:
        if not self.ready.is_set() and self.ready_marker in line:
            self.ready.set()

    async def wait_ready(self) -> None:
        await self.ready.wait()

    async def stop(self) -> None:
        """Terminate the process and wait for it to be reaped."""
        if self.returncode is None and self.process.returncode is None:
            self.process.terminate()
        if self._task is not None:
            await self._task


class ProcessRunner:
    """Runs one external tool.

    Attributes:
        tag: Prefix for every log line produced by the tool.
        project_root: Working directory for the spawned process.
    """

    def __init__(self, tag: str, project_root: Path):
        self.tag = tag
        self.project_root = project_root

    async def _spawn(self, executable: str, args: Sequence[str]) -> asyncio.subprocess.Process:
        resolved = require_executable(executable, self.project_root)
        return await asyncio.create_subprocess_exec(
            resolved,
            *args,
            cwd=str(self.project_root),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    def _emit(self, raw: bytes, callbacks: Sequence[LineCallback]) -> None:
        for message in raw.decode("utf-8", errors="replace").splitlines():
            if not message:
                continue
            log(message, tag=self.tag)
            for callback in callbacks:
                callback(message)

    async def _pump(self, stream: asyncio.StreamReader, callbacks: Sequence[LineCallback]) -> None:
        # Read fixed-size chunks; readline() fails on lines over the stream limit.
        pending = b""
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                break
            *lines, pending = (pending + chunk).split(b"\n")
            for raw in lines:
                self._emit(raw, callbacks)
        if pending:
            self._emit(pending, callbacks)

    async def _drain(self, process: asyncio.subprocess.Process, callbacks: Sequence[LineCallback]) -> int:
        await asyncio.gather(
            self._pump(process.stdout, callbacks),
            self._pump(process.stderr, callbacks),
        )
        return await process.wait()

    async def run(
        self,
        executable: str,
        args: Sequence[str],
        on_line: LineCallback | None = None,
    ) -> int:
        """Run the tool to completion.

        Args:
            executable: Tool name, resolved through find_executable.
            args: Argument vector, passed through unchanged.
            on_line: Optional callback receiving every output line.

        Returns:
            The process exit status.

        Raises:
            ExecutableNotFoundError: If the tool is not installed.
        """
        process = await self._spawn(executable, args)
        return await self._drain(process, [on_line] if on_line else [])

    async def start(
        self,
        executable: str,
        args: Sequence[str],
        ready_marker: str,
        on_line: LineCallback | None = None,
    ) -> ResidentProcess:
        """Spawn the tool in watch mode and return without waiting for it.

        The returned handle's ``ready`` event fires after the first build.
        """
        process = await self._spawn(executable, args)
        resident = ResidentProcess(executable, process, ready_marker)
        callbacks = [resident._observe] + ([on_line] if on_line else [])

        async def supervise() -> None:
            try:
                resident.returncode = await self._drain(process, callbacks)
            finally:
                resident.ready.set()
            log(f"{executable} exited with status {resident.returncode}", tag=self.tag)

        resident._task = asyncio.get_running_loop().create_task(supervise())
        return resident
