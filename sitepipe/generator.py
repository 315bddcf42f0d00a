"""Jekyll invocation for sitepipe.

The generator is run as an external process. Its argument vector varies along
two independent axes:

- mode: production adds ``--drafts``.
- target: the alternate hosting target adds one ``--config=`` argument
  listing the base and override configuration files.

In development the generator also drives browser reloads. The first build
happens before any browser is connected, so it only clears
``BuildSession.first_run``; every later build notifies clients before it
starts and reloads them once it has finished.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .config import RunConfig
from .executable_utils import platform_executable
from .process import ProcessRunner
from .tasks import TaskResult

if TYPE_CHECKING:
    from .server import DevServer

BUILDING_MESSAGE = '<span style="color: grey">Running:</span> $ jekyll build'


@dataclass
class BuildSession:
    """Mutable state shared by the tasks of one command.

    Only touched from the event loop thread.

    Attributes:
        first_run: True until the first generator build has finished.
        server: The dev server, once the serve task has started it.
    """

    first_run: bool = True
    server: DevServer | None = None


def generator_arguments(
    run: RunConfig, config_files: list[str] | None = None
) -> list[str]:
    """Return the Jekyll argument vector for a run.

    Args:
        run: Active run configuration.
        config_files: Base and override configuration files used for the
            alternate target.
    """
    args = ["build", "--incremental"]
    if run.is_production:
        args.append("--drafts")
    if run.alternate_target:
        files = config_files or ["_config.yml", "_config_prod.yml"]
        args.append("--config=" + ",".join(files))
    return args


class SiteGenerator:
    """Runs the generator and gates reloads on the first-run flag.

    Attributes:
        run: Active run configuration.
        session: Shared per-command state.
        executable: Platform-specific generator executable name.
    """

    name = "generate"

    def __init__(
        self,
        project_root: Path,
        run: RunConfig,
        settings: dict[str, Any],
        session: BuildSession,
        runner: ProcessRunner | None = None,
    ):
        self.run = run
        self.session = session
        self.executable = platform_executable(settings["generator"])
        self.config_files = list(settings["generator_configs"])
        self.runner = runner or ProcessRunner("Jekyll", project_root)

    @property
    def arguments(self) -> list[str]:
        return generator_arguments(self.run, self.config_files)

    async def build(self) -> TaskResult:
        watching = not self.run.is_production
        server = self.session.server
        if watching and not self.session.first_run and server is not None:
            server.notify(BUILDING_MESSAGE)

        status = await self.runner.run(self.executable, self.arguments)

        if watching:
            if self.session.first_run:
                self.session.first_run = False
            elif server is not None:
                server.reload()
        if status:
            return TaskResult.warning(self.name, f"{self.executable} exited with status {status}")
        return TaskResult.ok(self.name)
