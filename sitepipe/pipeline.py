"""Task wiring and top-level commands for sitepipe.

Tasks:
- bundle: Run esbuild and sass (watch mode in development).
- generate: Run Jekyll.
- rename: Rename index.html to default.aspx in the generated site.
- serve: Start the dev server and the file watcher.
- copy-js: Copy the script bundles into the generated site and reload.
- css: Copy compiled stylesheets into the generated site and refresh them.

Commands are sequences over those tasks. A list inside a sequence is a
parallel group; every task in it finishes before the next step starts.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Any

from .bundle import BundleBuilder
from .config import RunConfig, load_config
from .generator import BuildSession, SiteGenerator
from .log import log
from .rewrite import rename_index_files
from .server import DevServer
from .tasks import Orchestrator, TaskResult
from .watcher import Watcher, registrations_from

COMMANDS: dict[str, tuple] = {
    "default": (["bundle"], "generate", "serve"),
    "build": (["bundle"], "generate"),
    "build-sp": (["bundle"], "generate", "rename"),
}


class Pipeline:
    """All tasks for one command, bound to one RunConfig.

    Attributes:
        project_root: Root directory of the project.
        run: The run configuration, fixed for the lifetime of the pipeline.
        settings: Project settings from sitepipe.yaml.
        session: Shared first-run flag and dev server handle.
        orchestrator: Registry the tasks are added to.
    """

    def __init__(
        self,
        project_root: Path,
        run: RunConfig,
        settings: dict[str, Any] | None = None,
    ):
        self.project_root = project_root
        self.run = run
        self.settings = settings if settings is not None else load_config(project_root)
        self.site_dir = project_root / self.settings["site_dir"]
        self.session = BuildSession()
        self.bundler = BundleBuilder(project_root, run, self.settings)
        self.generator = SiteGenerator(project_root, run, self.settings, self.session)
        self.watcher: Watcher | None = None
        self.orchestrator = Orchestrator(strict=run.strict)
        self.orchestrator.add("bundle", self.bundler.build)
        self.orchestrator.add("generate", self.generator.build)
        self.orchestrator.add("rename", self.rename)
        self.orchestrator.add("serve", self.serve)
        self.orchestrator.add("copy-js", self.copy_js)
        self.orchestrator.add("css", self.copy_css)

    async def rename(self) -> TaskResult:
        renamed = rename_index_files(self.site_dir)
        return TaskResult.ok("rename", f"{len(renamed)} file(s) renamed")

    async def serve(self) -> TaskResult:
        server = DevServer.from_settings(self.project_root, self.settings)
        await server.start()
        self.session.server = server
        self.watcher = Watcher(
            self.project_root,
            registrations_from(self.settings["watch"]),
            self.orchestrator.trigger,
            loop=asyncio.get_running_loop(),
        )
        self.watcher.start()
        return TaskResult.ok("serve")

    def _copy_into_site(self, name: str, sources: list[Path]) -> TaskResult:
        for rel in sources:
            dest = self.site_dir / rel
            dest.parent.mkdir(parents=True, exist_ok=True)
            try:
                shutil.copy2(self.project_root / rel, dest)
            except OSError as exc:
                return TaskResult.warning(name, str(exc))
        return TaskResult.ok(name)

    async def copy_js(self) -> TaskResult:
        output = Path(self.settings["script_output"])
        sources = [output / f"{entry}.js" for entry in self.settings["scripts"]]
        result = self._copy_into_site("copy-js", sources)
        if self.session.server is not None:
            self.session.server.reload()
        return result

    async def copy_css(self) -> TaskResult:
        sources = [Path(output) for output in self.settings["stylesheets"].values()]
        result = self._copy_into_site("css", sources)
        if self.session.server is not None:
            self.session.server.inject_css()
        return result

    async def execute(self, command: str) -> list[TaskResult]:
        """Run a command's sequence.

        The ``default`` command keeps running after its sequence until the
        surrounding task is cancelled.
        """
        try:
            results = await self.orchestrator.run_sequence(*COMMANDS[command])
            if command == "default":
                log("Watching for changes. Press Ctrl-C to stop.")
                await asyncio.Event().wait()
            return results
        finally:
            await self.close()

    async def close(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        await self.bundler.stop()
        await self.orchestrator.cancel_background()
        if self.session.server is not None:
            await self.session.server.stop()
            self.session.server = None


def run_command(command: str, project_root: Path, strict: bool = False) -> list[TaskResult]:
    """Run a top-level command to completion.

    Args:
        command: ``default``, ``build`` or ``build-sp``.
        project_root: Root directory of the project.
        strict: Halt the sequence on warnings.

    Returns:
        Results of every task in the sequence.
    """
    run = RunConfig.for_command(command, strict=strict)
    pipeline = Pipeline(project_root, run)
    return asyncio.run(pipeline.execute(command))
