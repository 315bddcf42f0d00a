"""Bundle building for sitepipe.

The pipeline configuration is a plain description of what to bundle: script
entries, stylesheet entries, loader rules per file type and a list of named
optimization steps. It is translated into command lines for three external
tools:

- esbuild bundles the script entries.
- sass compiles the stylesheet entries.
- postcss (autoprefixer + cssnano) post-processes compiled stylesheets when
  the ``optimize-css`` step is enabled, which only production does.

The production configuration is derived from the development one by a deep
copy plus additive steps, so the development configuration is never touched.

Key classes and functions:
- PipelineConfig / Rule: The configuration record.
- development_config / production_config: Build the two variants.
- BundleBuilder: Runs the tools for one RunConfig and reports a summary.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import RunConfig
from .log import log
from .process import ProcessRunner, ResidentProcess
from .tasks import TaskResult

# Lines from the tools that mark a finished build.
READY_MARKER = "watching for changes"
REBUILD_MARKERS = ("build finished", "Compiled ")
ERROR_MARKERS = ("[ERROR]", "Error:", "error:")

PRODUCTION_PLUGINS = [
    "define-production",
    "minify",
    "optimize-css",
    "module-concatenation",
]

# Flags each optimization step adds to the esbuild command.
_ESBUILD_PLUGIN_FLAGS = {
    "define-production": ['--define:process.env.NODE_ENV="production"'],
    "minify": ["--minify"],
    "module-concatenation": ["--tree-shaking=true"],
}


@dataclass
class Rule:
    """How files with the given extensions are loaded.

    Attributes:
        extensions: File suffixes the rule applies to, e.g. ``(".js", ".jsx")``.
        loader: esbuild loader name.
    """

    extensions: tuple[str, ...]
    loader: str


@dataclass
class PipelineConfig:
    """Everything the bundler needs for one run.

    Attributes:
        context: Directory script entries are relative to.
        entries: Output bundle name mapped to its source entry.
        stylesheets: Stylesheet source mapped to its compiled output, both
            relative to the project root.
        output_dir: Directory receiving the bundles.
        rules: Loader rules per file type.
        plugins: Names of optimization steps to apply.
        watch: Keep the tools running and rebuild on change.
        sourcemap: ``inline`` for development, ``external`` for production.
    """

    context: Path
    entries: dict[str, str]
    stylesheets: dict[str, str]
    output_dir: Path
    rules: list[Rule] = field(default_factory=list)
    plugins: list[str] = field(default_factory=list)
    watch: bool = True
    sourcemap: str = "inline"

    def script_command(self) -> list[str]:
        """Return the esbuild argument vector for this configuration."""
        args = [f"{name}={self.context / source}" for name, source in self.entries.items()]
        args += ["--bundle", f"--outdir={self.output_dir}", f"--sourcemap={self.sourcemap}"]
        for rule in self.rules:
            args += [f"--loader:{ext}={rule.loader}" for ext in rule.extensions]
        for plugin in self.plugins:
            args += _ESBUILD_PLUGIN_FLAGS.get(plugin, [])
        if self.watch:
            args.append("--watch=forever")
        return args

    def style_command(self) -> list[str]:
        """Return the sass argument vector for this configuration."""
        args = [f"{source}:{output}" for source, output in self.stylesheets.items()]
        if "optimize-css" in self.plugins:
            args += ["--style=compressed", "--no-source-map"]
        else:
            args.append("--embed-source-map")
        if self.watch:
            args.append("--watch")
        return args

    def postcss_commands(self) -> list[list[str]]:
        """Return one postcss argument vector per compiled stylesheet.

        Empty unless the ``optimize-css`` step is enabled.
        """
        if "optimize-css" not in self.plugins:
            return []
        return [
            [output, "--use", "autoprefixer", "--use", "cssnano", "--replace", "--no-map"]
            for output in self.stylesheets.values()
        ]

    @property
    def artifact_dirs(self) -> list[Path]:
        dirs = [self.output_dir]
        for output in self.stylesheets.values():
            parent = Path(output).parent
            if parent not in dirs:
                dirs.append(parent)
        return dirs


def development_config(settings: dict[str, Any]) -> PipelineConfig:
    """Build the development pipeline configuration from project settings."""
    return PipelineConfig(
        context=Path(settings["source_dir"]),
        entries=dict(settings["scripts"]),
        stylesheets=dict(settings["stylesheets"]),
        output_dir=Path(settings["script_output"]),
        rules=[
            Rule((".js", ".jsx"), "jsx"),
            Rule((".json",), "json"),
        ],
        plugins=[],
        watch=True,
        sourcemap="inline",
    )


def production_config(base: PipelineConfig) -> PipelineConfig:
    """Derive the production configuration without mutating ``base``."""
    config = copy.deepcopy(base)
    config.plugins = config.plugins + [p for p in PRODUCTION_PLUGINS if p not in config.plugins]
    config.watch = False
    config.sourcemap = "external"
    return config


def config_for(run: RunConfig, settings: dict[str, Any]) -> PipelineConfig:
    base = development_config(settings)
    return production_config(base) if run.is_production else base


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    return f"{size / 1024:.1f} KiB"


class BundleBuilder:
    """Runs the bundler and stylesheet tools for one run configuration.

    In watch mode the tools stay resident after ``build`` returns; their
    handles are kept in ``residents`` so the caller can stop them.

    Attributes:
        project_root: Root directory of the project.
        config: The active pipeline configuration.
        residents: Watch-mode processes started by ``build``.
    """

    name = "bundle"

    def __init__(self, project_root: Path, run: RunConfig, settings: dict[str, Any]):
        self.project_root = project_root
        self.config = config_for(run, settings)
        self.residents: list[ResidentProcess] = []
        self._errors: list[str] = []
        self._started_at = 0.0

    def _on_line(self, line: str) -> None:
        if any(marker in line for marker in ERROR_MARKERS):
            self._errors.append(line)
        elif self.residents and any(marker in line for marker in REBUILD_MARKERS):
            self.summary()
            self._errors = []

    def summary(self, elapsed: float | None = None) -> None:
        """Log the produced assets, elapsed time and error count.

        Rebuilds triggered by the tools themselves are not timed here; the
        tools print their own timing for those.
        """
        for directory in self.config.artifact_dirs:
            root = self.project_root / directory
            if not root.exists():
                continue
            for path in sorted(root.rglob("*")):
                if path.is_file():
                    rel = path.relative_to(self.project_root)
                    log(f"{rel}  {_format_size(path.stat().st_size)}", tag="Bundle")
        if elapsed is not None:
            log(f"Time: {elapsed * 1000:.0f}ms", tag="Bundle")
        log(f"Errors: {len(self._errors)}", tag="Bundle")

    async def build(self) -> TaskResult:
        """Run one build. In watch mode, return after the first one."""
        self._errors = []
        self._started_at = time.monotonic()
        if self.config.watch:
            await self._start_watching()
        else:
            await self._run_once()
        self.summary(time.monotonic() - self._started_at)
        if self._errors:
            return TaskResult.warning(self.name, f"{len(self._errors)} error(s) reported")
        return TaskResult.ok(self.name)

    async def _run_once(self) -> None:
        scripts = ProcessRunner("esbuild", self.project_root)
        styles = ProcessRunner("sass", self.project_root)
        if await scripts.run("esbuild", self.config.script_command(), self._on_line):
            self._errors.append("esbuild exited with an error")
        if await styles.run("sass", self.config.style_command(), self._on_line):
            self._errors.append("sass exited with an error")
        postcss = ProcessRunner("postcss", self.project_root)
        for args in self.config.postcss_commands():
            if await postcss.run("postcss", args, self._on_line):
                self._errors.append("postcss exited with an error")

    async def _start_watching(self) -> None:
        scripts = ProcessRunner("esbuild", self.project_root)
        styles = ProcessRunner("sass", self.project_root)
        started = [
            await scripts.start("esbuild", self.config.script_command(), READY_MARKER, self._on_line),
            await styles.start("sass", self.config.style_command(), READY_MARKER, self._on_line),
        ]
        for resident in started:
            await resident.wait_ready()
        self.residents = started

    async def stop(self) -> None:
        for resident in self.residents:
            await resident.stop()
        self.residents = []
