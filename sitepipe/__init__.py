"""Sitepipe static site build pipeline.

This package wires a script bundler, a stylesheet compiler, the Jekyll site
generator and a live reload development server together behind a few commands.
None of those engines are reimplemented here; sitepipe only decides what runs,
in which order, with which arguments, and what happens when files change.

The main entry point is the CLI module, which provides commands for the
development loop and for production builds.

Layout:
- config: Project settings and the per-run RunConfig.
- process: Spawning external tools and streaming their output.
- bundle: Pipeline configuration and the bundle builder.
- generator: Jekyll invocation and first-run reload gating.
- rewrite: Renaming index.html files for the alternate hosting target.
- watcher: Mapping file changes to tasks.
- server: HTTP serving and live reload notifications.
- tasks / pipeline: Task orchestration and the top-level commands.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
