"""Configuration for sitepipe.

Two kinds of configuration exist:

- Project settings, loaded from ``sitepipe.yaml`` in the project root and
  merged over ``DEFAULT_CONFIG``. They describe where sources live and where
  artifacts go, and rarely change.
- ``RunConfig``, built once per top-level command. It holds the build mode
  and the alternate-target flag and is passed explicitly to every component.
  It is frozen so no task can switch modes halfway through a pipeline.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "sitepipe.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "source_dir": "src",
    "scripts": {"bundle": "app.js"},
    "stylesheets": {"_sass/main.scss": "css/main.css"},
    "script_output": "js",
    "style_output": "css",
    "site_dir": "_site",
    "generator": "jekyll",
    "generator_configs": ["_config.yml", "_config_prod.yml"],
    "port": 8080,
    "ws_port": None,
    "watch": {
        "copy-js": ["js/bundle.js"],
        "css": ["css/main.css"],
        "generate": [
            "pages/**/*.html",
            "_layouts/*",
            "_includes/*",
            "_posts/*",
            "_data/*",
            "_sets/*",
            "_drafts/*",
        ],
    },
}


class ConfigError(Exception):
    """Raised when a setting has an unusable value."""


class BuildMode(Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


@dataclass(frozen=True)
class RunConfig:
    """Settings fixed for the duration of one command.

    Attributes:
        mode: Development or production.
        alternate_target: Rewrite output filenames for the alternate host.
        strict: Treat warnings from any task as fatal to the sequence.
    """

    mode: BuildMode = BuildMode.DEVELOPMENT
    alternate_target: bool = False
    strict: bool = False

    @property
    def is_production(self) -> bool:
        return self.mode is BuildMode.PRODUCTION

    @classmethod
    def for_command(cls, command: str, strict: bool = False) -> RunConfig:
        """Return the run configuration a top-level command implies.

        Args:
            command: One of ``default``, ``build`` or ``build-sp``.
            strict: Whether warnings halt the sequence.

        Raises:
            ValueError: If the command is unknown.
        """
        if command == "default":
            return cls(BuildMode.DEVELOPMENT, alternate_target=False, strict=strict)
        if command == "build":
            return cls(BuildMode.PRODUCTION, alternate_target=False, strict=strict)
        if command == "build-sp":
            return cls(BuildMode.PRODUCTION, alternate_target=True, strict=strict)
        raise ValueError(f"Unknown command: {command}")


def load_config(project_root: Path, environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Load project settings from sitepipe.yaml.

    Args:
        project_root: Root directory of the project.
        environ: Environment mapping; defaults to ``os.environ``. ``PORT``
            overrides the configured dev server port.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        ConfigError: If PORT is not an integer.
    """
    config_path = project_root / CONFIG_FILENAME
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
            if isinstance(loaded, dict):
                config.update(loaded)
    env = os.environ if environ is None else environ
    if env.get("PORT"):
        try:
            config["port"] = int(env["PORT"])
        except ValueError:
            raise ConfigError(f"PORT must be an integer, got {env['PORT']!r}") from None
    return config
