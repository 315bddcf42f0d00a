"""Output rewriting for the alternate hosting target.

The alternate host serves ``default.aspx`` as a directory's default document,
so every generated ``index.html`` is renamed in place. Renames are not
transactional: if one fails, files renamed before it stay renamed.
"""

from __future__ import annotations

import json
from pathlib import Path

from .log import error, log

INDEX_NAME = "index.html"
DEFAULT_DOCUMENT_NAME = "default.aspx"


def rename_index_files(
    site_dir: Path,
    source_name: str = INDEX_NAME,
    target_name: str = DEFAULT_DOCUMENT_NAME,
) -> list[Path]:
    """Rename every ``source_name`` under ``site_dir`` to ``target_name``.

    Args:
        site_dir: Root of the generated site tree.
        source_name: Filename to look for.
        target_name: Filename to rename to, in the same directory.

    Returns:
        Paths of the renamed files, in their new location.

    Raises:
        OSError: If a rename fails. Logged before being re-raised.
    """
    files = []
    if site_dir.is_dir():
        files = sorted(path for path in site_dir.rglob(source_name) if path.is_file())
    log(json.dumps([str(path) for path in files], indent=4), tag="Rename")
    renamed = []
    for path in files:
        target = path.with_name(target_name)
        try:
            path.rename(target)
        except OSError as exc:
            error(f"ERROR: {exc}", tag="Rename")
            raise
        renamed.append(target)
    log(f"All {source_name} renamed.", tag="Rename")
    return renamed
