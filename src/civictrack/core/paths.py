"""Project root resolver.

Settings derive the database and export locations from the project
root, so commands behave the same from any working directory.  The root
is the nearest ancestor (including *start* itself) holding a
``pyproject.toml``.
"""

from __future__ import annotations

from pathlib import Path

from civictrack.core.errors import RepoRootNotFound

_MARKER = "pyproject.toml"


def find_repo_root(start: Path | None = None) -> Path:
    """Return the first directory from *start* upward that contains the marker.

    Raises
    ------
    RepoRootNotFound
        If neither *start* (default ``Path.cwd()``) nor any parent has one.
    """
    origin = (start or Path.cwd()).resolve()
    for candidate in (origin, *origin.parents):
        if (candidate / _MARKER).is_file():
            return candidate
    raise RepoRootNotFound(start_path=str(origin))
