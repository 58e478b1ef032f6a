"""Solution and project discovery for the proxied workspace."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Checked in order; the first pattern with a match at the top level wins.
SOLUTION_PATTERNS = ("*.slnx", "*.sln")
PROJECT_PATTERN = "*.csproj"


@dataclass(frozen=True)
class Workspace:
    """Solution and project file URIs sent to the server after initialize."""

    solution: str = ""
    projects: tuple[str, ...] = ()


def _to_uri(path: Path) -> str:
    return path.resolve().as_uri()


def discover_workspace(project_root: str | Path | None) -> Workspace:
    """Scan *project_root* for a solution file and every project below it.

    A blank or missing root gives an empty workspace rather than an error.
    """
    if not project_root or not str(project_root).strip():
        return Workspace()
    root = Path(project_root)
    if not root.is_dir():
        logger.warning("Project root %s is not a directory", root)
        return Workspace()

    solution = ""
    for pattern in SOLUTION_PATTERNS:
        matches = sorted(p for p in root.glob(pattern) if p.is_file())
        if matches:
            solution = _to_uri(matches[0])
            break

    projects = tuple(_to_uri(p) for p in sorted(root.rglob(PROJECT_PATTERN)) if p.is_file())

    logger.info(
        "Workspace %s: solution=%s, %d project(s)",
        root,
        solution or "<none>",
        len(projects),
    )
    return Workspace(solution=solution, projects=projects)
