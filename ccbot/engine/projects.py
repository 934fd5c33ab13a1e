"""Project scanner: maps project names to directories under a base dir.

Every immediate subdirectory of the base directory is a selectable
project, filtered by an optional allow list and a deny list. Paths are
validated against the base directory before the CLI is pointed at them.
"""
from __future__ import annotations

import logging
from pathlib import Path

from .config import BotConfig
from .models import ProjectInfo

logger = logging.getLogger(__name__)


class ProjectScanner:
    """Lists and validates project directories."""

    def __init__(
        self,
        base_dir: str | Path,
        allow_list: list[str] | None = None,
        deny_list: list[str] | None = None,
    ) -> None:
        self._base_dir = Path(base_dir).expanduser().resolve()
        self._allow_list = list(allow_list or [])
        self._deny_list = list(deny_list or [])

    @classmethod
    def from_config(cls, config: BotConfig) -> ProjectScanner:
        return cls(
            config.projects_base_dir,
            allow_list=config.projects_allow_list,
            deny_list=config.projects_deny_list,
        )

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def list_projects(self) -> list[ProjectInfo]:
        """Scan the base directory. Errors are logged and yield []."""
        try:
            entries = sorted(self._base_dir.iterdir(), key=lambda p: p.name)
        except OSError as exc:
            logger.error(
                "Failed to scan projects in %s: %s", self._base_dir, exc
            )
            return []

        projects: list[ProjectInfo] = []
        for entry in entries:
            if not entry.is_dir():
                continue
            name = entry.name
            if name in self._deny_list:
                continue
            if self._allow_list and name not in self._allow_list:
                continue
            projects.append(ProjectInfo(name=name, path=str(entry)))

        logger.debug("Scanned %d project(s) in %s", len(projects), self._base_dir)
        return projects

    def resolve_path(self, name: str) -> str | None:
        """Return the path of project *name*, or None if not listed."""
        for project in self.list_projects():
            if project.name == name:
                return project.path
        return None

    def is_path_within_base(self, path: str | Path) -> bool:
        """True when *path* is an existing directory inside the base dir.

        Symlinks are resolved first, so a link pointing outside the
        base directory is rejected.
        """
        resolved = Path(path).expanduser().resolve()
        if resolved != self._base_dir and self._base_dir not in resolved.parents:
            logger.warning(
                "Path traversal attempt detected: %s resolves to %s (base %s)",
                path, resolved, self._base_dir,
            )
            return False
        return resolved.is_dir()
