"""
Workspace discovery: recent, workspace and running notebooks.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from notebook_ctl.files import IGNORED_NAMES, FileSystem
from notebook_ctl.models import NotebookListResponse, NotebookSummary
from notebook_ctl.notebook import is_notebook_path
from notebook_ctl.session import SessionManager
from notebook_ctl.utils import atomic_write

logger = logging.getLogger(__name__)

MAX_RECENT_FILES = 20
MAX_WORKSPACE_FILES = 1000


class RecentFiles:
    """Most-recently-opened notebook paths, persisted as a JSON list."""

    def __init__(self, path: Optional[Path] = None, limit: int = MAX_RECENT_FILES):
        self.path = path
        self.limit = limit
        self._lock = threading.Lock()
        self._paths: list[str] = self._load()

    def _load(self) -> list[str]:
        if self.path is None or not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable recent files %s: %s", self.path, e)
            return []
        return [p for p in data if isinstance(p, str)][: self.limit]

    def _persist(self):
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(self.path, (json.dumps(self._paths, indent=2) + "\n").encode("utf-8"))
        except OSError as e:
            logger.warning("Could not persist recent files to %s: %s", self.path, e)

    def touch(self, path: Path):
        """Move ``path`` to the front of the list."""
        posix = Path(path).as_posix()
        with self._lock:
            self._paths = [posix] + [p for p in self._paths if p != posix]
            del self._paths[self.limit:]
            self._persist()

    def paths(self) -> list[Path]:
        """Recent paths that still exist on disk, most recent first."""
        with self._lock:
            return [Path(p) for p in self._paths if Path(p).is_file()]


class Workspace:
    """Read-only views over the notebooks a backend knows about."""

    def __init__(self, files: FileSystem, sessions: SessionManager, recent: RecentFiles):
        self.files = files
        self.sessions = sessions
        self.recent = recent

    def _summary(self, path: Path, running: dict) -> NotebookSummary:
        session = running.get(path)
        if session is not None:
            return session.summary()
        return NotebookSummary(
            name=path.name,
            path=path.as_posix(),
            last_modified=path.stat().st_mtime,
        )

    def _running_by_path(self) -> dict:
        return {s.path: s for s in self.sessions.sessions() if s.path is not None}

    def recent_files(self) -> NotebookListResponse:
        running = self._running_by_path()
        return NotebookListResponse(
            files=[self._summary(p, running) for p in self.recent.paths()]
        )

    def workspace_files(self, include_markdown: bool = False) -> NotebookListResponse:
        """Every notebook below the root (and Markdown files if asked)."""
        running = self._running_by_path()
        found = []
        for dirpath, dirnames, filenames in os.walk(self.files.root):
            dirnames[:] = sorted(
                d for d in dirnames if not d.startswith(".") and d not in IGNORED_NAMES
            )
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                if filename.startswith("."):
                    continue
                if is_notebook_path(path) or (include_markdown and path.suffix == ".md"):
                    found.append(self._summary(path, running))
                if len(found) >= MAX_WORKSPACE_FILES:
                    logger.warning("Workspace listing truncated at %d files", MAX_WORKSPACE_FILES)
                    return NotebookListResponse(files=found)
        return NotebookListResponse(files=found)

    def running_notebooks(self) -> NotebookListResponse:
        return NotebookListResponse(files=[s.summary() for s in self.sessions.sessions()])
