"""
Tests for workspace discovery and recent files.
"""

import json
from pathlib import Path
from tempfile import TemporaryDirectory

from notebook_ctl.files import FileSystem
from notebook_ctl.notebook import Notebook
from notebook_ctl.session import SessionManager
from notebook_ctl.workspace import RecentFiles, Workspace


class TestRecentFiles:
    def setup_method(self):
        self.temp_dir = TemporaryDirectory()
        self.dir = Path(self.temp_dir.name)
        self.store = self.dir / "config" / "recent.json"

    def teardown_method(self):
        self.temp_dir.cleanup()

    def _notebook(self, name: str) -> Path:
        path = self.dir / name
        Notebook.new().save(path)
        return path

    def test_touch_orders_most_recent_first(self):
        a, b = self._notebook("a.nbctl"), self._notebook("b.nbctl")
        recent = RecentFiles(self.store)
        recent.touch(a)
        recent.touch(b)
        recent.touch(a)
        assert recent.paths() == [a, b]

    def test_persisted_between_instances(self):
        a = self._notebook("a.nbctl")
        RecentFiles(self.store).touch(a)
        assert json.loads(self.store.read_text()) == [a.as_posix()]
        assert RecentFiles(self.store).paths() == [a]

    def test_limit(self):
        recent = RecentFiles(self.store, limit=2)
        paths = [self._notebook(f"n{i}.nbctl") for i in range(3)]
        for path in paths:
            recent.touch(path)
        assert recent.paths() == [paths[2], paths[1]]

    def test_missing_files_skipped(self):
        a = self._notebook("a.nbctl")
        recent = RecentFiles(self.store)
        recent.touch(a)
        a.unlink()
        assert recent.paths() == []

    def test_unreadable_store(self):
        self.store.parent.mkdir(parents=True)
        self.store.write_text("not json")
        assert RecentFiles(self.store).paths() == []

    def test_in_memory(self):
        a = self._notebook("a.nbctl")
        recent = RecentFiles()
        recent.touch(a)
        assert recent.paths() == [a]


class TestWorkspace:
    def setup_method(self):
        self.temp_dir = TemporaryDirectory()
        self.root = Path(self.temp_dir.name).resolve()
        self.sessions = SessionManager()
        self.workspace = Workspace(FileSystem(self.root), self.sessions, RecentFiles())

    def teardown_method(self):
        self.sessions.shutdown_all()
        self.temp_dir.cleanup()

    def test_workspace_files(self):
        Notebook.new().save(self.root / "top.nbctl")
        (self.root / "sub").mkdir()
        Notebook.new().save(self.root / "sub" / "inner.nbctl")
        (self.root / "notes.md").write_text("# notes")
        (self.root / "script.py").write_text("")
        (self.root / ".hidden").mkdir()
        Notebook.new().save(self.root / ".hidden" / "secret.nbctl")

        names = sorted(f.name for f in self.workspace.workspace_files().files)
        assert names == ["inner.nbctl", "top.nbctl"]

        with_md = sorted(f.name for f in self.workspace.workspace_files(include_markdown=True).files)
        assert with_md == ["inner.nbctl", "notes.md", "top.nbctl"]

    def test_running_notebooks(self):
        path = self.root / "nb.nbctl"
        session = self.sessions.open(path)
        unbound = self.sessions.open()

        running = self.workspace.running_notebooks().files
        assert {f.session_id for f in running} == {session.session_id, unbound.session_id}

        self.sessions.shutdown(session.session_id)
        running = self.workspace.running_notebooks().files
        assert [f.session_id for f in running] == [unbound.session_id]

    def test_recent_files_include_session(self):
        path = self.root / "nb.nbctl"
        Notebook.new().save(path)
        session = self.sessions.open(path)
        self.workspace.recent.touch(path)

        files = self.workspace.recent_files().files
        assert len(files) == 1
        assert files[0].session_id == session.session_id
        assert files[0].path == path.as_posix()
