"""
Tests for Session and SessionManager.
"""

import threading
import time
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

import pytest

from notebook_ctl.errors import (
    BackendExecutionError,
    ConflictError,
    NotFoundError,
    SessionMismatchError,
)
from notebook_ctl.models import AppConfig, CellCode, CellConfig, SaveRequest, ValueUpdate
from notebook_ctl.notebook import Notebook
from notebook_ctl.session import Session, SessionManager


def save_request(cells: dict, filename: str = "nb.nbctl", configs=None) -> SaveRequest:
    return SaveRequest(
        cell_ids=list(cells),
        codes=list(cells.values()),
        names=["_"] * len(cells),
        configs=configs or [CellConfig()] * len(cells),
        filename=filename,
    )


class TestSession:
    """Test cases for Session."""

    def setup_method(self):
        self.temp_dir = TemporaryDirectory()
        self.dir = Path(self.temp_dir.name)
        self.path = self.dir / "nb.nbctl"
        self.session = Session()

    def teardown_method(self):
        self.session.shutdown()
        self.temp_dir.cleanup()

    def test_ids(self):
        assert self.session.session_id.startswith("s_")
        assert self.session.initialization_id
        assert Session().session_id != self.session.session_id

    def test_save_writes_snapshot(self):
        self.session.save(save_request({"c1": "a=1", "c2": "b=2"}), self.path)

        assert self.session.path == self.path
        loaded = Notebook.load(self.path)
        assert loaded.cell_ids == ["c1", "c2"]
        assert loaded.cells[0].code == "a=1"

    def test_save_with_format(self):
        self.session.save(save_request({"c1": "a=1"}), self.path, format_line_length=79)
        assert Notebook.load(self.path).cells[0].code == "a = 1"

    def test_save_is_idempotent(self):
        request = save_request({"c1": "a=1"})
        self.session.save(request, self.path)
        first = Notebook.load(self.path)
        self.session.save(request, self.path)
        second = Notebook.load(self.path)
        assert [c.to_dict() for c in first.cells] == [c.to_dict() for c in second.cells]

    def test_failed_save_keeps_previous_snapshot(self):
        self.session.save(save_request({"c1": "old"}), self.path)
        before = self.path.read_text()

        with patch.object(Notebook, "save", side_effect=OSError("disk full")):
            with pytest.raises(BackendExecutionError):
                self.session.save(save_request({"c1": "new", "c2": "x"}), self.path)

        assert self.session.notebook.cell_ids == ["c1"]
        assert self.session.notebook.get_cell("c1").code == "old"
        assert self.path.read_text() == before

    def test_save_replaces_cell_set(self):
        self.session.save(save_request({"c1": "a", "c2": "b"}), self.path)
        self.session.save(save_request({"c2": "b", "c3": "c"}), self.path)
        assert self.session.notebook.cell_ids == ["c2", "c3"]

    def test_run_executes_cells(self):
        self.session.save(save_request({"c1": "", "c2": ""}), self.path)
        self.session.run([CellCode(id="c1", code="x = 1"), CellCode(id="c2", code="y = x + 1")])
        self.session.join(timeout=10)

        assert self.session.kernel.get_variable("y") == 2
        assert self.session.notebook.get_cell("c2").code == "y = x + 1"
        assert self.session.notebook.get_cell("c2").execution_count == 2

    def test_run_records_outputs(self):
        self.session.save(save_request({"c1": ""}), self.path)
        self.session.run([CellCode(id="c1", code="print('hi')")])
        self.session.join(timeout=10)
        assert self.session.notebook.get_cell("c1").outputs[0]["text"] == "hi\n"

    def test_run_unknown_cell(self):
        with pytest.raises(NotFoundError):
            self.session.run([CellCode(id="nope", code="x = 1")])

    def test_run_skips_disabled_cells(self):
        self.session.save(
            save_request({"c1": ""}, configs=[CellConfig(disabled=True)]), self.path
        )
        self.session.run([CellCode(id="c1", code="x = 1")])
        self.session.join(timeout=10)
        assert self.session.kernel.get_variable("x") is None

    def test_per_cell_order_is_issue_order(self):
        self.session.save(save_request({"c1": ""}), self.path)
        for i in range(5):
            self.session.run([CellCode(id="c1", code=f"seen = globals().get('seen', []) + [{i}]")])
        self.session.join(timeout=10)
        assert self.session.kernel.get_variable("seen") == [0, 1, 2, 3, 4]

    def test_delete_tombstones_cell(self):
        self.session.save(save_request({"c1": "a", "c2": "b"}), self.path)
        self.session.delete_cell("c1")

        assert self.session.notebook.cell_ids == ["c2"]
        with pytest.raises(NotFoundError):
            self.session.delete_cell("c1")
        with pytest.raises(NotFoundError):
            self.session.run([CellCode(id="c1", code="")])
        with pytest.raises(NotFoundError):
            self.session.format({"c1": "a=1"}, 79)
        with pytest.raises(NotFoundError):
            self.session.save(save_request({"c1": "a"}), self.path)

    def test_format_does_not_mutate(self):
        self.session.save(save_request({"c1": "a=1"}), self.path)
        result = self.session.format({"c1": "a=1"}, 79)
        assert result == {"c1": "a = 1"}
        assert self.session.notebook.get_cell("c1").code == "a=1"
        assert self.session.kernel.get_variable("a") is None

    def test_save_cell_config(self):
        self.session.save(save_request({"c1": "a"}), self.path)
        self.session.save_cell_config({"c1": CellConfig(hide_code=True)})
        assert Notebook.load(self.path).cells[0].config.hide_code is True

    def test_save_cell_config_unknown_applies_nothing(self):
        self.session.save(save_request({"c1": "a"}), self.path)
        with pytest.raises(NotFoundError):
            self.session.save_cell_config({
                "c1": CellConfig(hide_code=True),
                "nope": CellConfig(),
            })
        assert self.session.notebook.get_cell("c1").config.hide_code is False

    def test_save_app_config(self):
        self.session.save(save_request({"c1": "a"}), self.path)
        self.session.save_app_config(AppConfig(width="full"))
        assert Notebook.load(self.path).app.width == "full"

    def test_app_config_unbound_kept_in_memory(self):
        self.session.save_app_config(AppConfig(app_title="Draft"))
        assert self.session.notebook.app.app_title == "Draft"
        assert not self.path.exists()

    def test_read_code(self):
        with pytest.raises(NotFoundError):
            self.session.read_code()
        self.session.save(save_request({"c1": "a"}), self.path)
        assert '"c1"' in self.session.read_code()

    def test_interrupt_skips_queued_runs(self):
        self.session.save(save_request({"c1": "", "c2": ""}), self.path)
        started = threading.Event()
        release = threading.Event()

        def block():
            started.set()
            release.wait(timeout=10)

        self.session.submit(block)
        started.wait(timeout=10)
        self.session.run([CellCode(id="c1", code="x = 1")])
        self.session.interrupt()
        self.session.run([CellCode(id="c2", code="y = 2")])
        release.set()
        self.session.join(timeout=10)

        assert self.session.kernel.get_variable("x") is None
        assert self.session.kernel.get_variable("y") == 2

    def test_interrupt_stops_running_cell(self):
        self.session.save(save_request({"c1": "", "c2": ""}), self.path)
        self.session.run([CellCode(
            id="c1", code="import time\nfor i in range(200):\n    time.sleep(0.05)\nx = 'finished'"
        )])
        self.session.run([CellCode(id="c2", code="y = 2")])
        deadline = time.monotonic() + 10
        while self.session.kernel._thread_id is None:
            assert time.monotonic() < deadline
            time.sleep(0.01)

        self.session.interrupt()
        self.session.join(timeout=10)

        assert self.session.kernel.get_variable("x") is None
        assert self.session.kernel.get_variable("y") is None
        assert self.session.notebook.get_cell("c1").outputs[-1]["ename"] == "KeyboardInterrupt"

    def test_restart_clears_namespace_keeps_cells(self):
        self.session.save(save_request({"c1": ""}), self.path)
        self.session.run([CellCode(id="c1", code="x = 1")])
        self.session.restart()
        self.session.join(timeout=10)

        assert self.session.kernel.get_variable("x") is None
        assert self.session.notebook.cell_ids == ["c1"]

    def test_instantiate_runs_all_cells(self):
        self.session.save(save_request({"c1": "t = ui_value('slider')", "c2": "u = t * 2"}), self.path)
        self.session.instantiate([ValueUpdate(object_id="slider", value=4)])
        self.session.join(timeout=10)
        assert self.session.kernel.get_variable("u") == 8

    def test_set_component_values(self):
        self.session.set_component_values([ValueUpdate(object_id="a", value=[1, 2])])
        self.session.join(timeout=10)
        assert self.session.kernel.get_ui_value("a") == [1, 2]

    def test_call_function_delivers_result(self):
        self.session.kernel.execute_cell(
            "register_function('ns', 'double', lambda x: x * 2)\n"
            "register_function('ns', 'opaque', lambda: object())"
        )
        delivered = {}

        def deliver(request_id, result):
            delivered[request_id] = result

        self.session.call_function("f1", "ns", "double", 21, deliver)
        self.session.call_function("f2", "ns", "missing", None, deliver)
        self.session.call_function("f3", "ns", "opaque", None, deliver)
        self.session.join(timeout=10)

        assert delivered["f1"].return_value == 42
        assert delivered["f1"].status == "ok"
        assert delivered["f2"].status == "error"
        assert "missing" in delivered["f2"].error
        assert delivered["f3"].return_value.startswith("<object object")

    def test_complete(self):
        self.session.save(save_request({"c1": ""}), self.path)
        self.session.kernel.execute_cell("import math")
        result = self.session.complete("r1", "c1", "math.pi")
        assert result.completion_id == "r1"
        assert "math.pi" in result.options

    def test_move_to_renames_file(self):
        self.session.save(save_request({"c1": "a"}), self.path)
        target = self.dir / "renamed.nbctl"
        self.session.move_to(target)

        assert self.session.path == target
        assert target.exists()
        assert not self.path.exists()
        assert self.session.notebook.metadata["name"] == "renamed"
        assert self.session.notebook.get_cell("c1").id == "c1"

    def test_move_to_existing_conflicts(self):
        self.session.save(save_request({"c1": "a"}), self.path)
        other = self.dir / "other.nbctl"
        other.write_text("{}")
        with pytest.raises(ConflictError):
            self.session.move_to(other)
        assert self.session.path == self.path

    def test_shutdown_rejects_work(self):
        self.session.shutdown()
        assert self.session.closed
        with pytest.raises(SessionMismatchError):
            self.session.submit(lambda: None)

    def test_info_and_summary(self):
        info = self.session.info()
        assert info.path is None
        self.session.save(save_request({"c1": "a"}), self.path)
        summary = self.session.summary()
        assert summary.name == "nb.nbctl"
        assert summary.session_id == self.session.session_id
        assert summary.last_modified is not None


class TestSessionManager:
    """Test cases for SessionManager."""

    def setup_method(self):
        self.temp_dir = TemporaryDirectory()
        self.dir = Path(self.temp_dir.name)
        self.manager = SessionManager()

    def teardown_method(self):
        self.manager.shutdown_all()
        self.temp_dir.cleanup()

    def test_open_new_session(self):
        session = self.manager.open()
        assert self.manager.get(session.session_id) is session
        assert session.path is None

    def test_open_existing_notebook(self):
        path = self.dir / "nb.nbctl"
        nb = Notebook.new()
        nb.add_cell(id="c1", code="x = 1")
        nb.save(path)

        session = self.manager.open(path)
        assert session.notebook.cell_ids == ["c1"]

    def test_open_reuses_bound_session(self):
        path = self.dir / "nb.nbctl"
        first = self.manager.open(path)
        assert self.manager.open(path) is first

    def test_open_unreadable_notebook(self):
        path = self.dir / "bad.nbctl"
        path.write_text("{broken")
        with pytest.raises(BackendExecutionError):
            self.manager.open(path)

    def test_get_unknown(self):
        with pytest.raises(SessionMismatchError):
            self.manager.get("s_unknown")
        with pytest.raises(SessionMismatchError):
            self.manager.get(None)

    def test_shutdown(self):
        session = self.manager.open()
        self.manager.shutdown(session.session_id)

        assert session.closed
        assert session not in self.manager.sessions()
        with pytest.raises(SessionMismatchError, match="shut down"):
            self.manager.get(session.session_id)
        with pytest.raises(SessionMismatchError):
            self.manager.shutdown(session.session_id)

    def test_claim_conflict(self):
        path = self.dir / "nb.nbctl"
        owner = self.manager.open(path)
        other = self.manager.open()

        self.manager.claim(owner, path)
        with pytest.raises(ConflictError):
            self.manager.claim(other, path)

    def test_bind_conflict(self):
        path = self.dir / "nb.nbctl"
        self.manager.open(path)
        other = self.manager.open()
        with pytest.raises(ConflictError):
            self.manager.bind(other, path)

    def test_bind_moves_session(self):
        session = self.manager.open(self.dir / "a.nbctl")
        self.manager.bind(session, self.dir / "b.nbctl")
        assert session.path == self.dir / "b.nbctl"
        assert self.manager.open(self.dir / "b.nbctl") is session

    def test_pending_bind_reserves_path(self):
        session = self.manager.open()
        other = self.manager.open()
        target = self.dir / "b.nbctl"
        release = threading.Event()
        session.submit(release.wait, 10)

        binder = threading.Thread(target=self.manager.bind, args=(session, target))
        binder.start()
        deadline = time.monotonic() + 10
        while target not in self.manager._reserved:
            assert time.monotonic() < deadline
            time.sleep(0.01)

        # the manager stays usable while the bind waits on the session queue
        assert self.manager.get(other.session_id) is other
        with pytest.raises(ConflictError):
            self.manager.claim(other, target)

        release.set()
        binder.join(timeout=10)
        assert session.path == target
        assert self.manager._reserved == {}

    def test_failed_bind_releases_reservation(self):
        session = self.manager.open()
        target = self.dir / "taken.nbctl"
        target.write_text("{}")
        with pytest.raises(ConflictError):
            self.manager.bind(session, target)
        assert self.manager._reserved == {}
