"""
Tests for NotebookKernel.
"""

import threading
import time

import pytest

from notebook_ctl.kernel import NotebookKernel


class TestNotebookKernel:
    """Test cases for cell execution."""

    def setup_method(self):
        """Set up a fresh kernel for each test."""
        self.kernel = NotebookKernel()

    def test_execute_simple_code(self):
        result = self.kernel.execute_cell("x = 42")

        assert result.success
        assert result.execution_count == 1
        assert result.outputs == []

    def test_variables_persist(self):
        self.kernel.execute_cell("x = 42")
        self.kernel.execute_cell("y = x + 8")
        assert self.kernel.get_variable("y") == 50

    def test_stdout_captured(self):
        result = self.kernel.execute_cell('print("Hello, World!")')
        assert result.outputs[0] == {"type": "stream", "name": "stdout", "text": "Hello, World!\n"}

    def test_last_expression_result(self):
        result = self.kernel.execute_cell("1 + 2")
        assert result.outputs[-1]["type"] == "execute_result"
        assert result.outputs[-1]["data"]["text/plain"] == "3"

    def test_error_output(self):
        result = self.kernel.execute_cell("1 / 0")
        assert not result.success
        assert result.outputs[-1]["ename"] == "ZeroDivisionError"
        assert "division" in result.error

    def test_syntax_error(self):
        result = self.kernel.execute_cell("def broken(:")
        assert not result.success
        assert result.outputs[-1]["ename"] == "SyntaxError"

    def test_missing_module_recorded(self):
        result = self.kernel.execute_cell("import definitely_not_installed_pkg.sub")
        assert not result.success
        assert "definitely_not_installed_pkg" in self.kernel.missing_modules

    def test_kernels_are_isolated(self):
        other = NotebookKernel()
        self.kernel.execute_cell("shared = 1")
        assert other.get_variable("shared") is None

    def test_reset(self):
        self.kernel.execute_cell("x = 1")
        self.kernel.set_ui_value("slider", 3)
        self.kernel.reset()

        assert self.kernel.get_variable("x") is None
        assert self.kernel.execution_count == 0
        assert self.kernel.ui_values == {}
        # helpers are reinstalled
        assert self.kernel.execute_cell("ui_value('slider', 7)").outputs[-1]["data"]["text/plain"] == "7"

    def test_defined_names_skip_helpers(self):
        self.kernel.execute_cell("a = 1\n_private = 2")
        names = self.kernel.get_defined_names()
        assert "a" in names
        assert "_private" not in names
        assert "input" not in names
        assert "ui_value" not in names


class TestStdin:
    """Test cases for input() delivery."""

    def setup_method(self):
        self.kernel = NotebookKernel()

    def test_buffered_stdin(self):
        self.kernel.send_stdin("Ada")
        result = self.kernel.execute_cell('name = input("Name: ")')
        assert result.success
        assert self.kernel.get_variable("name") == "Ada"
        assert result.outputs[0]["text"] == "Name: "

    def test_interrupt_pending_input(self):
        results = []
        worker = threading.Thread(
            target=lambda: results.append(self.kernel.execute_cell("value = input()"))
        )
        worker.start()
        assert self.kernel._waiting_for_stdin.wait(timeout=10)
        self.kernel.interrupt()
        worker.join(timeout=10)

        assert not results[0].success
        assert results[0].outputs[-1]["ename"] == "KeyboardInterrupt"
        assert self.kernel.get_variable("value") is None

    def test_interrupt_without_pending_input_is_noop(self):
        self.kernel.interrupt()
        self.kernel.send_stdin("line")
        self.kernel.execute_cell("value = input()")
        assert self.kernel.get_variable("value") == "line"

    def test_waiting_input_does_not_block_other_kernels(self):
        other = NotebookKernel()
        results = []
        worker = threading.Thread(
            target=lambda: results.append(
                self.kernel.execute_cell("v = input('? ')\nprint('got', v)")
            )
        )
        worker.start()
        assert self.kernel._waiting_for_stdin.wait(timeout=10)

        other_results = []
        runner = threading.Thread(
            target=lambda: other_results.append(other.execute_cell("print('b')"))
        )
        runner.start()
        runner.join(timeout=10)
        assert not runner.is_alive()
        assert other_results[0].outputs == [{"type": "stream", "name": "stdout", "text": "b\n"}]

        self.kernel.send_stdin("line")
        worker.join(timeout=10)
        assert results[0].success
        assert results[0].outputs[0]["text"] == "? got line\n"


class TestInterrupt:
    """Test cases for interrupting a running cell."""

    def setup_method(self):
        self.kernel = NotebookKernel()

    def test_interrupt_running_cell(self):
        results = []
        worker = threading.Thread(
            target=lambda: results.append(self.kernel.execute_cell(
                "import time\nfor i in range(200):\n    time.sleep(0.05)\nx = 'finished'"
            ))
        )
        worker.start()
        deadline = time.monotonic() + 10
        while not self.kernel.interrupt():
            assert time.monotonic() < deadline
            time.sleep(0.05)
        worker.join(timeout=10)

        assert not worker.is_alive()
        assert not results[0].success
        assert results[0].outputs[-1]["ename"] == "KeyboardInterrupt"
        assert self.kernel.get_variable("x") is None

    def test_kernel_usable_after_interrupt(self):
        worker = threading.Thread(
            target=lambda: self.kernel.execute_cell("import time\nwhile True:\n    time.sleep(0.05)")
        )
        worker.start()
        deadline = time.monotonic() + 10
        while not self.kernel.interrupt():
            assert time.monotonic() < deadline
            time.sleep(0.05)
        worker.join(timeout=10)

        assert self.kernel.execute_cell("y = 2").success
        assert self.kernel.get_variable("y") == 2

    def test_interrupt_idle_kernel(self):
        assert self.kernel.interrupt() is False


class TestUiValuesAndFunctions:
    def setup_method(self):
        self.kernel = NotebookKernel()

    def test_set_ui_value_reports_change(self):
        assert self.kernel.set_ui_value("slider", 1) is True
        assert self.kernel.set_ui_value("slider", 1) is False
        assert self.kernel.set_ui_value("slider", 2) is True

    def test_ui_value_visible_in_cells(self):
        self.kernel.set_ui_value("threshold", 5)
        self.kernel.execute_cell("t = ui_value('threshold')")
        assert self.kernel.get_variable("t") == 5

    def test_registered_function_call_styles(self):
        self.kernel.execute_cell(
            "def add(a, b=0):\n    return a + b\nregister_function('math', 'add', add)"
        )
        assert self.kernel.call_function("math", "add", {"a": 1, "b": 2}) == 3
        assert self.kernel.call_function("math", "add", [4, 5]) == 9
        assert self.kernel.call_function("math", "add", 7) == 7

    def test_unknown_function(self):
        with pytest.raises(KeyError):
            self.kernel.call_function("math", "missing", None)


class TestIntrospection:
    def setup_method(self):
        self.kernel = NotebookKernel()

    def test_complete_attribute(self):
        self.kernel.execute_cell("import math")
        prefix_length, options = self.kernel.complete("x = 1\nmath.sq")
        assert prefix_length == len("math.sq")
        assert "math.sqrt" in options

    def test_data_tables(self):
        self.kernel.execute_cell(
            "rows = [{'name': 'a', 'n': 1}, {'name': 'b', 'n': 2.5}]\nscalar = 3"
        )
        tables = self.kernel.data_tables()
        assert [t.name for t in tables] == ["rows"]
        table = tables[0]
        assert table.source == "memory"
        assert table.num_rows == 2
        assert table.num_columns == 2
        assert {c.name: c.type for c in table.columns} == {"name": "string", "n": "number"}

    def test_preview_column(self):
        self.kernel.execute_cell("cols = {'n': [1, 2, 3, None]}")
        summary = self.kernel.preview_column("cols", "n")
        assert summary["type"] == "integer"
        assert summary["nulls"] == 1
        assert summary["min"] == 1
        assert summary["max"] == 3

    def test_preview_unknown_column(self):
        self.kernel.execute_cell("cols = {'n': [1]}")
        with pytest.raises(KeyError):
            self.kernel.preview_column("cols", "missing")
        with pytest.raises(KeyError):
            self.kernel.preview_column("nothing", "n")
