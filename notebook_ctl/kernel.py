"""
NotebookKernel: per-session IPython interpreter that maintains execution state.
"""

import ctypes
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from IPython.core.displayhook import DisplayHook
from IPython.core.interactiveshell import InteractiveShell
from IPython.utils.capture import capture_output
from traitlets.config import Config

from notebook_ctl.models import DataTable, DataTableColumn
from notebook_ctl.utils import infer_column_type, summarize_column, table_columns

logger = logging.getLogger(__name__)

# Output capture swaps sys.stdout/sys.stderr for the whole process.
# A cell waiting in input() releases it until its line arrives.
_EXECUTION_LOCK = threading.Lock()

_INTERRUPT = object()

_HELPERS = ("input", "ui_value", "register_function")


def _raise_async_exception(thread_id: int, exc_type: type[BaseException]) -> bool:
    """Inject ``exc_type`` into a thread by id; returns success."""
    res = ctypes.pythonapi.PyThreadState_SetAsyncExc(
        ctypes.c_ulong(thread_id), ctypes.py_object(exc_type)
    )
    if res == 0:
        return False
    if res > 1:
        ctypes.pythonapi.PyThreadState_SetAsyncExc(ctypes.c_ulong(thread_id), None)
        return False
    return True


def _build_mime_bundle(obj) -> dict:
    """
    Build a MIME bundle dictionary from an object.

    Checks for IPython rich display methods and builds a dict
    mapping MIME types to their representations.
    """
    rich_content = None

    rich_entries = []
    for mime_type, method_name in [
        ("text/html", "_repr_html_"),
        ("text/markdown", "_repr_markdown_"),
        ("application/json", "_repr_json_"),
        ("image/svg+xml", "_repr_svg_"),
        ("image/png", "_repr_png_"),
    ]:
        method = getattr(obj, method_name, None)
        if callable(method):
            value = method()
            if value is not None:
                rich_entries.append((mime_type, value))
                if rich_content is None:
                    rich_content = value

    plain = rich_content if rich_content is not None else repr(obj)
    data = {"text/plain": plain}
    for mime_type, value in rich_entries:
        data[mime_type] = value

    return data


class _QuietDisplayHook(DisplayHook):
    """Record the last expression value without printing an Out prompt."""

    def write_output_prompt(self):
        pass

    def write_format_data(self, format_dict, md_dict=None):
        pass

    def finish_displayhook(self):
        pass


def _new_shell() -> InteractiveShell:
    """Create an isolated (non-singleton) shell with in-memory history."""
    config = Config()
    config.HistoryManager.enabled = False
    shell = InteractiveShell(config=config, displayhook_class=_QuietDisplayHook)
    shell.Completer.use_jedi = False
    return shell


@dataclass
class ExecutionResult:
    """Result of executing a code cell."""
    success: bool
    outputs: list[dict[str, Any]] = field(default_factory=list)
    execution_count: int = 0
    error: Optional[str] = None


class NotebookKernel:
    """
    Persistent IPython interpreter owned by one session.

    This kernel wraps its own InteractiveShell to provide:
    - Persistent namespace across cell executions
    - Output capture (stdout, stderr, last expression)
    - stdin delivery for ``input()`` calls
    - UI component values and callable functions for the editor
    - Code completion and tabular-variable discovery
    """

    def __init__(self):
        self.ip = _new_shell()
        self.execution_count = 0
        self.ui_values: dict[str, Any] = {}
        self.missing_modules: set[str] = set()
        self._functions: dict[tuple[str, str], Callable] = {}
        self._stdin: "queue.Queue[Any]" = queue.Queue()
        self._waiting_for_stdin = threading.Event()
        self._state_lock = threading.Lock()
        self._thread_id: Optional[int] = None
        self._setup_namespace()

    def _setup_namespace(self):
        """Install the editor helpers into the user namespace."""
        self.ip.user_ns["__notebook__"] = True
        self.ip.user_ns["input"] = self._read_stdin
        self.ip.user_ns["ui_value"] = self.get_ui_value
        self.ip.user_ns["register_function"] = self.register_function

    def execute_cell(self, code: str) -> ExecutionResult:
        """
        Execute code and return result with outputs.

        Args:
            code: Python code to execute

        Returns:
            ExecutionResult with outputs and status
        """
        outputs = []
        error = None

        with _EXECUTION_LOCK:
            self.execution_count += 1
            try:
                with capture_output(display=False) as captured:
                    with self._state_lock:
                        self._thread_id = threading.get_ident()
                    try:
                        result = self.ip.run_cell(code, store_history=False, silent=False)
                    finally:
                        with self._state_lock:
                            self._thread_id = None

                if captured.stdout:
                    outputs.append({
                        "type": "stream",
                        "name": "stdout",
                        "text": captured.stdout,
                    })

                if captured.stderr:
                    outputs.append({
                        "type": "stream",
                        "name": "stderr",
                        "text": captured.stderr,
                    })

                if result.success:
                    if result.result is not None:
                        outputs.append({
                            "type": "execute_result",
                            "data": _build_mime_bundle(result.result),
                            "execution_count": self.execution_count,
                        })
                else:
                    exc = result.error_in_exec or result.error_before_exec
                    error = str(exc) if exc is not None else "Execution failed"
                    if isinstance(exc, ModuleNotFoundError) and exc.name:
                        self.missing_modules.add(exc.name.split(".")[0])
                    outputs.append({
                        "type": "error",
                        "ename": type(exc).__name__,
                        "evalue": str(exc),
                        "traceback": [],
                    })

            # An interrupt can land just outside the shell's own handler.
            except (Exception, KeyboardInterrupt) as e:
                error = str(e) or type(e).__name__
                outputs.append({
                    "type": "error",
                    "ename": type(e).__name__,
                    "evalue": str(e),
                    "traceback": [],
                })

            return ExecutionResult(
                success=error is None,
                outputs=outputs,
                execution_count=self.execution_count,
                error=error,
            )

    # ------------------------------------------------------------------ #
    # stdin
    # ------------------------------------------------------------------ #

    def _read_stdin(self, prompt: str = "") -> str:
        if prompt:
            print(prompt, end="")
        holds_lock = self._thread_id == threading.get_ident()
        self._waiting_for_stdin.set()
        if holds_lock:
            _EXECUTION_LOCK.release()
        try:
            item = self._stdin.get()
        finally:
            self._waiting_for_stdin.clear()
            if holds_lock:
                _EXECUTION_LOCK.acquire()
        if item is _INTERRUPT:
            raise KeyboardInterrupt("input interrupted")
        return item

    def send_stdin(self, text: str):
        """Deliver a line of text to the current or next ``input()`` call."""
        self._stdin.put(text)

    def interrupt(self) -> bool:
        """
        Abort a pending ``input()`` call, or raise KeyboardInterrupt in the
        thread running a cell.

        Returns:
            True if something was interrupted
        """
        if self._waiting_for_stdin.is_set():
            self._stdin.put(_INTERRUPT)
            return True
        with self._state_lock:
            if self._thread_id is None:
                return False
            logger.debug("Interrupting cell running in thread %s", self._thread_id)
            return _raise_async_exception(self._thread_id, KeyboardInterrupt)

    # ------------------------------------------------------------------ #
    # UI values and functions
    # ------------------------------------------------------------------ #

    def get_ui_value(self, object_id: str, default: Any = None) -> Any:
        return self.ui_values.get(object_id, default)

    def set_ui_value(self, object_id: str, value: Any) -> bool:
        """Set a UI value, returning True if it changed."""
        if object_id in self.ui_values and self.ui_values[object_id] == value:
            return False
        self.ui_values[object_id] = value
        return True

    def register_function(self, namespace: str, name: str, fn: Callable):
        """Expose a callable to the editor under ``namespace.name``."""
        self._functions[(namespace, name)] = fn

    def call_function(self, namespace: str, name: str, args: Any) -> Any:
        """
        Call a registered function.

        Dict arguments are passed as keywords, lists positionally, and
        anything else as a single argument.

        Raises:
            KeyError: If no function is registered under that name
        """
        fn = self._functions.get((namespace, name))
        if fn is None:
            raise KeyError(f"No function {namespace}.{name} registered")
        with _EXECUTION_LOCK:
            if args is None:
                return fn()
            if isinstance(args, dict):
                return fn(**args)
            if isinstance(args, list):
                return fn(*args)
            return fn(args)

    # ------------------------------------------------------------------ #
    # Completion and introspection
    # ------------------------------------------------------------------ #

    def complete(self, document: str) -> tuple[int, list[str]]:
        """
        Complete the token at the end of ``document``.

        Returns:
            Tuple of (prefix length, completion options)
        """
        line = document.split("\n")[-1]
        text, matches = self.ip.complete(None, line, len(line))
        return len(text), list(dict.fromkeys(matches))

    def data_tables(self) -> list[DataTable]:
        """Describe every tabular variable bound in the namespace."""
        tables = []
        for name in sorted(self.get_defined_names()):
            columns = table_columns(self.get_variable(name))
            if columns is None:
                continue
            num_rows = max((len(values) for values in columns.values()), default=0)
            tables.append(DataTable(
                name=name,
                source="memory",
                variable_name=name,
                num_rows=num_rows,
                num_columns=len(columns),
                columns=[
                    DataTableColumn(name=col, type=infer_column_type(values))
                    for col, values in columns.items()
                ],
            ))
        return tables

    def preview_column(self, table_name: str, column_name: str) -> dict:
        """
        Summarize one column of a tabular variable.

        Raises:
            KeyError: If the table or column does not exist
        """
        columns = table_columns(self.get_variable(table_name))
        if columns is None:
            raise KeyError(f"{table_name!r} is not a table")
        if column_name not in columns:
            raise KeyError(f"{table_name!r} has no column {column_name!r}")
        return summarize_column(columns[column_name])

    # ------------------------------------------------------------------ #
    # Namespace
    # ------------------------------------------------------------------ #

    def reset(self):
        """Reset the kernel to a clean state."""
        self.interrupt()
        with _EXECUTION_LOCK:
            self.ip.reset()
            self.execution_count = 0
            self.ui_values.clear()
            self.missing_modules.clear()
            self._functions.clear()
            self._setup_namespace()

    def get_variable(self, name: str) -> Any:
        """Get a variable from the namespace."""
        return self.ip.user_ns.get(name)

    def get_defined_names(self) -> list[str]:
        """Get list of user-defined names in namespace."""
        return [
            k for k in self.ip.user_ns.keys()
            if not k.startswith("_") and k not in _HELPERS and k not in self.ip.user_ns_hidden
        ]
