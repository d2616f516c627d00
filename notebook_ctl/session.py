"""
Session and SessionManager: running notebooks and their registry.
"""

import logging
import os
import threading
import uuid
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from notebook_ctl.errors import (
    BackendExecutionError,
    ConflictError,
    NotFoundError,
    SessionMismatchError,
)
from notebook_ctl.formatter import format_codes
from notebook_ctl.kernel import NotebookKernel
from notebook_ctl.models import (
    AppConfig,
    CellCode,
    CellConfig,
    CompletionResult,
    FunctionCallResult,
    NotebookSummary,
    SaveRequest,
    SessionInfo,
    ValueUpdate,
)
from notebook_ctl.notebook import Cell, Notebook

logger = logging.getLogger(__name__)


class Session:
    """
    A running notebook: cells, a kernel and an ordered work queue.

    Every mutation of cells or kernel state goes through a single-worker
    queue, so work on one cell is applied in the order it was issued and a
    save is ordered against every other mutation. Callers that need the
    outcome (save, delete, config updates) wait on the queued work.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        notebook: Optional[Notebook] = None,
        kernel: Optional[NotebookKernel] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or f"s_{uuid.uuid4().hex[:12]}"
        self.initialization_id = uuid.uuid4().hex
        self.path = Path(path) if path else None
        self.notebook = notebook or Notebook.new(name=self.path.stem if self.path else "Untitled")
        self.kernel = kernel or NotebookKernel()
        self.deleted_cell_ids: set[str] = set()
        self.closed = False
        self._lock = threading.RLock()
        self._generation = 0
        self._queue = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"session-{self.session_id}"
        )

    # ------------------------------------------------------------------ #
    # Queue
    # ------------------------------------------------------------------ #

    def submit(self, fn: Callable, *args) -> Future:
        """Queue work behind everything already issued to this session."""
        if self.closed:
            raise SessionMismatchError(self.session_id)
        return self._queue.submit(fn, *args)

    def spawn(self, fn: Callable, *args) -> Future:
        """Queue fire-and-forget work; its failure is logged."""
        future = self.submit(fn, *args)
        future.add_done_callback(self._log_failure)
        return future

    def _log_failure(self, future: Future):
        if future.cancelled() or future.exception() is None:
            return
        logger.error(
            "Session %s: queued work failed", self.session_id, exc_info=future.exception()
        )

    def call(self, fn: Callable, *args) -> Any:
        """Queue work and wait for its result, re-raising its failure."""
        try:
            return self.submit(fn, *args).result()
        except CancelledError:
            raise SessionMismatchError(self.session_id, f"Session {self.session_id!r} was shut down")

    def join(self, timeout: Optional[float] = None):
        """Wait until all work issued so far has been applied."""
        self.submit(lambda: None).result(timeout=timeout)

    # ------------------------------------------------------------------ #
    # Cells
    # ------------------------------------------------------------------ #

    def require_cells(self, cell_ids):
        """
        Raise NotFoundError unless every id names a live cell.

        Raises:
            NotFoundError: For the first unknown or deleted id
        """
        with self._lock:
            known = set(self.notebook.cell_ids)
            for cell_id in cell_ids:
                if cell_id not in known:
                    raise NotFoundError(f"Cell {cell_id!r} not found", cell_id=cell_id)

    def run(self, cells: list[CellCode]) -> Future:
        """Queue cells for execution with the paired code."""
        self.require_cells([c.id for c in cells])
        return self.spawn(self._run_cells, cells, self._generation)

    def _run_cells(self, cells: list[CellCode], generation: int):
        for item in cells:
            if generation != self._generation:
                logger.info("Session %s: skipping interrupted run of %s", self.session_id, item.id)
                return
            with self._lock:
                cell = self.notebook.get_cell(item.id)
                if cell is None:
                    logger.info("Session %s: cell %s was deleted before it ran", self.session_id, item.id)
                    continue
                cell.code = item.code
            if cell.config.disabled:
                continue
            result = self.kernel.execute_cell(item.code)
            with self._lock:
                cell.outputs = result.outputs
                cell.execution_count = result.execution_count
            logger.debug(
                "Session %s: ran %s (success=%s)", self.session_id, item.id, result.success
            )

    def save(self, request: SaveRequest, path: Path, format_line_length: Optional[int] = None):
        """
        Record the request as the new notebook snapshot and write it to ``path``.

        Either every cell is recorded or the previous snapshot stays in
        place, both in memory and on disk.

        Raises:
            NotFoundError: If the snapshot references a deleted cell
            BackendExecutionError: If the file could not be written
        """
        for cell_id in request.cell_ids:
            if cell_id in self.deleted_cell_ids:
                raise NotFoundError(f"Cell {cell_id!r} was deleted", cell_id=cell_id)
        self.call(self._apply_save, request, path, format_line_length)

    def _apply_save(self, request: SaveRequest, path: Path, format_line_length: Optional[int]):
        codes = dict(zip(request.cell_ids, request.codes))
        if format_line_length:
            codes.update(format_codes(codes, format_line_length))

        with self._lock:
            cells = []
            for cell_id, name, config in zip(request.cell_ids, request.names, request.configs):
                previous = self.notebook.get_cell(cell_id)
                cells.append(Cell(
                    id=cell_id,
                    code=codes[cell_id],
                    name=name,
                    config=config,
                    outputs=previous.outputs if previous else [],
                    execution_count=previous.execution_count if previous else None,
                ))
            snapshot = self._derive(cells=cells, layout=request.layout)
            self._commit(snapshot, path)
            self.path = path

    def delete_cell(self, cell_id: str):
        """Remove a cell; later references to it fail with NotFoundError."""
        self.require_cells([cell_id])
        self.call(self._apply_delete, cell_id)

    def _apply_delete(self, cell_id: str):
        with self._lock:
            if self.notebook.remove_cell(cell_id) is None:
                raise NotFoundError(f"Cell {cell_id!r} not found", cell_id=cell_id)
            self.deleted_cell_ids.add(cell_id)

    def format(self, codes: dict[str, str], line_length: int) -> dict[str, str]:
        """Format cell code without touching session state."""
        self.require_cells(codes)
        return format_codes(codes, line_length)

    def save_cell_config(self, configs: dict[str, CellConfig]):
        self.require_cells(configs)
        self.call(self._apply_cell_config, configs)

    def _apply_cell_config(self, configs: dict[str, CellConfig]):
        with self._lock:
            cells = [
                cell.model_copy(update={"config": configs.get(cell.id, cell.config)})
                for cell in self.notebook.cells
            ]
            self._commit(self._derive(cells=cells), self.path)

    def save_app_config(self, config: AppConfig):
        self.call(self._apply_app_config, config)

    def _apply_app_config(self, config: AppConfig):
        with self._lock:
            self._commit(self._derive(app=config), self.path)

    def _derive(self, **update) -> Notebook:
        notebook = self.notebook
        data = {
            "version": notebook.version,
            "app": notebook.app,
            "cells": notebook.cells,
            "layout": notebook.layout,
            "metadata": dict(notebook.metadata),
        }
        data.update(update)
        derived = Notebook(**data)
        derived._touch()
        return derived

    def _commit(self, notebook: Notebook, path: Optional[Path]):
        """Write ``notebook`` (when bound to a path) and make it current."""
        if path is not None:
            try:
                notebook.save(path)
            except OSError as e:
                logger.error("Session %s: failed to write %s: %s", self.session_id, path, e)
                raise BackendExecutionError(f"Failed to save {path.name}: {e}", path=path.as_posix())
        self.notebook = notebook

    def read_code(self) -> str:
        if self.path is None or not self.path.exists():
            raise NotFoundError("This notebook has not been saved yet")
        return self.path.read_text()

    # ------------------------------------------------------------------ #
    # Kernel
    # ------------------------------------------------------------------ #

    def interrupt(self):
        """Cancel the running cell and skip queued runs issued so far."""
        self._generation += 1
        self.kernel.interrupt()

    def restart(self) -> Future:
        self.interrupt()
        return self.spawn(self.kernel.reset)

    def send_stdin(self, text: str):
        self.kernel.send_stdin(text)

    def instantiate(self, updates: list[ValueUpdate]) -> Future:
        """Bind initial UI values, then run every cell in notebook order."""
        generation = self._generation

        def _instantiate():
            for update in updates:
                self.kernel.set_ui_value(update.object_id, update.value)
            with self._lock:
                cells = [CellCode(id=c.id, code=c.code) for c in self.notebook.cells]
            self._run_cells(cells, generation)

        return self.spawn(_instantiate)

    def set_component_values(self, updates: list[ValueUpdate]) -> Future:
        def _set():
            changed = [u.object_id for u in updates if self.kernel.set_ui_value(u.object_id, u.value)]
            if changed:
                logger.debug("Session %s: updated UI values %s", self.session_id, changed)

        return self.spawn(_set)

    def call_function(
        self,
        function_call_id: str,
        namespace: str,
        function_name: str,
        args: Any,
        deliver: Callable[[str, Any], None],
    ) -> Future:
        """Call a kernel function and deliver its result under ``function_call_id``."""

        def _call():
            try:
                value = self.kernel.call_function(namespace, function_name, args)
            except Exception as e:
                result = FunctionCallResult(
                    function_call_id=function_call_id, status="error", error=f"{type(e).__name__}: {e}"
                )
            else:
                try:
                    result = FunctionCallResult(function_call_id=function_call_id, return_value=value)
                except ValidationError:
                    result = FunctionCallResult(function_call_id=function_call_id, return_value=repr(value))
            deliver(function_call_id, result)

        return self.spawn(_call)

    def complete(self, completion_id: str, cell_id: str, document: str) -> CompletionResult:
        self.require_cells([cell_id])
        prefix_length, options = self.kernel.complete(document)
        return CompletionResult(
            completion_id=completion_id, prefix_length=prefix_length, options=options
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def move_to(self, new_path: Optional[Path]):
        """Rebind the session to ``new_path``, moving the file if it exists."""
        self.call(self._apply_move, new_path)

    def _apply_move(self, new_path: Optional[Path]):
        with self._lock:
            if new_path == self.path:
                return
            if new_path is not None:
                if new_path.exists():
                    raise ConflictError(f"{new_path.name} already exists", path=new_path.as_posix())
                if self.path is not None and self.path.exists():
                    try:
                        os.rename(self.path, new_path)
                    except OSError as e:
                        raise BackendExecutionError(f"Failed to rename notebook: {e}")
                self.notebook.metadata["name"] = new_path.stem
            logger.info("Session %s: %s -> %s", self.session_id, self.path, new_path)
            self.path = new_path

    def shutdown(self):
        """Stop the session; queued work that has not started is dropped."""
        if self.closed:
            return
        self.closed = True
        self._generation += 1
        self.kernel.interrupt()
        self._queue.shutdown(wait=False, cancel_futures=True)
        logger.info("Session %s shut down", self.session_id)

    @property
    def last_modified(self) -> Optional[float]:
        if self.path is not None and self.path.exists():
            return self.path.stat().st_mtime
        return None

    def info(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.session_id,
            path=self.path.as_posix() if self.path else None,
            last_modified=self.last_modified,
            initialization_id=self.initialization_id,
        )

    def summary(self) -> NotebookSummary:
        return NotebookSummary(
            name=self.path.name if self.path else self.notebook.metadata.get("name", "Untitled"),
            path=self.path.as_posix() if self.path else "",
            last_modified=self.last_modified,
            session_id=self.session_id,
            initialization_id=self.initialization_id,
        )


class SessionManager:
    """
    Registry of running sessions.

    At most one live session is bound to a notebook path. Ids of sessions
    that were shut down are remembered so later requests can be told apart
    from requests against a live session.
    """

    def __init__(self, kernel_factory: Callable[[], NotebookKernel] = NotebookKernel):
        self.kernel_factory = kernel_factory
        self._sessions: dict[str, Session] = {}
        self._closed: set[str] = set()
        self._reserved: dict[Path, Session] = {}
        self._lock = threading.Lock()

    def open(self, path: Optional[Path] = None) -> Session:
        """
        Return the live session bound to ``path``, or start a new one.

        Raises:
            BackendExecutionError: If the notebook file cannot be read
        """
        with self._lock:
            if path is not None:
                existing = self._by_path(path)
                if existing is not None:
                    return existing
            notebook = None
            if path is not None and path.exists():
                try:
                    notebook = Notebook.load(path)
                except (OSError, ValueError, KeyError) as e:
                    raise BackendExecutionError(f"Failed to read notebook {path.name}: {e}")
            session = Session(path=path, notebook=notebook, kernel=self.kernel_factory())
            self._sessions[session.session_id] = session
            logger.info("Opened session %s for %s", session.session_id, path or "a new notebook")
            return session

    def get(self, session_id: Optional[str]) -> Session:
        """
        Raises:
            SessionMismatchError: If the id is missing, unknown or shut down
        """
        with self._lock:
            session = self._sessions.get(session_id) if session_id else None
        if session is None:
            if session_id in self._closed:
                raise SessionMismatchError(session_id, f"Session {session_id!r} was shut down")
            raise SessionMismatchError(session_id)
        return session

    def _by_path(self, path: Path) -> Optional[Session]:
        if path in self._reserved:
            return self._reserved[path]
        for session in self._sessions.values():
            if session.path == path:
                return session
        return None

    def _check_free(self, session: Session, path: Path):
        other = self._by_path(path)
        if other is not None and other is not session:
            raise ConflictError(f"{path.name} is open in another session", path=path.as_posix())

    def claim(self, session: Session, path: Path):
        """
        Check that ``session`` may write to ``path``.

        Raises:
            ConflictError: If another live session is bound to ``path``
        """
        with self._lock:
            self._check_free(session, path)

    def bind(self, session: Session, path: Optional[Path]):
        """
        Rebind a session to a new notebook path, moving its file.

        The path is reserved while the session's queue drains, so other
        requests (stdin, interrupt) keep flowing in the meantime.

        Raises:
            ConflictError: If another live session is bound to ``path``
        """
        with self._lock:
            if path is not None:
                self._check_free(session, path)
                self._reserved[path] = session
        try:
            session.move_to(path)
        finally:
            if path is not None:
                with self._lock:
                    self._reserved.pop(path, None)

    def shutdown(self, session_id: str):
        """
        Raises:
            SessionMismatchError: If the session is not live
        """
        session = self.get(session_id)
        with self._lock:
            self._sessions.pop(session_id, None)
            self._closed.add(session_id)
        session.shutdown()

    def shutdown_all(self):
        for session_id in list(self._sessions):
            self.shutdown(session_id)

    def sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())
