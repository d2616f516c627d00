"""
Protocol Dispatcher: the operation table behind every transport.

A request is a named operation plus a JSON payload and, for edit
operations, a session id. The dispatcher validates the payload into its
request model, binds the session and calls the handler. Responses are
JSON-ready dicts (camelCase keys), plain strings for exports, or None for
acknowledgements.
"""

import base64
import logging
import mimetypes
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import click
from pydantic import BaseModel, ValidationError

from notebook_ctl import export, packages
from notebook_ctl.config import ServerSettings, load_user_config, save_user_config
from notebook_ctl.errors import (
    BackendExecutionError,
    ConflictError,
    InvalidPathError,
    NotFoundError,
    ProtocolError,
)
from notebook_ctl.files import FileSystem
from notebook_ctl.kernel import NotebookKernel
from notebook_ctl.models import (
    CodeCompletionRequest,
    ColumnPreview,
    CompletionResult,
    DataTablesResponse,
    DeleteCellRequest,
    ExportAsHTMLRequest,
    ExportAsMarkdownRequest,
    FileCreateRequest,
    FileDeleteRequest,
    FileDetailsRequest,
    FileListRequest,
    FileMoveRequest,
    FileUpdateRequest,
    FormatRequest,
    FormatResponse,
    FunctionCallRequest,
    InstallMissingPackagesRequest,
    InstantiateRequest,
    OpenFileRequest,
    OpenSessionRequest,
    PreviewDatasetColumnRequest,
    ReadCodeResponse,
    RenameRequest,
    RunRequest,
    SaveAppConfigRequest,
    SaveCellConfigRequest,
    SaveRequest,
    SaveUserConfigRequest,
    SetComponentValuesRequest,
    ShutdownSessionRequest,
    StdinRequest,
    WorkspaceFilesRequest,
)
from notebook_ctl.session import Session, SessionManager
from notebook_ctl.snippets import read_snippets
from notebook_ctl.usage import get_usage
from notebook_ctl.workspace import RecentFiles, Workspace

logger = logging.getLogger(__name__)


@dataclass
class Operation:
    name: str
    handler: Callable
    request: Optional[type[BaseModel]] = None
    session: bool = False


OPERATIONS: dict[str, Operation] = {}


def operation(name: str, request: Optional[type[BaseModel]] = None, session: bool = False):
    """Register a Dispatcher method as the handler of ``name``."""

    def decorator(fn: Callable) -> Callable:
        OPERATIONS[name] = Operation(name=name, handler=fn, request=request, session=session)
        return fn

    return decorator


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"])
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)


def _serialize(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json", by_alias=True)
    return result


class PendingResults:
    """
    Correlation registry for results delivered out of band.

    A request id is tracked when the request is accepted and handed out
    once, either by ``poll`` or ``wait``. Results for ids that are not
    tracked (never issued, or abandoned) are discarded.
    """

    _PENDING = object()

    def __init__(self):
        self._cond = threading.Condition()
        self._results: dict[str, Any] = {}

    def track(self, request_id: str):
        """
        Raises:
            ProtocolError: If ``request_id`` is already pending
        """
        with self._cond:
            if request_id in self._results:
                raise ProtocolError(f"Request id {request_id!r} is already pending", id=request_id)
            self._results[request_id] = self._PENDING

    def deliver(self, request_id: str, result: Any):
        with self._cond:
            if request_id not in self._results:
                logger.debug("Discarding result for untracked request %s", request_id)
                return
            self._results[request_id] = _serialize(result)
            self._cond.notify_all()

    def pending(self, request_id: str) -> bool:
        with self._cond:
            return self._results.get(request_id) is self._PENDING

    def poll(self, request_id: str) -> Optional[Any]:
        """
        Return the result for ``request_id`` if it has arrived, else None.

        Raises:
            NotFoundError: If ``request_id`` is not tracked
        """
        with self._cond:
            return self._take(request_id)

    def wait(self, request_id: str, timeout: Optional[float] = None) -> Optional[Any]:
        """Block until the result arrives; None if ``timeout`` expires first."""
        with self._cond:
            self._cond.wait_for(
                lambda: self._results.get(request_id) is not self._PENDING, timeout=timeout
            )
            return self._take(request_id)

    def _take(self, request_id: str) -> Optional[Any]:
        if request_id not in self._results:
            raise NotFoundError(f"Request {request_id!r} is not pending", id=request_id)
        result = self._results[request_id]
        if result is self._PENDING:
            return None
        del self._results[request_id]
        return result

    def abandon(self, request_id: str):
        with self._cond:
            self._results.pop(request_id, None)
            self._cond.notify_all()


class Dispatcher:
    """
    Route named operations to sessions, files and workspace views.

    Args:
        settings: Workspace root and config locations
        kernel_factory: Creates the interpreter of each new session
    """

    def __init__(
        self,
        settings: Optional[ServerSettings] = None,
        kernel_factory: Callable[[], NotebookKernel] = NotebookKernel,
    ):
        self.settings = settings or ServerSettings.from_env()
        self.files = FileSystem(self.settings.root)
        self.sessions = SessionManager(kernel_factory=kernel_factory)
        self.recent = RecentFiles(self.settings.recent_files_path)
        self.workspace = Workspace(self.files, self.sessions, self.recent)
        self.user_config = load_user_config(self.settings.user_config_path)
        self.results = PendingResults()
        self._completions = ThreadPoolExecutor(max_workers=2, thread_name_prefix="completion")

    def dispatch(self, name: str, payload: Any = None, session_id: Optional[str] = None) -> Any:
        """
        Run operation ``name`` and return its JSON-ready response.

        Raises:
            ProtocolError: If the operation is unknown or the payload is invalid
            SessionMismatchError: If an edit operation names no live session
            ControlError: Any other structural failure of the operation
        """
        op = OPERATIONS.get(name)
        if op is None:
            raise ProtocolError(f"Unknown operation {name!r}", operation=name)

        args = []
        if op.request is not None:
            try:
                args.append(op.request.model_validate(payload if payload is not None else {}))
            except ValidationError as e:
                raise ProtocolError(f"Invalid {name} request: {_validation_message(e)}", operation=name)
        if op.session:
            args.insert(0, self.sessions.get(session_id))

        logger.debug("Dispatching %s (session=%s)", name, session_id)
        return _serialize(op.handler(self, *args))

    def close(self):
        """Shut down every session and background worker."""
        self.sessions.shutdown_all()
        self._completions.shutdown(wait=False, cancel_futures=True)

    def _notebook_path(self, filename: str) -> Path:
        path = self.files.resolve(filename)
        if path == self.files.root or not path.parent.is_dir():
            raise InvalidPathError(f"Parent directory of {filename} does not exist", path=filename)
        return path

    # ------------------------------------------------------------------ #
    # Session-bound operations
    # ------------------------------------------------------------------ #

    @operation("run", RunRequest, session=True)
    def _run(self, session: Session, request: RunRequest):
        session.run(request.cells)

    @operation("save", SaveRequest, session=True)
    def _save(self, session: Session, request: SaveRequest):
        path = self._notebook_path(request.filename)
        if session.path is not None and path != session.path:
            raise ProtocolError(
                f"Session is bound to {session.path.name}; use rename to save elsewhere",
                filename=request.filename,
            )
        line_length = None
        if self.user_config.save.format_on_save:
            line_length = self.user_config.formatting.line_length

        if session.path is None:
            with self.files.locks.hold(path):
                if path.exists():
                    raise ConflictError(f"{path.name} already exists", path=path.as_posix())
                self.sessions.claim(session, path)
                session.save(request, path, line_length)
        else:
            session.save(request, path, line_length)
        self.recent.touch(path)

    @operation("format", FormatRequest, session=True)
    def _format(self, session: Session, request: FormatRequest) -> FormatResponse:
        return FormatResponse(codes=session.format(request.codes, request.line_length))

    @operation("delete_cell", DeleteCellRequest, session=True)
    def _delete_cell(self, session: Session, request: DeleteCellRequest):
        session.delete_cell(request.cell_id)

    @operation("rename", RenameRequest, session=True)
    def _rename(self, session: Session, request: RenameRequest):
        path = self._notebook_path(request.filename) if request.filename else None
        self.sessions.bind(session, path)
        if path is not None:
            self.recent.touch(path)

    @operation("interrupt", session=True)
    def _interrupt(self, session: Session):
        session.interrupt()

    @operation("restart", session=True)
    def _restart(self, session: Session):
        session.restart()

    @operation("shutdown", session=True)
    def _shutdown(self, session: Session):
        self.sessions.shutdown(session.session_id)

    @operation("stdin", StdinRequest, session=True)
    def _stdin(self, session: Session, request: StdinRequest):
        session.send_stdin(request.text)

    @operation("instantiate", InstantiateRequest, session=True)
    def _instantiate(self, session: Session, request: InstantiateRequest):
        session.instantiate(request.updates)

    @operation("set_component_values", SetComponentValuesRequest, session=True)
    def _set_component_values(self, session: Session, request: SetComponentValuesRequest):
        session.set_component_values(request.updates)

    @operation("function_call", FunctionCallRequest, session=True)
    def _function_call(self, session: Session, request: FunctionCallRequest):
        self.results.track(request.function_call_id)
        try:
            session.call_function(
                request.function_call_id,
                request.namespace,
                request.function_name,
                request.args,
                self.results.deliver,
            )
        except Exception:
            self.results.abandon(request.function_call_id)
            raise

    @operation("code_completion", CodeCompletionRequest, session=True)
    def _code_completion(self, session: Session, request: CodeCompletionRequest):
        session.require_cells([request.cell_id])
        self.results.track(request.id)

        def _complete():
            try:
                result = session.complete(request.id, request.cell_id, request.document)
            except Exception as e:
                logger.warning("Completion %s failed: %s", request.id, e)
                result = CompletionResult(completion_id=request.id)
            self.results.deliver(request.id, result)

        self._completions.submit(_complete)

    @operation("save_app_config", SaveAppConfigRequest, session=True)
    def _save_app_config(self, session: Session, request: SaveAppConfigRequest):
        session.save_app_config(request.config)

    @operation("save_cell_config", SaveCellConfigRequest, session=True)
    def _save_cell_config(self, session: Session, request: SaveCellConfigRequest):
        session.save_cell_config(request.configs)

    @operation("install_missing_packages", InstallMissingPackagesRequest, session=True)
    def _install_missing_packages(self, session: Session, request: InstallMissingPackagesRequest):
        modules = set(session.kernel.missing_modules)
        if not modules:
            logger.info("Session %s: no missing packages to install", session.session_id)
            return

        def _install():
            installed = packages.install_packages(request.manager, modules)
            session.kernel.missing_modules.difference_update(installed)

        session.spawn(_install)

    @operation("read_code", session=True)
    def _read_code(self, session: Session) -> ReadCodeResponse:
        return ReadCodeResponse(contents=session.read_code())

    @operation("preview_dataset_column", PreviewDatasetColumnRequest, session=True)
    def _preview_dataset_column(
        self, session: Session, request: PreviewDatasetColumnRequest
    ) -> ColumnPreview:
        preview = ColumnPreview(table_name=request.table_name, column_name=request.column_name)
        if request.source != "memory":
            preview.error = f"Unknown data source {request.source!r}"
            return preview
        try:
            preview.summary = session.kernel.preview_column(request.table_name, request.column_name)
        except KeyError as e:
            preview.error = e.args[0]
        return preview

    @operation("data_tables", session=True)
    def _data_tables(self, session: Session) -> DataTablesResponse:
        return DataTablesResponse(tables=session.kernel.data_tables())

    @operation("export_html", ExportAsHTMLRequest, session=True)
    def _export_html(self, session: Session, request: ExportAsHTMLRequest) -> str:
        files = {}
        for path in request.files:
            target = self.files.existing(path)
            if target.is_dir():
                raise InvalidPathError(f"{path} is a directory", path=path)
            mime_type = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
            data = base64.b64encode(target.read_bytes()).decode("ascii")
            files[path] = f"data:{mime_type};base64,{data}"
        return export.export_html(
            session.notebook,
            include_code=request.include_code,
            asset_url=request.asset_url,
            files=files,
        )

    @operation("export_markdown", ExportAsMarkdownRequest, session=True)
    def _export_markdown(self, session: Session, request: ExportAsMarkdownRequest) -> str:
        return export.export_markdown(session.notebook)

    # ------------------------------------------------------------------ #
    # Session-free operations
    # ------------------------------------------------------------------ #

    @operation("open_session", OpenSessionRequest)
    def _open_session(self, request: OpenSessionRequest):
        path = self._notebook_path(request.path) if request.path else None
        session = self.sessions.open(path)
        if path is not None:
            self.recent.touch(path)
        return session.info()

    @operation("save_user_config", SaveUserConfigRequest)
    def _save_user_config(self, request: SaveUserConfigRequest):
        try:
            save_user_config(self.settings.user_config_path, request.config)
        except OSError as e:
            raise BackendExecutionError(f"Failed to save user config: {e}")
        self.user_config = request.config

    @operation("read_snippets")
    def _read_snippets(self):
        return read_snippets()

    @operation("open_file", OpenFileRequest)
    def _open_file(self, request: OpenFileRequest):
        target = self.files.existing(request.path)
        if click.launch(str(target)) != 0:
            raise BackendExecutionError(f"Could not open {target.name}", path=request.path)

    @operation("usage")
    def _usage(self):
        return get_usage()

    @operation("list_files", FileListRequest)
    def _list_files(self, request: FileListRequest):
        return self.files.list_files(request.path)

    @operation("create_file", FileCreateRequest)
    def _create_file(self, request: FileCreateRequest):
        return self.files.create(request.path, request.type, request.name, request.contents)

    @operation("delete_file", FileDeleteRequest)
    def _delete_file(self, request: FileDeleteRequest):
        return self.files.delete(request.path)

    @operation("move_file", FileMoveRequest)
    def _move_file(self, request: FileMoveRequest):
        return self.files.move(request.path, request.new_path)

    @operation("update_file", FileUpdateRequest)
    def _update_file(self, request: FileUpdateRequest):
        return self.files.update(request.path, request.contents)

    @operation("file_details", FileDetailsRequest)
    def _file_details(self, request: FileDetailsRequest):
        return self.files.details(request.path)

    @operation("recent_files")
    def _recent_files(self):
        return self.workspace.recent_files()

    @operation("workspace_files", WorkspaceFilesRequest)
    def _workspace_files(self, request: WorkspaceFilesRequest):
        return self.workspace.workspace_files(request.include_markdown)

    @operation("running_notebooks")
    def _running_notebooks(self):
        return self.workspace.running_notebooks()

    @operation("shutdown_session", ShutdownSessionRequest)
    def _shutdown_session(self, request: ShutdownSessionRequest):
        self.sessions.shutdown(request.session_id)
        return self.workspace.running_notebooks()
