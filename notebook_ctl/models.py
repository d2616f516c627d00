"""
Wire models for the notebook control protocol.

Request and response models are camelCase on the wire and snake_case in
Python. Configuration and data-table models keep snake_case keys.
Paired arrays (``cellIds`` + ``codes``) are validated once here and exposed
as sequences of ``{id, value}`` pairs to the rest of the backend.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue, model_validator
from pydantic.alias_generators import to_camel


SessionId = str
CellId = str
RequestId = str
FilePath = str

PackageManagerName = Literal["pip", "uv", "rye", "poetry", "pixi"]
LayoutType = Literal["vertical", "grid", "slides"]
ColumnType = Literal["string", "boolean", "integer", "number", "date", "unknown"]


class WireModel(BaseModel):
    """Base for protocol messages: camelCase aliases, snake_case fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_paired(left: list, right: list, left_name: str, right_name: str):
    if len(left) != len(right):
        raise ValueError(
            f"{left_name} and {right_name} must have the same length "
            f"(got {len(left)} and {len(right)})"
        )


# ---------------------------------------------------------------------- #
# Configuration
# ---------------------------------------------------------------------- #

class CellConfig(BaseModel):
    disabled: bool = False
    hide_code: bool = False
    column: Optional[int] = None


class AppConfig(BaseModel):
    width: Literal["compact", "medium", "full"] = "compact"
    app_title: Optional[str] = None
    css_file: Optional[str] = None


class FormattingConfig(BaseModel):
    line_length: int = Field(default=79, gt=0)


class PackageManagementConfig(BaseModel):
    manager: PackageManagerName = "pip"


class SaveConfig(BaseModel):
    autosave: Literal["off", "after_delay"] = "off"
    autosave_delay: int = 1000
    format_on_save: bool = False


class CompletionConfig(BaseModel):
    activate_on_typing: bool = True


class UserConfig(BaseModel):
    formatting: FormattingConfig = Field(default_factory=FormattingConfig)
    package_management: PackageManagementConfig = Field(default_factory=PackageManagementConfig)
    save: SaveConfig = Field(default_factory=SaveConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)


class Layout(BaseModel):
    type: LayoutType = "vertical"
    data: JsonValue = None


# ---------------------------------------------------------------------- #
# Pairs
# ---------------------------------------------------------------------- #

class CellCode(BaseModel):
    """One cell id paired with its code."""
    id: CellId
    code: str


class ValueUpdate(WireModel):
    """One UI object id paired with its value."""
    object_id: str
    value: JsonValue = None


# ---------------------------------------------------------------------- #
# Cell requests
# ---------------------------------------------------------------------- #

class RunRequest(WireModel):
    cell_ids: list[CellId]
    codes: list[str]

    @model_validator(mode="after")
    def check_paired(self):
        _check_paired(self.cell_ids, self.codes, "cellIds", "codes")
        return self

    @property
    def cells(self) -> list[CellCode]:
        return [CellCode(id=i, code=c) for i, c in zip(self.cell_ids, self.codes)]


class SaveRequest(WireModel):
    cell_ids: list[CellId]
    filename: str
    codes: list[str]
    names: list[str]
    layout: Optional[Layout] = None
    configs: list[CellConfig]

    @model_validator(mode="after")
    def check_paired(self):
        _check_paired(self.cell_ids, self.codes, "cellIds", "codes")
        _check_paired(self.cell_ids, self.names, "cellIds", "names")
        _check_paired(self.cell_ids, self.configs, "cellIds", "configs")
        if len(set(self.cell_ids)) != len(self.cell_ids):
            raise ValueError("cellIds must be unique")
        return self


class FormatRequest(WireModel):
    codes: dict[CellId, str]
    line_length: int = Field(default=79, gt=0)


class FormatResponse(WireModel):
    codes: dict[CellId, str] = Field(default_factory=dict)


class DeleteCellRequest(WireModel):
    cell_id: CellId


class RenameRequest(WireModel):
    filename: Optional[str] = None


class StdinRequest(WireModel):
    text: str


class InstantiateRequest(WireModel):
    object_ids: list[str]
    values: list[JsonValue]

    @model_validator(mode="after")
    def check_paired(self):
        _check_paired(self.object_ids, self.values, "objectIds", "values")
        return self

    @property
    def updates(self) -> list[ValueUpdate]:
        return [ValueUpdate(object_id=o, value=v) for o, v in zip(self.object_ids, self.values)]


class SetComponentValuesRequest(InstantiateRequest):
    pass


class CodeCompletionRequest(WireModel):
    id: RequestId
    document: str
    cell_id: CellId


class CompletionResult(WireModel):
    completion_id: RequestId
    prefix_length: int = 0
    options: list[str] = Field(default_factory=list)


class FunctionCallRequest(WireModel):
    function_call_id: RequestId
    namespace: str
    function_name: str
    args: JsonValue = None


class FunctionCallResult(WireModel):
    function_call_id: RequestId
    status: Literal["ok", "error"] = "ok"
    return_value: JsonValue = None
    error: Optional[str] = None


class SaveUserConfigRequest(WireModel):
    config: UserConfig


class SaveAppConfigRequest(WireModel):
    config: AppConfig


class SaveCellConfigRequest(WireModel):
    configs: dict[CellId, CellConfig]


class InstallMissingPackagesRequest(WireModel):
    manager: PackageManagerName = "pip"


class ReadCodeResponse(WireModel):
    contents: str


class OpenFileRequest(WireModel):
    path: FilePath


# ---------------------------------------------------------------------- #
# Sessions and discovery
# ---------------------------------------------------------------------- #

class OpenSessionRequest(WireModel):
    path: Optional[FilePath] = None


class SessionInfo(WireModel):
    session_id: SessionId
    path: Optional[FilePath] = None
    last_modified: Optional[float] = None
    initialization_id: Optional[str] = None


class NotebookSummary(WireModel):
    name: str
    path: FilePath
    last_modified: Optional[float] = None
    session_id: Optional[SessionId] = None
    initialization_id: Optional[str] = None


class NotebookListResponse(WireModel):
    files: list[NotebookSummary] = Field(default_factory=list)


class WorkspaceFilesRequest(WireModel):
    include_markdown: bool = False


class ShutdownSessionRequest(WireModel):
    session_id: SessionId


# ---------------------------------------------------------------------- #
# Files
# ---------------------------------------------------------------------- #

class FileInfo(WireModel):
    id: str
    path: FilePath
    name: str
    last_modified: Optional[float] = None
    is_directory: bool = False
    is_notebook: bool = Field(default=False, alias="isMarimoFile")
    children: list["FileInfo"] = Field(default_factory=list)


class FileListRequest(WireModel):
    path: Optional[FilePath] = None


class FileListResponse(WireModel):
    files: list[FileInfo] = Field(default_factory=list)
    root: FilePath


class FileCreateRequest(WireModel):
    path: FilePath
    type: Literal["file", "directory"]
    name: str
    contents: Optional[str] = None


class FileDeleteRequest(WireModel):
    path: FilePath


class FileMoveRequest(WireModel):
    path: FilePath
    new_path: FilePath


class FileUpdateRequest(WireModel):
    path: FilePath
    contents: str


class FileDetailsRequest(WireModel):
    path: FilePath


class FileOperationResponse(WireModel):
    success: bool
    message: Optional[str] = None
    info: Optional[FileInfo] = None

    @model_validator(mode="after")
    def check_failure_message(self):
        if not self.success and not self.message:
            raise ValueError("a failed file operation must carry a message")
        return self


class FileDetailsResponse(WireModel):
    file: FileInfo
    mime_type: Optional[str] = None
    contents: Optional[str] = None


# ---------------------------------------------------------------------- #
# Data tables, snippets, export, usage
# ---------------------------------------------------------------------- #

class DataTableColumn(BaseModel):
    name: str
    type: ColumnType = "unknown"


class DataTable(BaseModel):
    name: str
    source: str
    variable_name: Optional[str] = None
    num_rows: int
    num_columns: int
    columns: list[DataTableColumn] = Field(default_factory=list)


class DataTablesResponse(WireModel):
    tables: list[DataTable] = Field(default_factory=list)


class PreviewDatasetColumnRequest(WireModel):
    source: str
    table_name: str
    column_name: str


class ColumnPreview(WireModel):
    table_name: str
    column_name: str
    summary: Optional[dict[str, JsonValue]] = None
    error: Optional[str] = None


class SnippetSection(BaseModel):
    id: str
    html: Optional[str] = None
    code: Optional[str] = None


class Snippet(BaseModel):
    title: str
    sections: list[SnippetSection] = Field(default_factory=list)


class SnippetsResponse(WireModel):
    snippets: list[Snippet] = Field(default_factory=list)


class ExportAsHTMLRequest(WireModel):
    asset_url: Optional[str] = None
    include_code: bool = True
    files: list[FilePath] = Field(default_factory=list)
    download: bool = False


class ExportAsMarkdownRequest(WireModel):
    download: bool = False


class MemoryUsage(BaseModel):
    total: int
    available: int
    percent: float
    used: int
    free: int


class CpuUsage(BaseModel):
    percent: float


class UsageResponse(WireModel):
    memory: MemoryUsage
    cpu: CpuUsage
