"""
Notebook: .nbctl file format - JSON-based notebook storage.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from notebook_ctl.models import AppConfig, CellConfig, Layout
from notebook_ctl.utils import atomic_write

logger = logging.getLogger(__name__)

NOTEBOOK_SUFFIX = ".nbctl"
FORMAT_VERSION = "1.0"


def is_notebook_path(path: Path) -> bool:
    """Return True if the path names a notebook file."""
    return Path(path).suffix == NOTEBOOK_SUFFIX


class Cell(BaseModel):
    """A single notebook cell."""
    id: str = Field(default_factory=lambda: f"cell_{datetime.now().strftime('%Y%m%d%H%M%S%f')}")
    code: str = ""
    name: str = "_"
    config: CellConfig = Field(default_factory=CellConfig)
    outputs: list[dict[str, Any]] = Field(default_factory=list)
    execution_count: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "config": self.config.model_dump(),
            "outputs": self.outputs,
            "execution_count": self.execution_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Cell":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            code=data.get("code", ""),
            name=data.get("name", "_"),
            config=CellConfig.model_validate(data.get("config", {})),
            outputs=data.get("outputs", []),
            execution_count=data.get("execution_count"),
        )


class Notebook(BaseModel):
    """
    .nbctl file format - JSON-based notebook storage.

    A notebook contains:
    - Cells, keyed by stable ids
    - App configuration and an optional layout
    - Metadata (name, created, modified)
    """

    version: str = FORMAT_VERSION
    app: AppConfig = Field(default_factory=AppConfig)
    cells: list[Cell] = Field(default_factory=list)
    layout: Optional[Layout] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def __init__(self, **data):
        super().__init__(**data)
        if not self.metadata:
            self.metadata = {
                "name": "Untitled",
                "created": datetime.now().isoformat(),
                "modified": datetime.now().isoformat(),
            }

    def add_cell(self, cell: Optional[Cell] = None, **kwargs) -> Cell:
        """
        Add a new cell to the notebook.

        Args:
            cell: Cell to add, or create new one
            **kwargs: Arguments for new cell if cell not provided

        Returns:
            The added cell
        """
        if cell is None:
            cell = Cell(**kwargs)
        self.cells.append(cell)
        self._touch()
        return cell

    def get_cell(self, cell_id: str) -> Optional[Cell]:
        """Get a cell by id."""
        for cell in self.cells:
            if cell.id == cell_id:
                return cell
        return None

    def remove_cell(self, cell_id: str) -> Optional[Cell]:
        """Remove a cell by id, returning it if it was present."""
        for index, cell in enumerate(self.cells):
            if cell.id == cell_id:
                self._touch()
                return self.cells.pop(index)
        return None

    @property
    def cell_ids(self) -> list[str]:
        return [cell.id for cell in self.cells]

    def _touch(self):
        """Update the modified timestamp."""
        self.metadata["modified"] = datetime.now().isoformat()

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "version": self.version,
            "app": self.app.model_dump(),
            "cells": [cell.to_dict() for cell in self.cells],
            "layout": self.layout.model_dump() if self.layout else None,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Notebook":
        """Create from dictionary."""
        layout = data.get("layout")
        return cls(
            version=data.get("version", FORMAT_VERSION),
            app=AppConfig.model_validate(data.get("app", {})),
            cells=[Cell.from_dict(c) for c in data.get("cells", [])],
            layout=Layout.model_validate(layout) if layout else None,
            metadata=data.get("metadata", {}),
        )

    def save(self, path: Path):
        """
        Save notebook to a .nbctl file.

        The document is written to a temporary sibling first and then
        renamed over the target, so readers see either the previous file
        or the new one.

        Args:
            path: Path to save to
        """
        path = Path(path)
        atomic_write(path, (json.dumps(self.to_dict(), indent=2) + "\n").encode("utf-8"))
        logger.info("Saved notebook %s (%d cells)", path, len(self.cells))

    @classmethod
    def load(cls, path: Path) -> "Notebook":
        """
        Load notebook from a .nbctl file.

        Args:
            path: Path to load from

        Returns:
            Loaded notebook
        """
        path = Path(path)
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def new(cls, name: str = "Untitled") -> "Notebook":
        """Create a new empty notebook."""
        return cls(
            metadata={
                "name": name,
                "created": datetime.now().isoformat(),
                "modified": datetime.now().isoformat(),
            }
        )
