"""
Utility functions for notebook-ctl.
"""

import json
import os
import uuid
from datetime import date
from pathlib import Path
from typing import Any, Optional


def format_output(output: dict[str, Any]) -> str:
    """
    Format an output dictionary for display (plain text).

    Args:
        output: Output dictionary from ExecutionResult

    Returns:
        Formatted string for display
    """
    output_type = output.get("type", "")

    if output_type == "stream":
        return output.get("text", "")

    elif output_type in ("execute_result", "display_data"):
        data = output.get("data", {})
        if "text/markdown" in data:
            return data["text/markdown"]
        if "application/json" in data:
            val = data["application/json"]
            return json.dumps(val, indent=2) if not isinstance(val, str) else val
        return data.get("text/plain", "")

    elif output_type == "error":
        ename = output.get("ename", "Error")
        evalue = output.get("evalue", "")
        return f"{ename}: {evalue}"

    return str(output)


def atomic_write(path: Path, data: bytes):
    """Write to a uniquely named temporary sibling, then rename over the target."""
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


# ---------------------------------------------------------------------- #
# Tabular values
# ---------------------------------------------------------------------- #

def table_columns(value: Any) -> Optional[dict[str, list]]:
    """
    Return a column-oriented view of a table-like value, or None.

    Recognized shapes:
    - a non-empty list of dicts (rows)
    - a non-empty dict of equally sized lists (columns)
    - objects exposing ``columns`` and item access by column name,
      such as data frames
    """
    if isinstance(value, list):
        if not value or not all(isinstance(row, dict) for row in value):
            return None
        names = list(dict.fromkeys(key for row in value for key in row))
        return {str(name): [row.get(name) for row in value] for name in names}

    if isinstance(value, dict):
        if not value or not all(isinstance(col, list) for col in value.values()):
            return None
        if len({len(col) for col in value.values()}) != 1:
            return None
        return {str(name): list(col) for name, col in value.items()}

    columns = getattr(value, "columns", None)
    if columns is None or isinstance(value, type) or not hasattr(value, "__getitem__"):
        return None
    try:
        return {str(name): list(value[name]) for name in columns}
    except (TypeError, KeyError, IndexError):
        return None


def _value_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, date):
        return "date"
    return "unknown"


def infer_column_type(values: list) -> str:
    """Infer a column type from its non-null values."""
    kinds = {_value_type(v) for v in values if v is not None}
    if kinds == {"integer", "number"}:
        return "number"
    if len(kinds) == 1:
        return kinds.pop()
    return "unknown"


def summarize_column(values: list) -> dict[str, Any]:
    """Compute a JSON-friendly summary of a column."""
    present = [v for v in values if v is not None]
    summary: dict[str, Any] = {
        "type": infer_column_type(values),
        "total": len(values),
        "nulls": len(values) - len(present),
    }
    try:
        summary["unique"] = len(set(present))
    except TypeError:
        summary["unique"] = None

    if summary["type"] in ("integer", "number") and present:
        summary["min"] = min(present)
        summary["max"] = max(present)
        summary["mean"] = sum(present) / len(present)
    elif summary["type"] == "date" and present:
        summary["min"] = min(present).isoformat()
        summary["max"] = max(present).isoformat()
    elif summary["type"] == "boolean":
        summary["true"] = sum(1 for v in present if v)
        summary["false"] = sum(1 for v in present if not v)
    elif summary["type"] == "string" and present:
        counts: dict[str, int] = {}
        for v in present:
            counts[v] = counts.get(v, 0) + 1
        top = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:5]
        summary["top"] = [[v, n] for v, n in top]
    return summary
