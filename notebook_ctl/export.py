"""
Export a notebook as a standalone HTML page or as Markdown.
"""

import html
import io
import json

from rich.console import Console
from rich.syntax import Syntax

from notebook_ctl.notebook import Cell, Notebook
from notebook_ctl.utils import format_output

CODE_FORMAT = '<pre class="code" style="font-family:Menlo,monospace"><code>{code}</code></pre>'


def notebook_title(notebook: Notebook) -> str:
    return notebook.app.app_title or notebook.metadata.get("name", "Untitled")


def _highlight(code: str) -> str:
    """Render code to syntax-highlighted HTML with inline styles."""
    console = Console(
        record=True,
        file=io.StringIO(),
        width=100,
        force_terminal=True,
        color_system="truecolor",
    )
    console.print(Syntax(code, "python", theme="monokai", word_wrap=True))
    return console.export_html(inline_styles=True, code_format=CODE_FORMAT)


def _output_html(output: dict) -> str:
    data = output.get("data", {})
    if output.get("type") in ("execute_result", "display_data") and "text/html" in data:
        return f'<div class="output html">{data["text/html"]}</div>'
    css = "error" if output.get("type") == "error" else "text"
    return f'<pre class="output {css}">{html.escape(format_output(output))}</pre>'


def _cell_html(cell: Cell, include_code: bool) -> str:
    parts = [f'<section class="cell" data-cell-id="{html.escape(cell.id)}">']
    if include_code and not cell.config.hide_code and cell.code.strip():
        parts.append(_highlight(cell.code))
    parts.extend(_output_html(o) for o in cell.outputs)
    parts.append("</section>")
    return "\n".join(parts)


def export_html(
    notebook: Notebook,
    include_code: bool = True,
    asset_url: str = None,
    files: dict[str, str] = None,
) -> str:
    """
    Render the notebook as one HTML document.

    Args:
        notebook: Notebook to render
        include_code: Whether to include cell code (cells with
            ``hide_code`` never show it)
        asset_url: Base URL of a stylesheet to link, if any
        files: Mapping of file path to data URL, embedded as JSON
    """
    title = html.escape(notebook_title(notebook))
    head = [
        '<meta charset="utf-8">',
        f"<title>{title}</title>",
    ]
    if asset_url:
        head.append(f'<link rel="stylesheet" href="{html.escape(asset_url.rstrip("/"))}/notebook.css">')

    body = [f'<main class="notebook" data-width="{notebook.app.width}">']
    body.extend(_cell_html(cell, include_code) for cell in notebook.cells)
    body.append("</main>")
    if files:
        payload = json.dumps(files).replace("</", "<\\/")
        body.append(f'<script type="application/json" id="notebook-files">{payload}</script>')

    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        + "\n".join(head)
        + "\n</head>\n<body>\n"
        + "\n".join(body)
        + "\n</body>\n</html>\n"
    )


def export_markdown(notebook: Notebook) -> str:
    """Render the notebook as Markdown with fenced code and outputs."""
    lines = ["---", f"title: {notebook_title(notebook)}", "---", ""]
    for cell in notebook.cells:
        if cell.name and cell.name != "_":
            lines.append(f"<!-- cell: {cell.name} -->")
        lines.extend(["```python", cell.code.rstrip("\n"), "```", ""])
        for output in cell.outputs:
            text = format_output(output).rstrip("\n")
            if text:
                lines.extend(["```text", text, "```", ""])
    return "\n".join(lines)
