"""
Built-in snippet library shown by the editor. Read-only.
"""

from notebook_ctl.models import Snippet, SnippetSection, SnippetsResponse

SNIPPETS = [
    Snippet(
        title="Read a line from stdin",
        sections=[
            SnippetSection(id="read-line-doc", html="<p>Prompts in the editor and waits for input.</p>"),
            SnippetSection(id="read-line-code", code='name = input("Your name: ")\nprint(f"Hello, {name}!")'),
        ],
    ),
    Snippet(
        title="Use a UI component value",
        sections=[
            SnippetSection(
                id="ui-value-doc",
                html="<p>Values set by the editor are available through <code>ui_value</code>.</p>",
            ),
            SnippetSection(id="ui-value-code", code='threshold = ui_value("threshold", default=10)'),
        ],
    ),
    Snippet(
        title="Expose a function to the editor",
        sections=[
            SnippetSection(id="function-code", code=(
                "def add(a, b):\n"
                "    return a + b\n"
                "\n"
                'register_function("math", "add", add)'
            )),
        ],
    ),
    Snippet(
        title="Build a table from rows",
        sections=[
            SnippetSection(id="table-code", code=(
                "rows = [\n"
                '    {"name": "Ada", "born": 1815},\n'
                '    {"name": "Grace", "born": 1906},\n'
                "]"
            )),
        ],
    ),
]


def read_snippets() -> SnippetsResponse:
    return SnippetsResponse(snippets=SNIPPETS)
