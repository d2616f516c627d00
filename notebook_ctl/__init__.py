"""
notebook-ctl: a control backend for notebook editors.

This package provides the request/response protocol between an editor and
the backend that owns its notebooks:
- Sessions run cells in a per-notebook IPython interpreter
- Saves write full notebook snapshots atomically
- A file model, workspace discovery and exports round it out
"""

from notebook_ctl.dispatcher import Dispatcher
from notebook_ctl.errors import ControlError
from notebook_ctl.kernel import ExecutionResult, NotebookKernel
from notebook_ctl.notebook import Cell, Notebook
from notebook_ctl.session import Session, SessionManager

__version__ = "0.1.0"
__all__ = [
    "Dispatcher",
    "ControlError",
    "NotebookKernel",
    "ExecutionResult",
    "Notebook",
    "Cell",
    "Session",
    "SessionManager",
]
