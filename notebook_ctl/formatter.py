"""
Best-effort formatting of cell code with black.
"""

import logging

import black

logger = logging.getLogger(__name__)


def format_code(code: str, line_length: int = 79) -> str:
    """
    Format one cell's code.

    Raises:
        black.InvalidInput: If the code does not parse
    """
    if not code.strip():
        return ""
    mode = black.Mode(line_length=line_length)
    return black.format_str(code, mode=mode).strip()


def format_codes(codes: dict[str, str], line_length: int = 79) -> dict[str, str]:
    """
    Format a mapping of cell id to code.

    Cells that cannot be formatted are left out of the result, so the
    returned keys are always a subset of the given keys.
    """
    formatted = {}
    for cell_id, code in codes.items():
        try:
            formatted[cell_id] = format_code(code, line_length)
        except ValueError as e:
            logger.debug("Could not format cell %s: %s", cell_id, e)
    return formatted
