"""Textual screens for the check-in kiosk."""

import pathlib

from textual import message


CSS_FOLDER = pathlib.Path(__file__).parent.parent / "styles"


def success(message: str) -> str:
    """Format a success message for display in the status widget."""
    return f"[ansi_bright_green]{message}[/]"


def error(message: str) -> str:
    """Format an error message for display in the status widget."""
    return f"[ansi_bright_red]{message}[/]"


class ModeChanged(message.Message):
    """Posted by a screen after an operation that may have changed the mode."""
