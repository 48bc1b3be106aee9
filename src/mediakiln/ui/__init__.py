"""
User interface components for mediakiln.

Provides both Rich-based and plain text console output.
"""

from mediakiln.ui.legacy_ui import PlainConsoleUI, fmt_hms, fmt_size
from mediakiln.ui.rich_ui import RichConsoleUI, _should_use_color

__all__ = [
    "PlainConsoleUI",
    "RichConsoleUI",
    "fmt_hms",
    "fmt_size",
    "make_ui",
]


def make_ui(progress: bool = True, verbose: bool = False):
    """Pick the Rich UI for interactive terminals, plain text otherwise."""
    if _should_use_color():
        return RichConsoleUI(progress=progress, verbose=verbose)
    return PlainConsoleUI(progress=progress, verbose=verbose)
