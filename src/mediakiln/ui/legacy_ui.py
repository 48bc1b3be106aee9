"""
Plain text console UI for mediakiln.

Used in script mode (non-TTY stdout, NO_COLOR, MEDIAKILN_SCRIPT_MODE).
"""

import shutil
import sys
from typing import Optional

from mediakiln.models import DiagnosticEvent


def term_width() -> int:
    """Get terminal width."""
    try:
        return shutil.get_terminal_size((120, 20)).columns
    except Exception:
        return 120


def mkbar(pct: int, width: int = 26) -> str:
    """Create a simple progress bar string."""
    pct = max(0, min(100, pct))
    filled = int(pct * width / 100)
    empty = width - filled
    return "#" * filled + "-" * empty


def fmt_hms(seconds: float) -> str:
    """Format seconds as HH:MM:SS."""
    if seconds < 0:
        seconds = 0
    s = int(round(seconds))
    h = s // 3600
    m = (s % 3600) // 60
    r = s % 60
    return f"{h:02d}:{m:02d}:{r:02d}"


def fmt_size(size: int) -> str:
    """Format a byte count as KB below one megabyte, MB above."""
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


class PlainConsoleUI:
    """Line-oriented output with an optional in-place progress bar."""

    def __init__(self, progress: bool = True, verbose: bool = False, bar_width: int = 26):
        self.enabled = progress and sys.stdout.isatty()
        self.verbose = verbose
        # Leave room for the percentage on narrow terminals
        self.bar_width = max(10, min(bar_width, term_width() - 8))
        self._last_render: Optional[str] = None
        self._last_pct = -1

    # ---- event listener ----

    def __call__(self, event: DiagnosticEvent) -> None:
        if event.kind == "progress":
            self.render_progress(int(event.percent or 0))
        elif event.kind == "error":
            self.log(f"  ! {event.message}", stream=sys.stderr)
        elif event.origin != "engine" or self.verbose:
            self.log(f"  {event.message}")

    def render_progress(self, pct: int) -> None:
        if not self.enabled or pct == self._last_pct:
            return
        self._last_pct = pct
        line = f"[{mkbar(pct, self.bar_width)}] {pct:3d}%"
        sys.stdout.write("\r" + line)
        sys.stdout.flush()
        self._last_render = line

    def endline(self) -> None:
        """Clear the current progress line."""
        if not self.enabled or self._last_render is None:
            return
        sys.stdout.write("\r" + " " * len(self._last_render) + "\r")
        sys.stdout.flush()
        self._last_render = None
        self._last_pct = -1

    def stop(self) -> None:
        self.endline()

    def log(self, msg: str, stream=None) -> None:
        """Print a message, clearing the progress line first."""
        self.endline()
        print(msg, file=stream or sys.stdout, flush=True)

    # ---- job lifecycle ----

    def start(self, label: str, input_name: str, output_name: str) -> None:
        self.log(f"{label}: {input_name} -> {output_name}")

    def success(self, output_path: str, size: int, elapsed: float) -> None:
        self.endline()
        self.log(f"OK {output_path} ({fmt_size(size)}) in {fmt_hms(elapsed)}")

    def failure(self, message: str) -> None:
        self.endline()
        self.log(f"FAILED: {message}", stream=sys.stderr)
