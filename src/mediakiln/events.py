"""
Diagnostic events for mediakiln.

An EventLog is the append-only record of one job, probe or search run. It
forwards each event to listeners (the console UI, a JSON writer) and mirrors it
to a per-run log file when one is configured.
"""

import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Callable, List, Optional, TextIO

from mediakiln.models import DiagnosticEvent

EventListener = Callable[[DiagnosticEvent], None]

# Engine chatter that carries no information for the user
NOISE_MARKERS = ("Skipping unhandled metadata",)


def is_noise(message: str) -> bool:
    """Return True for log lines that should not reach user-facing output."""
    return any(marker in message for marker in NOISE_MARKERS)


class EventLog:
    """Append-only diagnostic stream with listeners and an optional log file."""

    def __init__(self, log_path: Optional[Path] = None, listeners: Optional[List[EventListener]] = None):
        self.log_path = log_path
        self.events: List[DiagnosticEvent] = []
        self._listeners: List[EventListener] = list(listeners or [])

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: DiagnosticEvent, to_file: bool = True) -> DiagnosticEvent:
        """Record an event, write it to the log file and notify listeners."""
        self.events.append(event)
        if to_file and self.log_path is not None and event.kind != "progress":
            self._write_line(self.log_path, f"[{event.kind}] {event.message}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                pass  # Listener errors must never affect an encode
        return event

    def info(self, message: str) -> DiagnosticEvent:
        return self.emit(DiagnosticEvent(kind="info", message=message))

    def error(self, message: str) -> DiagnosticEvent:
        return self.emit(DiagnosticEvent(kind="error", message=message))

    def progress(self, percent: float, message: str = "") -> DiagnosticEvent:
        percent = max(0.0, min(100.0, percent))
        return self.emit(DiagnosticEvent(kind="progress", message=message, percent=percent))

    def engine_log(self, message: str) -> None:
        """Listener for raw engine log lines."""
        if message and not is_noise(message):
            self.emit(DiagnosticEvent(kind="info", message=message, origin="engine"))

    def engine_progress(self, ratio: float) -> None:
        """Listener for engine progress ratios in [0, 1]."""
        self.progress(round(ratio * 100, 1))

    def command(self, text: str) -> None:
        """Record a command about to run (CMD: line in the log file)."""
        if self.log_path is not None:
            self._write_line(self.log_path, f"CMD: {text}")
        self.emit(DiagnosticEvent(kind="info", message=f"$ {text}"), to_file=False)

    def messages(self, kind: Optional[str] = None) -> List[str]:
        return [e.message for e in self.events if kind is None or e.kind == kind]

    @staticmethod
    def _write_line(path: Path, line: str) -> None:
        try:
            with path.open("a", encoding="utf-8", errors="replace") as lf:
                lf.write(line + "\n")
        except OSError:
            pass


class JSONEventWriter:
    """Write each event as one JSON object per line (for scripts and web UIs)."""

    def __init__(self, stream: Optional[TextIO] = None, source: str = ""):
        self.stream = stream
        self.source = source

    def __call__(self, event: DiagnosticEvent) -> None:
        payload = asdict(event)
        if self.source:
            payload["source"] = self.source
        print(json.dumps(payload), file=self.stream or sys.stdout, flush=True)
