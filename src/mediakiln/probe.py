"""
Metadata probing for mediakiln.

Extracts duration, bitrate and audio facts from the diagnostic text of one
ffprobe run. Probing never fails a conversion: anything that cannot be read
stays at its zero/"-" default.
"""

import re
from pathlib import Path
from typing import Iterable, Optional, Tuple

from mediakiln.commands import build_probe_cmd, format_command, split_name
from mediakiln.engine import LOG, ExecutionEngine
from mediakiln.errors import MediakilnError, ProbeParseError
from mediakiln.events import EventLog
from mediakiln.models import FileMetadata, new_job_id

DURATION_MARKER = "Duration:"
AUDIO_MARKER = "Audio:"

_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_BITRATE_RE = re.compile(r"bitrate: (\d+) kb/s")
_KBPS_RE = re.compile(r"(\d+) kb/s")

# (resolved path, size, mtime_ns)
InputIdentity = Tuple[str, int, int]


def parse_duration(line: str) -> float:
    """
    Convert 'Duration: HH:MM:SS.FF' to seconds.

    Raises:
        ProbeParseError: if the marker is present but the value isn't a clock
            (ffprobe prints 'Duration: N/A' for streams without one).
    """
    m = _DURATION_RE.search(line)
    if not m:
        raise ProbeParseError(f"Unreadable duration: {line.strip()}")
    return int(m.group(1)) * 3600 + int(m.group(2)) * 60 + float(m.group(3))


def parse_probe_line(line: str, meta: FileMetadata) -> None:
    """
    Update meta in place with whatever this log line reveals.

    Each field is matched on its own; an unreadable duration leaves the
    duration at its default and still lets the bitrate through.
    """
    if DURATION_MARKER in line:
        try:
            meta.duration = parse_duration(line)
        except ProbeParseError:
            pass

    m = _BITRATE_RE.search(line)
    if m:
        meta.total_bitrate = int(m.group(1))

    if AUDIO_MARKER in line:
        meta.has_audio = True
        # Only look after the marker so the container bitrate is never picked up
        tail = line.split(AUDIO_MARKER, 1)[1]
        tokens = tail.split()
        if tokens:
            meta.audio_codec = tokens[0].rstrip(",")
        m = _KBPS_RE.search(tail)
        if m:
            meta.audio_bitrate = int(m.group(1))


def parse_probe_output(lines: Iterable[str]) -> FileMetadata:
    """Build FileMetadata from a whole probe log; unreadable values keep their defaults."""
    meta = FileMetadata()
    for line in lines:
        parse_probe_line(line, meta)
    return meta


def input_identity(path: Path) -> InputIdentity:
    st = path.stat()
    return str(path.resolve()), st.st_size, st.st_mtime_ns


class MetadataProbe:
    """
    Probe inputs once per identity.

    Re-selecting the same file (same resolved path, size and mtime) reuses the
    cached metadata instead of running the engine again.
    """

    def __init__(self, engine: ExecutionEngine):
        self.engine = engine
        self.identity: Optional[InputIdentity] = None
        self.metadata = FileMetadata()

    def invalidate(self) -> None:
        self.identity = None
        self.metadata = FileMetadata()

    async def probe(self, path: Path, events: Optional[EventLog] = None) -> FileMetadata:
        """Return metadata for path, probing only if the input identity changed."""
        events = events or EventLog()
        try:
            identity = input_identity(path)
        except OSError as e:
            events.error(f"Cannot read {path}: {e}")
            self.invalidate()
            return self.metadata

        if identity == self.identity:
            return self.metadata

        self.invalidate()
        self.identity = identity
        events.info("Analyzing metadata...")

        _stem, ext = split_name(path.name)
        staged = f"{new_job_id()}_probe{ext}"
        lines = []
        try:
            async with self.engine.exclusive():
                await self.engine.import_file(staged, path)
                argv = build_probe_cmd(staged)
                events.command(format_command(argv, "ffprobe"))
                try:
                    with self.engine.listening(LOG, lines.append):
                        await self.engine.probe(argv)
                finally:
                    try:
                        await self.engine.delete_file(staged)
                    except OSError:
                        pass
        except (MediakilnError, OSError) as e:
            events.error(f"Probe failed: {e}")
            return self.metadata

        self.metadata = parse_probe_output(lines)
        return self.metadata
