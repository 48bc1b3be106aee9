"""
Execution engine for mediakiln.

The engine is the local ffmpeg/ffprobe pair driven through asyncio
subprocesses. Its storage is one private scratch directory per process, used as
a flat namespace of names: every call runs with that directory as its working
directory, so argument lists only ever carry bare names.

Contains:
- ExecutionEngine (load, file namespace, exec/probe, log/progress subscriptions)
- get_engine() single-flight accessor for the process-wide instance
- FFmpeg progress parsing
"""

import asyncio
import atexit
import re
import shutil
import tempfile
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, Iterator, List, Optional, Sequence

from mediakiln.config import CFG, Config
from mediakiln.errors import EncodeExecutionError, InitializationError
from mediakiln.lazy import SingleFlight

LOG = "log"
PROGRESS = "progress"
EVENT_KINDS = (LOG, PROGRESS)

Handler = Callable[..., None]

_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d+):(\d+)[\.,](\d+)")
# Accept both dot and comma as decimal separator (locale-dependent builds)
_TIME_RE = re.compile(r"time=\s*(\d+):(\d+):(\d+)[\.,](\d+)")
_LINE_SPLIT_RE = re.compile(rb"[\r\n]")


# -------------------- PROGRESS PARSING --------------------


def _clock_seconds(m: "re.Match[str]") -> float:
    h, mi, s, frac = m.group(1), m.group(2), m.group(3), m.group(4)
    return int(h) * 3600 + int(mi) * 60 + int(s) + float(f"0.{frac}")


def parse_duration_seconds(line: str) -> Optional[float]:
    """Return the input duration announced on a 'Duration:' line, if any."""
    m = _DURATION_RE.search(line)
    return _clock_seconds(m) if m else None


def parse_progress_seconds(line: str) -> Optional[float]:
    """Return the encoded position from an ffmpeg status line (time=...)."""
    m = _TIME_RE.search(line)
    return _clock_seconds(m) if m else None


async def _iter_lines(stream: Optional[asyncio.StreamReader]) -> AsyncIterator[str]:
    """Yield decoded lines; ffmpeg status updates end in \\r, not \\n."""
    if stream is None:
        return
    buffer = b""
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            break
        buffer += chunk
        parts = _LINE_SPLIT_RE.split(buffer)
        buffer = parts.pop()
        for part in parts:
            if part.strip():
                yield part.decode("utf-8", errors="replace")
    if buffer.strip():
        yield buffer.decode("utf-8", errors="replace")


# -------------------- ENGINE --------------------


class ExecutionEngine:
    """
    Opaque, serial, stateful command executor.

    One instance is shared by every operation in the process (see get_engine).
    Nothing here stops two callers from interleaving executions; jobs take
    exclusive() for their whole run so they never do.
    """

    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe", workspace_parent: Optional[str] = None):
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.workspace_parent = workspace_parent
        self.workspace: Optional[Path] = None
        self.loaded = False
        self._handlers: Dict[str, List[Handler]] = {kind: [] for kind in EVENT_KINDS}
        self._job_lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    # ---- lifecycle ----

    async def load(self, module_location: Optional[str] = None) -> None:
        """
        Resolve and verify the ffmpeg/ffprobe binaries and create the namespace.

        Args:
            module_location: Optional directory holding both binaries. When not
                given, the configured names are looked up on PATH.

        Raises:
            InitializationError: if a binary is missing or does not run.
        """
        if self.loaded:
            return

        if module_location:
            base = Path(module_location).expanduser()
            self.ffmpeg = str(base / Path(self.ffmpeg).name)
            self.ffprobe = str(base / Path(self.ffprobe).name)

        resolved = {}
        for name in (self.ffmpeg, self.ffprobe):
            path = shutil.which(name)
            if path is None:
                raise InitializationError(f"{name} not found (install ffmpeg or set [engine] in the config file)")
            try:
                proc = await asyncio.create_subprocess_exec(
                    path,
                    "-version",
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
                rc = await proc.wait()
            except OSError as e:
                raise InitializationError(f"Failed to start {path}: {e}") from e
            if rc != 0:
                raise InitializationError(f"{path} -version exited with code {rc}")
            resolved[name] = path

        self.ffmpeg = resolved[self.ffmpeg]
        self.ffprobe = resolved[self.ffprobe]
        try:
            self.workspace = Path(tempfile.mkdtemp(prefix="mediakiln-", dir=self.workspace_parent))
        except OSError as e:
            raise InitializationError(f"Cannot create engine workspace: {e}") from e
        atexit.register(self._remove_workspace)
        self.loaded = True

    async def close(self) -> None:
        """Drop the namespace and everything still in it."""
        await asyncio.to_thread(self._remove_workspace)
        self.loaded = False

    def _remove_workspace(self) -> None:
        if self.workspace is not None:
            shutil.rmtree(self.workspace, ignore_errors=True)
            self.workspace = None

    def _require_loaded(self) -> Path:
        if not self.loaded or self.workspace is None:
            raise InitializationError("Execution engine is not loaded")
        return self.workspace

    # ---- namespace ----

    def _path(self, name: str) -> Path:
        workspace = self._require_loaded()
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise ValueError(f"Invalid engine file name: {name!r}")
        return workspace / name

    async def write_file(self, name: str, data: bytes) -> None:
        await asyncio.to_thread(self._path(name).write_bytes, data)

    async def import_file(self, name: str, source: Path) -> None:
        """Copy a file from disk into the namespace without holding it in memory."""
        await asyncio.to_thread(shutil.copyfile, source, self._path(name))

    async def read_file(self, name: str) -> bytes:
        """Raises FileNotFoundError if name is absent."""
        return await asyncio.to_thread(self._path(name).read_bytes)

    async def delete_file(self, name: str) -> None:
        """Raises FileNotFoundError if name is absent."""
        await asyncio.to_thread(self._path(name).unlink)

    def list_files(self) -> List[str]:
        workspace = self._require_loaded()
        return sorted(p.name for p in workspace.iterdir())

    # ---- subscriptions ----

    def on(self, kind: str, handler: Handler) -> None:
        if kind not in self._handlers:
            raise ValueError(f"Unknown event kind: {kind}")
        self._handlers[kind].append(handler)

    def off(self, kind: str, handler: Handler) -> None:
        if kind in self._handlers and handler in self._handlers[kind]:
            self._handlers[kind].remove(handler)

    @contextmanager
    def listening(self, kind: str, handler: Optional[Handler]) -> Iterator[None]:
        """Attach a handler for the duration of one call, detaching it even on failure."""
        if handler is None:
            yield
            return
        self.on(kind, handler)
        try:
            yield
        finally:
            self.off(kind, handler)

    def _dispatch(self, kind: str, payload: object) -> None:
        for handler in list(self._handlers[kind]):
            try:
                handler(payload)
            except Exception:
                pass  # Don't let subscriber errors affect execution

    # ---- serialization ----

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator["ExecutionEngine"]:
        """
        Hold the engine for a multi-call job so other jobs queue behind it.

        The lock belongs to the running event loop; a cached engine reused from
        a later asyncio.run() gets a fresh one.
        """
        loop = asyncio.get_running_loop()
        if self._job_lock is None or self._lock_loop is not loop:
            self._job_lock = asyncio.Lock()
            self._lock_loop = loop
        async with self._job_lock:
            yield self

    # ---- execution ----

    async def exec(self, argv: Sequence[str]) -> None:
        """
        Run ffmpeg with argv inside the namespace.

        Raises:
            EncodeExecutionError: on a nonzero exit.
        """
        rc = await self._run(self.ffmpeg, argv, track_progress=True)
        if rc != 0:
            raise EncodeExecutionError(f"ffmpeg error (rc={rc})", rc, argv)

    async def probe(self, argv: Sequence[str]) -> int:
        """Run ffprobe with argv; its diagnostic text goes to log subscribers."""
        return await self._run(self.ffprobe, argv)

    async def _run(self, program: str, argv: Sequence[str], track_progress: bool = False) -> int:
        workspace = self._require_loaded()
        try:
            process = await asyncio.create_subprocess_exec(
                program,
                *argv,
                cwd=str(workspace),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodeExecutionError(f"Failed to start {program}: {e}", 127, argv) from e

        duration = 0.0
        async for line in _iter_lines(process.stderr):
            self._dispatch(LOG, line)
            if not track_progress:
                continue
            if duration <= 0:
                duration = parse_duration_seconds(line) or 0.0
            position = parse_progress_seconds(line)
            if position is not None and duration > 0:
                self._dispatch(PROGRESS, min(1.0, position / duration))

        rc = await process.wait()
        if rc == 0 and track_progress:
            self._dispatch(PROGRESS, 1.0)
        return rc


# -------------------- SHARED INSTANCE --------------------


async def _create_engine(cfg: Optional[Config] = None) -> ExecutionEngine:
    if cfg is None:
        cfg = CFG
    engine = ExecutionEngine(ffmpeg=cfg.ffmpeg, ffprobe=cfg.ffprobe, workspace_parent=cfg.workspace)
    await engine.load()
    return engine


_SHARED_ENGINE: SingleFlight[ExecutionEngine] = SingleFlight(_create_engine)


async def get_engine(cfg: Optional[Config] = None) -> ExecutionEngine:
    """
    Return the process-wide engine, loading it on first use.

    Concurrent first callers share one load. A failed load is not cached, so
    calling again retries.

    Raises:
        InitializationError: if the engine cannot be loaded.
    """
    return await _SHARED_ENGINE.get(cfg)


def reset_engine() -> None:
    """Forget the shared engine (its namespace is left to close()/atexit)."""
    _SHARED_ENGINE.reset()


async def shutdown_engine() -> None:
    """Close the shared engine if it was ever loaded, and forget it."""
    engine = _SHARED_ENGINE.peek()
    _SHARED_ENGINE.reset()
    if engine is not None:
        await engine.close()
