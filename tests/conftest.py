"""
Pytest configuration and shared fixtures for mediakiln tests.
"""

import asyncio
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Sequence

import pytest

# Add src to path for testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mediakiln.engine import LOG, PROGRESS, ExecutionEngine  # noqa: E402
from mediakiln.errors import EncodeExecutionError  # noqa: E402

PROBE_LINES = [
    "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'clip.mp4':",
    "  Duration: 00:01:00.00, start: 0.000000, bitrate: 1500 kb/s",
    "  Stream #0:0(und): Video: h264 (High) (avc1 / 0x31637661), yuv420p, 1280x720, 1360 kb/s, 30 fps",
    "  Stream #0:1(und): Audio: aac (LC) (mp4a / 0x6134706D), 44100 Hz, stereo, fltp, 128 kb/s (default)",
]


class FakeEngine(ExecutionEngine):
    """
    In-memory execution engine.

    Every call yields to the event loop while "running" so interleaving jobs
    would show up in max_in_flight.
    """

    def __init__(
        self,
        fail_when: Optional[Callable[[Sequence[str]], bool]] = None,
        write_output: bool = True,
        probe_lines: Optional[List[str]] = None,
    ):
        super().__init__()
        self.loaded = True
        self.files: Dict[str, bytes] = {}
        self.exec_calls: List[List[str]] = []
        self.probe_calls: List[List[str]] = []
        self.fail_when = fail_when
        self.write_output = write_output
        self.probe_lines = PROBE_LINES if probe_lines is None else probe_lines
        self.in_flight = 0
        self.max_in_flight = 0

    async def _enter(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)

    def _leave(self) -> None:
        self.in_flight -= 1

    async def load(self, module_location: Optional[str] = None) -> None:
        self.loaded = True

    async def close(self) -> None:
        self.files.clear()
        self.loaded = False

    async def write_file(self, name: str, data: bytes) -> None:
        await self._enter()
        self.files[name] = data
        self._leave()

    async def import_file(self, name: str, source: Path) -> None:
        await self._enter()
        try:
            self.files[name] = Path(source).read_bytes()
        finally:
            self._leave()

    async def read_file(self, name: str) -> bytes:
        await self._enter()
        try:
            if name not in self.files:
                raise FileNotFoundError(name)
            return self.files[name]
        finally:
            self._leave()

    async def delete_file(self, name: str) -> None:
        await self._enter()
        try:
            if name not in self.files:
                raise FileNotFoundError(name)
            del self.files[name]
        finally:
            self._leave()

    def list_files(self) -> List[str]:
        return sorted(self.files)

    async def exec(self, argv: Sequence[str]) -> None:
        await self._enter()
        try:
            self.exec_calls.append(list(argv))
            self._dispatch(LOG, "Skipping unhandled metadata")
            self._dispatch(LOG, f"running {len(self.exec_calls)}")
            self._dispatch(PROGRESS, 0.5)
            await asyncio.sleep(0)
            if self.fail_when is not None and self.fail_when(argv):
                raise EncodeExecutionError("ffmpeg error (rc=1)", 1, argv)
            if "-passlogfile" in argv:
                prefix = argv[list(argv).index("-passlogfile") + 1]
                self.files[f"{prefix}-0.log"] = b"stats"
                self.files[f"{prefix}-0.log.mbtree"] = b"mbtree"
            if self.write_output:
                self.files[argv[-1]] = b"output:" + " ".join(argv).encode()
            self._dispatch(PROGRESS, 1.0)
        finally:
            self._leave()

    async def probe(self, argv: Sequence[str]) -> int:
        await self._enter()
        try:
            self.probe_calls.append(list(argv))
            for line in self.probe_lines:
                self._dispatch(LOG, line)
            return 0
        finally:
            self._leave()


@pytest.fixture
def fake_engine_cls():
    """The FakeEngine class, for tests that need several engines or a subclass."""
    return FakeEngine


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def probe_lines() -> List[str]:
    return list(PROBE_LINES)


@pytest.fixture
def sample_input(temp_dir: Path) -> Path:
    """A small file standing in for a video input."""
    path = temp_dir / "clip.mp4"
    path.write_bytes(b"\x00" * 2048)
    return path


@pytest.fixture(scope="session")
def test_data_dir() -> Path:
    """Return the test data directory path."""
    return Path(__file__).parent / "data"


@pytest.fixture(scope="session")
def test_sample_mp4(test_data_dir: Path) -> Path:
    """
    Create a small test MP4 file using ffmpeg.

    - H.264 video, 320x240
    - AAC audio at 64k
    - 5 seconds duration
    """
    test_data_dir.mkdir(parents=True, exist_ok=True)
    mp4_path = test_data_dir / "test_sample.mp4"

    if mp4_path.exists() and mp4_path.stat().st_size > 10000:
        return mp4_path

    if not shutil.which("ffmpeg"):
        pytest.skip("ffmpeg not available for creating test files")

    cmd = [
        "ffmpeg",
        "-y",
        "-f",
        "lavfi",
        "-i",
        "testsrc=duration=5:size=320x240:rate=24",
        "-f",
        "lavfi",
        "-i",
        "sine=frequency=440:duration=5",
        "-c:v",
        "libx264",
        "-preset",
        "ultrafast",
        "-pix_fmt",
        "yuv420p",
        "-c:a",
        "aac",
        "-b:a",
        "64k",
        "-shortest",
        str(mp4_path),
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, timeout=120)
        if result.returncode != 0:
            pytest.skip(f"Failed to create test file: {result.stderr.decode()[:200]}")
    except subprocess.TimeoutExpired:
        pytest.skip("Timeout creating test file")
    except Exception as e:
        pytest.skip(f"Error creating test file: {e}")

    return mp4_path


@pytest.fixture
def sample_png(temp_dir: Path) -> Path:
    """A 64x64 gradient PNG with an alpha channel."""
    from PIL import Image

    img = Image.new("RGBA", (64, 64))
    img.putdata([(x * 4, y * 4, (x + y) * 2, 128 + x) for y in range(64) for x in range(64)])
    path = temp_dir / "photo.png"
    img.save(path)
    return path


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_dir(temp_dir: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = temp_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def mock_xdg_dirs(temp_dir: Path, monkeypatch):
    """Mock XDG directories to use temporary paths."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir / "config"))
    monkeypatch.setenv("XDG_STATE_HOME", str(temp_dir / "state"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(temp_dir / "cache"))


@pytest.fixture
def default_config():
    """Return a default Config instance for testing."""
    from mediakiln.config import Config

    return Config()


@pytest.fixture(autouse=True)
def _reset_shared_engines():
    """Each test starts without a shared engine or cached codecs."""
    from mediakiln.engine import reset_engine
    from mediakiln.imaging import reset_codecs

    reset_engine()
    reset_codecs()
    yield
    reset_engine()
    reset_codecs()
