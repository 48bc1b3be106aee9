"""
Configuration management for mediakiln.

Handles:
- XDG Base Directory compliance
- TOML/INI configuration file loading
- Config dataclass with all options
- Configuration merging (system -> user -> CLI)
- Automatic script mode detection
"""

import configparser
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from mediakiln.models import EncodeSettings

# -------------------- SCRIPT MODE DETECTION --------------------


def is_script_mode() -> bool:
    """
    Detect if running without an interactive terminal.

    Returns True if:
    - stdout is not a TTY (piped or redirected)
    - NO_COLOR environment variable is set
    - MEDIAKILN_SCRIPT_MODE environment variable is set
    """
    try:
        if not sys.stdout.isatty():
            return True
    except Exception:
        return True

    if os.getenv("NO_COLOR") or os.getenv("MEDIAKILN_SCRIPT_MODE"):
        return True

    return False


# Try TOML support (Python 3.11+ or tomli package)
try:
    import tomllib  # Python 3.11+

    TOML_AVAILABLE = True
except ImportError:
    try:
        import tomli as tomllib  # pip install tomli

        TOML_AVAILABLE = True
    except ImportError:
        TOML_AVAILABLE = False


# -------------------- XDG DIRECTORIES --------------------


def get_xdg_config_home() -> Path:
    """Get XDG config home directory."""
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def get_xdg_state_home() -> Path:
    """Get XDG state home directory."""
    return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state"))


def get_xdg_cache_home() -> Path:
    """Get XDG cache home directory."""
    return Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))


def get_app_dirs() -> Dict[str, Path]:
    """Return all application directories, creating them if needed."""
    dirs = {
        "config": get_xdg_config_home() / "mediakiln",
        "state": get_xdg_state_home() / "mediakiln",
        "logs": get_xdg_state_home() / "mediakiln" / "logs",
        "cache": get_xdg_cache_home() / "mediakiln",
        "tmp": get_xdg_cache_home() / "mediakiln" / "tmp",
    }
    for d in dirs.values():
        d.mkdir(parents=True, exist_ok=True)
    return dirs


# -------------------- CONFIGURATION DATACLASS --------------------


@dataclass
class Config:
    """All configuration options for mediakiln."""

    # Engine
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    workspace: Optional[str] = None  # parent dir for the engine scratch namespace

    # Video/audio conversion defaults
    format_id: str = "mp4-x264"
    resolution: str = "original"
    audio_codec: str = "aac"
    mode: str = "quality"
    crf: int = 23
    preset: str = "superfast"

    # Size targeting
    target_mb: float = 10.0
    audio_bitrate: int = 128
    video_floor: int = 50

    # Image conversion defaults
    image_format: str = "webp"
    image_quality: int = 80
    target_kb: float = 256.0
    slack: float = 10.0
    iterations: int = 10

    # Output
    output_dir: Optional[str] = None

    # Debug/test
    debug: bool = False
    dryrun: bool = False

    # UI settings
    progress: bool = True
    json_progress: bool = False

    def apply_script_mode(self) -> None:
        """
        Disable interactive output when running in script mode.

        Call this when using mediakiln as a library so no progress bars are
        drawn on a terminal that isn't there.
        """
        if is_script_mode():
            self.progress = False

    @classmethod
    def for_library(cls, **kwargs) -> "Config":
        """
        Create a Config instance suited to programmatic use.

        Example:
            >>> config = Config.for_library(crf=20, format_id="webm-vp9")
            >>> result = asyncio.run(convert_media(path, config.encode_settings()))
        """
        defaults: Dict[str, Any] = {"progress": False}
        defaults.update(kwargs)
        return cls(**defaults)

    def encode_settings(self, **overrides: Any) -> EncodeSettings:
        """Build EncodeSettings from the configured defaults."""
        values: Dict[str, Any] = {
            "format_id": self.format_id,
            "resolution": self.resolution,
            "audio_codec": self.audio_codec,
            "mode": self.mode,
            "crf": self.crf,
            "preset": self.preset,
            "target_mb": self.target_mb,
            "audio_bitrate": self.audio_bitrate,
            "video_floor": self.video_floor,
            "image_format": self.image_format,
            "image_quality": self.image_quality,
            "target_kb": self.target_kb,
            "slack": self.slack,
            "iterations": self.iterations,
        }
        values.update(overrides)
        return EncodeSettings(**values)


# Global config instance (set by main() in cli.py)
CFG = Config()


# -------------------- CONFIG FILE LOADING --------------------


def _parse_ini_value(value: str):
    """Parse INI value: bool, int, float or string."""
    v = value.strip()
    if not v:
        return ""
    if v.lower() in ("true", "yes", "on"):
        return True
    if v.lower() in ("false", "no", "off"):
        return False
    try:
        return int(v)
    except ValueError:
        pass
    try:
        return float(v)
    except ValueError:
        pass
    return v


def _load_ini_config(path: Path) -> Dict[str, Any]:
    """Load INI file and convert to nested dict."""
    cp = configparser.ConfigParser()
    cp.read(path)
    result: Dict[str, Any] = {}
    for section in cp.sections():
        result[section] = {}
        for key, value in cp.items(section):
            result[section][key] = _parse_ini_value(value)
    return result


def _load_single_config(config_dir: Path) -> Dict[str, Any]:
    """Load config from a single directory (TOML or INI file)."""
    toml_path = config_dir / "config.toml"
    ini_path = config_dir / "config.ini"

    if TOML_AVAILABLE and toml_path.exists():
        try:
            with toml_path.open("rb") as f:
                return dict(tomllib.load(f))
        except Exception as e:
            print(f"Warning: Failed to load {toml_path}: {e}", file=sys.stderr)
            return {}
    elif ini_path.exists():
        try:
            return _load_ini_config(ini_path)
        except Exception as e:
            print(f"Warning: Failed to load {ini_path}: {e}", file=sys.stderr)
            return {}
    return {}


def _deep_merge_dicts(base: dict, override: dict) -> dict:
    """Deep merge two dicts, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value
    return result


def load_config_file(config_dir: Path, system_config_dir: Path = Path("/etc/mediakiln")) -> dict:
    """
    Load config with priority:
    1. User config: ~/.config/mediakiln/config.toml (highest priority)
    2. System config: /etc/mediakiln/config.toml (lowest priority, optional)
    """
    system_config = {}
    if system_config_dir.exists():
        system_config = _load_single_config(system_config_dir)

    user_config = _load_single_config(config_dir)

    if system_config and user_config:
        return _deep_merge_dicts(system_config, user_config)
    return user_config or system_config or {}


def _get_default_config_toml() -> str:
    """Return default config as TOML string."""
    return """# mediakiln configuration file
# This file is auto-generated on first run

[engine]
ffmpeg = "ffmpeg"
ffprobe = "ffprobe"
# Parent directory for the engine scratch space (default: system temp)
# workspace = "/var/tmp"

[video]
format = "mp4-x264"  # mp4-x264, mp4-x265, webm-vp8, webm-vp9, mp3, aac, wav, gif
resolution = "original"  # original, 1080, 720, 480
audio_codec = "aac"  # aac, libmp3lame, libopus, libvorbis, none
crf = 23
preset = "superfast"

[size]
target_mb = 10
audio_bitrate = 128
video_floor = 50

[image]
format = "webp"  # jpeg, png, webp, avif, jxl
quality = 80
target_kb = 256
slack = 10
iterations = 10

[output]
# directory = "~/Videos/converted"

[ui]
progress = true
json_progress = false
"""


def _get_default_config_ini() -> str:
    """Return default config as INI string."""
    return """# mediakiln configuration file
# This file is auto-generated on first run

[engine]
ffmpeg = ffmpeg
ffprobe = ffprobe

[video]
format = mp4-x264
resolution = original
audio_codec = aac
crf = 23
preset = superfast

[size]
target_mb = 10
audio_bitrate = 128
video_floor = 50

[image]
format = webp
quality = 80
target_kb = 256
slack = 10
iterations = 10

[ui]
progress = true
json_progress = false
"""


def save_default_config(config_dir: Path) -> Path:
    """Create default config file (TOML if available, else INI). Returns path."""
    config_dir.mkdir(parents=True, exist_ok=True)

    if TOML_AVAILABLE:
        path = config_dir / "config.toml"
        if not path.exists():
            path.write_text(_get_default_config_toml())
        return path
    else:
        path = config_dir / "config.ini"
        if not path.exists():
            path.write_text(_get_default_config_ini())
        return path


# Map config file keys to Config attribute names
CONFIG_KEYS = {
    ("engine", "ffmpeg"): "ffmpeg",
    ("engine", "ffprobe"): "ffprobe",
    ("engine", "workspace"): "workspace",
    ("video", "format"): "format_id",
    ("video", "resolution"): "resolution",
    ("video", "audio_codec"): "audio_codec",
    ("video", "mode"): "mode",
    ("video", "crf"): "crf",
    ("video", "preset"): "preset",
    ("size", "target_mb"): "target_mb",
    ("size", "audio_bitrate"): "audio_bitrate",
    ("size", "video_floor"): "video_floor",
    ("image", "format"): "image_format",
    ("image", "quality"): "image_quality",
    ("image", "target_kb"): "target_kb",
    ("image", "slack"): "slack",
    ("image", "iterations"): "iterations",
    ("output", "directory"): "output_dir",
    ("ui", "progress"): "progress",
    ("ui", "json_progress"): "json_progress",
}


def apply_config_to_args(file_config: dict, cfg: Config) -> None:
    """
    Apply file config values to a Config instance.

    Only values the CLI left at their defaults are replaced, so command-line
    arguments always win over the config file.
    """
    default_cfg = Config()

    for (section, key), attr_name in CONFIG_KEYS.items():
        if section in file_config and key in file_config[section]:
            file_val = file_config[section][key]
            current_val = getattr(cfg, attr_name)
            default_val = getattr(default_cfg, attr_name)

            # Skip if CLI explicitly set this value (different from default)
            if current_val != default_val:
                continue

            # INI files give "1080" back as an int
            if attr_name == "resolution":
                file_val = str(file_val)
            setattr(cfg, attr_name, file_val)
