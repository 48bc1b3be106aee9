"""
Output format catalog for mediakiln.

Maps the user-facing format ids to container extension, codec and MIME type,
and holds the small compatibility rules between containers and audio codecs.
"""

from dataclasses import dataclass
from typing import Dict, List

from mediakiln.errors import UnsupportedFormatError


@dataclass(frozen=True)
class OutputFormat:
    """A media output target."""

    id: str
    label: str
    ext: str
    kind: str  # "video" | "audio" | "image"
    codec: str

    @property
    def is_video(self) -> bool:
        return self.kind == "video"

    @property
    def is_gif(self) -> bool:
        return self.id == "gif"

    @property
    def supports_size_mode(self) -> bool:
        """Two-pass size targeting only makes sense for real video codecs."""
        return self.is_video and not self.is_gif

    @property
    def is_vpx(self) -> bool:
        return self.codec in ("libvpx", "libvpx-vp9")

    @property
    def mime_type(self) -> str:
        if self.is_gif:
            return "image/gif"
        if self.kind == "audio":
            return f"audio/{self.ext}"
        if self.ext == "webm":
            return "video/webm"
        return "video/mp4"


FORMATS: Dict[str, OutputFormat] = {
    f.id: f
    for f in [
        OutputFormat("mp4-x264", "MP4 (H.264)", "mp4", "video", "libx264"),
        OutputFormat("mp4-x265", "MP4 (H.265)", "mp4", "video", "libx265"),
        OutputFormat("webm-vp8", "WebM (VP8)", "webm", "video", "libvpx"),
        OutputFormat("webm-vp9", "WebM (VP9)", "webm", "video", "libvpx-vp9"),
        OutputFormat("mp3", "MP3 (Audio Only)", "mp3", "audio", "libmp3lame"),
        OutputFormat("aac", "AAC (Audio Only)", "m4a", "audio", "aac"),
        OutputFormat("wav", "WAV (Audio Only)", "wav", "audio", "pcm_s16le"),
        # gif is a video filter target, not a video stream codec
        OutputFormat("gif", "GIF (Anim)", "gif", "image", "gif"),
    ]
}

AUDIO_CODECS: Dict[str, str] = {
    "aac": "AAC (Standard)",
    "libmp3lame": "MP3 (Legacy)",
    "libopus": "Opus (Best WebM)",
    "libvorbis": "Vorbis (Old WebM)",
    "none": "None (Mute)",
}

RESOLUTIONS: List[str] = ["original", "1080", "720", "480"]

PRESETS: List[str] = ["ultrafast", "superfast", "veryfast", "faster", "fast", "medium"]

AUDIO_BITRATES: List[int] = [32, 64, 96, 128, 160, 192, 256, 320]


def get_format(format_id: str) -> OutputFormat:
    """Look up an output format, raising UnsupportedFormatError for unknown ids."""
    try:
        return FORMATS[format_id]
    except KeyError:
        raise UnsupportedFormatError(f"Unsupported format: {format_id}") from None


def compatible_audio_codec(fmt: OutputFormat, audio_codec: str) -> str:
    """
    Return an audio codec the container can actually hold.

    WebM cannot carry AAC or MP3, so those become Opus; MP4 players choke on
    Opus/Vorbis, so those become AAC. Mute is kept as-is.
    """
    if audio_codec == "none":
        return audio_codec
    if fmt.ext == "webm" and audio_codec in ("aac", "libmp3lame"):
        return "libopus"
    if fmt.ext == "mp4" and audio_codec in ("libvorbis", "libopus"):
        return "aac"
    return audio_codec


def effective_mode(fmt: OutputFormat, mode: str) -> str:
    """Size mode falls back to quality mode for formats that cannot honour it."""
    if mode == "size" and not fmt.supports_size_mode:
        return "quality"
    return mode
