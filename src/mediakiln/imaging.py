"""
Image codecs for mediakiln.

One ImageCodec per output format, backed by Pillow. Codecs are initialized
lazily, once per process, and encode from packed RGBA pixel buffers so the
quality search can re-encode the same decoded image many times.
"""

import asyncio
import importlib
import io
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from PIL import Image, UnidentifiedImageError, features

from mediakiln.errors import InitializationError, UnsupportedFormatError
from mediakiln.lazy import SingleFlight

PixelBuffer = Tuple[bytes, int, int]  # (RGBA bytes, width, height)


@dataclass(frozen=True)
class ImageFormat:
    """An image output target and the Pillow plumbing behind it."""

    id: str
    label: str
    pillow_format: str
    ext: str
    mime_type: str
    lossless: bool = False
    feature: Optional[str] = None  # Pillow feature that must be compiled in
    plugin: Optional[str] = None  # module that registers the format with Pillow
    speed: Optional[int] = None  # encoder speed hint
    extra_params: Dict[str, Any] = field(default_factory=dict)


IMAGE_FORMATS: Dict[str, ImageFormat] = {
    f.id: f
    for f in [
        ImageFormat("jpeg", "JPEG", "JPEG", "jpg", "image/jpeg", feature="jpg", extra_params={"optimize": True}),
        ImageFormat(
            "png", "PNG", "PNG", "png", "image/png", lossless=True, feature="zlib", extra_params={"optimize": True}
        ),
        ImageFormat("webp", "WebP", "WEBP", "webp", "image/webp", feature="webp"),
        ImageFormat("avif", "AVIF", "AVIF", "avif", "image/avif", feature="avif", speed=4),
        ImageFormat("jxl", "JPEG XL", "JXL", "jxl", "image/jxl", plugin="pillow_jxl"),
    ]
}


def get_image_format(format_id: str) -> ImageFormat:
    try:
        return IMAGE_FORMATS[format_id]
    except KeyError:
        raise UnsupportedFormatError(f"Unsupported format: {format_id}") from None


def _prepare_for_save(img: Image.Image, fmt: ImageFormat) -> Image.Image:
    """JPEG has no alpha channel: composite over white."""
    if fmt.id == "jpeg" and img.mode == "RGBA":
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[3])
        return background
    return img


class ImageCodec:
    """Encoder/decoder for one image format."""

    def __init__(self, fmt: ImageFormat):
        self.format = fmt
        self.initialized = False
        self._lock: Optional[asyncio.Lock] = None

    async def initialize(self) -> None:
        """
        Make sure Pillow can write this format. Safe to call repeatedly.

        Raises:
            InitializationError: if the backing library is missing.
        """
        if self.initialized:
            return
        await asyncio.to_thread(self._check_support)
        self.initialized = True

    def _check_support(self) -> None:
        fmt = self.format
        if fmt.plugin:
            try:
                importlib.import_module(fmt.plugin)
            except ImportError as e:
                raise InitializationError(f"{fmt.label} support needs the {fmt.plugin} plugin: {e}") from e
        if fmt.feature and not features.check(fmt.feature):
            raise InitializationError(f"This Pillow build has no {fmt.label} support")
        Image.init()
        if fmt.pillow_format not in Image.SAVE:
            raise InitializationError(f"Pillow cannot write {fmt.label}")

    async def encode(self, pixels: bytes, width: int, height: int, quality: int, speed: Optional[int] = None) -> bytes:
        """
        Encode an RGBA buffer. Lossless formats ignore quality.

        Encodes on one codec never overlap; concurrent callers queue.
        """
        if not self.initialized:
            await self.initialize()
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            return await asyncio.to_thread(self._encode_sync, pixels, width, height, quality, speed)

    def _encode_sync(self, pixels: bytes, width: int, height: int, quality: int, speed: Optional[int]) -> bytes:
        fmt = self.format
        img = _prepare_for_save(Image.frombytes("RGBA", (width, height), pixels), fmt)
        params: Dict[str, Any] = dict(fmt.extra_params)
        if not fmt.lossless:
            params["quality"] = max(0, min(100, int(quality)))
        if speed is not None or fmt.speed is not None:
            params["speed"] = speed if speed is not None else fmt.speed
        buffer = io.BytesIO()
        img.save(buffer, format=fmt.pillow_format, **params)
        return buffer.getvalue()

    async def decode(self, data: bytes) -> PixelBuffer:
        if not self.initialized:
            await self.initialize()
        return await asyncio.to_thread(decode_sync, data)


def decode_sync(data: bytes) -> PixelBuffer:
    """Decode any image Pillow can open into packed RGBA."""
    with Image.open(io.BytesIO(data)) as img:
        rgba = img.convert("RGBA")
        return rgba.tobytes(), rgba.width, rgba.height


# -------------------- SHARED CODECS --------------------


async def _create_codec(format_id: str) -> ImageCodec:
    codec = ImageCodec(get_image_format(format_id))
    await codec.initialize()
    return codec


_CODECS: Dict[str, SingleFlight[ImageCodec]] = {}


async def get_codec(format_id: str) -> ImageCodec:
    """Return the process-wide codec for a format, initializing it once."""
    get_image_format(format_id)
    if format_id not in _CODECS:
        _CODECS[format_id] = SingleFlight(_create_codec)
    return await _CODECS[format_id].get(format_id)


def reset_codecs() -> None:
    _CODECS.clear()


async def decode_image(data: bytes, filename: str = "") -> PixelBuffer:
    """
    Decode input bytes to RGBA.

    JPEG XL files are only readable once the JXL codec has registered itself
    with Pillow, so a failed native decode of a .jxl input retries through it.
    """
    try:
        return await asyncio.to_thread(decode_sync, data)
    except UnidentifiedImageError:
        if not filename.lower().endswith(".jxl"):
            raise
    codec = await get_codec("jxl")
    return await codec.decode(data)
