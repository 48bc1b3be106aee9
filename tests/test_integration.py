"""
Integration tests against a real ffmpeg.

Skipped when ffmpeg/ffprobe are not installed.
"""

import asyncio
import shutil

import pytest

pytestmark = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg not installed",
)


def _run(coro_fn):
    """Run coro_fn(engine) on a freshly loaded shared engine, closing it after."""
    from mediakiln.engine import get_engine, shutdown_engine

    async def go():
        engine = await get_engine()
        try:
            return await coro_fn(engine), engine.list_files()
        finally:
            await shutdown_engine()

    return asyncio.run(go())


class TestRealEngine:
    """Conversions through ffmpeg."""

    def test_probe(self, test_sample_mp4):
        from mediakiln.probe import MetadataProbe

        meta, leftovers = _run(lambda engine: MetadataProbe(engine).probe(test_sample_mp4))

        assert meta.duration == pytest.approx(5.0, abs=0.2)
        assert meta.has_audio is True
        assert meta.audio_codec == "aac"
        assert leftovers == []

    def test_quality_conversion(self, test_sample_mp4):
        from mediakiln.converter import convert_media
        from mediakiln.models import EncodeSettings

        settings = EncodeSettings(crf=35, preset="ultrafast", resolution="240")
        result, leftovers = _run(lambda engine: convert_media(test_sample_mp4, settings, engine))

        assert result.name == "test_sample_conv.mp4"
        assert result.size > 0
        assert leftovers == []

    def test_two_pass_conversion(self, test_sample_mp4):
        from mediakiln.converter import convert_media
        from mediakiln.models import EncodeSettings

        settings = EncodeSettings(mode="size", target_mb=0.3, preset="ultrafast", audio_bitrate=64)
        result, leftovers = _run(lambda engine: convert_media(test_sample_mp4, settings, engine))

        assert result.size > 0
        # Two-pass statistics and the pass-1 output never survive the job
        assert leftovers == []

    def test_clip_and_mute(self, test_sample_mp4):
        from mediakiln.converter import clip_media, remove_audio

        async def both(engine):
            clipped = await clip_media(test_sample_mp4, "00:00:01", "00:00:03", engine)
            muted = await remove_audio(test_sample_mp4, engine)
            return clipped, muted

        (clipped, muted), leftovers = _run(both)

        assert clipped.name == "test_sample_clipped.mp4"
        assert 0 < clipped.size < test_sample_mp4.stat().st_size
        assert muted.name == "test_sample_muted.mp4"
        assert leftovers == []

    def test_failed_encode_cleans_up(self, test_sample_mp4):
        from mediakiln.converter import convert_media
        from mediakiln.errors import EncodeExecutionError
        from mediakiln.models import EncodeSettings

        settings = EncodeSettings(preset="not-a-preset")

        with pytest.raises(EncodeExecutionError):
            _run(lambda engine: convert_media(test_sample_mp4, settings, engine))
