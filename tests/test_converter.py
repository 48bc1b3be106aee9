"""
Tests for the high-level conversion operations.
"""

import asyncio

import pytest
from PIL import features


def _settings(**kwargs):
    from mediakiln.models import EncodeSettings

    return EncodeSettings(**kwargs)


class TestNormalizeSettings:
    """Tests for normalize_settings()."""

    def test_webm_audio_is_corrected(self):
        from mediakiln.converter import normalize_settings
        from mediakiln.events import EventLog

        events = EventLog()
        s = normalize_settings(_settings(format_id="webm-vp9", audio_codec="aac"), events)

        assert s.audio_codec == "libopus"
        assert any("using libopus" in m for m in events.messages("info"))

    def test_mp4_audio_is_corrected(self):
        from mediakiln.converter import normalize_settings

        assert normalize_settings(_settings(audio_codec="libvorbis")).audio_codec == "aac"

    def test_gif_forces_quality_mode(self):
        from mediakiln.converter import normalize_settings
        from mediakiln.events import EventLog

        events = EventLog()
        s = normalize_settings(_settings(format_id="gif", mode="size"), events)

        assert s.mode == "quality"
        assert any("using quality mode" in m for m in events.messages("info"))

    def test_input_settings_untouched(self):
        from mediakiln.converter import normalize_settings

        original = _settings(format_id="webm-vp8", audio_codec="aac")
        normalize_settings(original)
        assert original.audio_codec == "aac"

    def test_out_of_range_crf(self):
        from mediakiln.converter import normalize_settings

        with pytest.raises(ValueError):
            normalize_settings(_settings(crf=60))

    def test_unknown_format(self):
        from mediakiln.converter import normalize_settings
        from mediakiln.errors import UnsupportedFormatError

        with pytest.raises(UnsupportedFormatError):
            normalize_settings(_settings(format_id="avi"))


class TestPlanMediaConversion:
    """Tests for plan_media_conversion()."""

    def test_quality_plan_does_not_probe(self, fake_engine, sample_input):
        from mediakiln.converter import plan_media_conversion
        from mediakiln.events import EventLog

        events = EventLog()
        plan = asyncio.run(plan_media_conversion(sample_input, _settings(crf=28), fake_engine, events))

        assert plan.mode == "quality"
        assert len(plan.job.passes) == 1
        assert plan.job.display_name == "clip_conv.mp4"
        assert plan.commands[0].endswith(plan.job.output_name)
        assert fake_engine.probe_calls == []
        assert "Start: Quality Mode (CRF 28)" in events.messages("info")

    def test_size_plan_allocates_budget(self, fake_engine, sample_input):
        from mediakiln.converter import plan_media_conversion
        from mediakiln.events import EventLog

        events = EventLog()
        plan = asyncio.run(plan_media_conversion(sample_input, _settings(mode="size"), fake_engine, events))

        assert plan.metadata.duration == 60.0
        assert plan.budget.video_kbps == 1175
        assert [p.number for p in plan.job.passes] == [1, 2]
        assert plan.job.artifacts == [f"{plan.job.id}-0.log", f"{plan.job.id}-0.log.mbtree"]
        assert "-b:v" in plan.job.passes[1].argv
        assert "Start: 2-Pass Mode. Target Video: 1175k, Audio: 128k" in events.messages("info")
        assert 9.0 < plan.estimated_mb < 10.0

    def test_muted_size_plan_spends_nothing_on_audio(self, fake_engine, sample_input):
        from mediakiln.converter import plan_media_conversion

        plan = asyncio.run(
            plan_media_conversion(sample_input, _settings(mode="size", audio_codec="none"), fake_engine)
        )

        assert plan.budget.audio_kbps == 0
        assert "-an" in plan.job.passes[1].argv

    def test_impossible_target_warns_and_runs_at_floor(self, fake_engine, sample_input):
        from mediakiln.converter import plan_media_conversion
        from mediakiln.events import EventLog

        events = EventLog()
        plan = asyncio.run(
            plan_media_conversion(sample_input, _settings(mode="size", target_mb=0.5), fake_engine, events)
        )

        assert plan.budget.is_impossible
        assert plan.budget.video_kbps == 50
        assert any(m.startswith("WARNING: Minimum floors exceed target size") for m in events.messages("info"))
        assert len(plan.job.passes) == 2

    def test_unknown_duration_falls_back_to_quality(self, fake_engine_cls, sample_input):
        from mediakiln.converter import plan_media_conversion
        from mediakiln.events import EventLog

        engine = fake_engine_cls(probe_lines=["  Duration: N/A, bitrate: N/A"])
        events = EventLog()
        plan = asyncio.run(plan_media_conversion(sample_input, _settings(mode="size"), engine, events))

        assert plan.mode == "quality"
        assert plan.budget is None
        assert len(plan.job.passes) == 1
        assert "-crf" in plan.job.passes[0].argv
        assert "Duration unknown; falling back to quality mode" in events.messages("error")


class TestMediaOperations:
    """Tests for convert_media, clip_media and remove_audio."""

    def test_convert_media_two_pass(self, fake_engine, sample_input):
        from mediakiln.converter import convert_media

        result = asyncio.run(convert_media(sample_input, _settings(mode="size"), fake_engine))

        assert result.name == "clip_conv.mp4"
        assert result.mime_type == "video/mp4"
        assert len(fake_engine.exec_calls) == 2
        assert fake_engine.list_files() == []

    def test_convert_media_audio_only(self, fake_engine, sample_input):
        from mediakiln.converter import convert_media

        result = asyncio.run(convert_media(sample_input, _settings(format_id="mp3"), fake_engine))

        assert result.name == "clip_conv.mp3"
        assert result.mime_type == "audio/mp3"

    def test_probe_reused_between_conversions(self, fake_engine, sample_input):
        from mediakiln.converter import convert_media
        from mediakiln.probe import MetadataProbe

        probe = MetadataProbe(fake_engine)

        async def go():
            await convert_media(sample_input, _settings(mode="size"), fake_engine, probe=probe)
            await convert_media(sample_input, _settings(mode="size", target_mb=5), fake_engine, probe=probe)

        asyncio.run(go())

        assert len(fake_engine.probe_calls) == 1
        assert len(fake_engine.exec_calls) == 4

    def test_clip_media(self, fake_engine, sample_input):
        from mediakiln.converter import clip_media

        result = asyncio.run(clip_media(sample_input, "00:00:01", "00:00:03", fake_engine))

        argv = fake_engine.exec_calls[0]
        assert result.name == "clip_clipped.mp4"
        assert argv[:2] == ["-ss", "00:00:01"]
        assert argv[argv.index("-c") + 1] == "copy"

    def test_clip_rejects_bad_timestamps_before_running(self, fake_engine, sample_input):
        from mediakiln.converter import clip_media

        with pytest.raises(ValueError):
            asyncio.run(clip_media(sample_input, "soon", "later", fake_engine))
        assert fake_engine.exec_calls == []

    def test_remove_audio(self, fake_engine, sample_input):
        from mediakiln.converter import remove_audio

        result = asyncio.run(remove_audio(sample_input, fake_engine))

        assert result.name == "clip_muted.mp4"
        assert "-an" in fake_engine.exec_calls[0]
        assert fake_engine.list_files() == []


class TestConvertImage:
    """Tests for convert_image()."""

    def test_image_output_name(self):
        from mediakiln.converter import image_output_name

        assert image_output_name("photo.final.png", "avif") == "photo.final.avif"
        assert image_output_name("scan.tiff", "jpeg") == "scan.jpg"

    def test_png_quality_mode(self, sample_png):
        from mediakiln.converter import convert_image

        result = asyncio.run(convert_image(sample_png, _settings(image_format="png")))

        assert result.name == "photo.png"
        assert result.mime_type == "image/png"
        assert (result.width, result.height) == (64, 64)
        assert result.data.startswith(b"\x89PNG")
        assert result.search is None

    def test_lossless_size_mode_falls_back(self, sample_png):
        from mediakiln.converter import convert_image
        from mediakiln.events import EventLog

        events = EventLog()
        result = asyncio.run(convert_image(sample_png, _settings(image_format="png", mode="size"), events))

        assert result.search is None
        assert "PNG is lossless; using quality mode" in events.messages("info")

    @pytest.mark.skipif(not features.check("jpg"), reason="Pillow built without JPEG support")
    def test_jpeg_size_mode_searches(self, sample_png):
        from mediakiln.converter import convert_image
        from mediakiln.events import EventLog

        events = EventLog()
        settings = _settings(image_format="jpeg", mode="size", target_kb=32)
        result = asyncio.run(convert_image(sample_png, settings, events))

        assert result.name == "photo.jpg"
        assert result.search is not None
        assert result.size <= 32 * 1024
        assert result.quality == result.search.quality
        assert events.messages("info")[0].startswith("Starting search for target size: ~32 KB")

    @pytest.mark.skipif(not features.check("webp"), reason="Pillow built without WebP support")
    def test_webp_quality_mode(self, sample_png):
        from mediakiln.converter import convert_image

        result = asyncio.run(convert_image(sample_png, _settings(image_format="webp", image_quality=60)))

        assert result.data[:4] == b"RIFF"
        assert result.quality == 60

    def test_unreadable_input(self, temp_dir):
        from PIL import UnidentifiedImageError

        from mediakiln.converter import convert_image

        bogus = temp_dir / "notes.png"
        bogus.write_text("not an image")

        with pytest.raises(UnidentifiedImageError):
            asyncio.run(convert_image(bogus, _settings(image_format="png")))
