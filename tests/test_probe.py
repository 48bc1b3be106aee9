"""
Tests for metadata probing.
"""

import asyncio
import os

import pytest


class TestParseProbeLines:
    """Tests for the probe log parsers."""

    def test_duration_exact(self):
        from mediakiln.probe import parse_duration

        assert parse_duration("Duration: 00:01:30.50") == 90.5

    def test_duration_with_hours(self):
        from mediakiln.probe import parse_duration

        assert parse_duration("  Duration: 01:02:03.25, start: 0.000000") == pytest.approx(3723.25)

    def test_duration_na_raises(self):
        from mediakiln.errors import ProbeParseError
        from mediakiln.probe import parse_duration

        with pytest.raises(ProbeParseError):
            parse_duration("  Duration: N/A, bitrate: N/A")

    def test_audio_line(self):
        from mediakiln.models import FileMetadata
        from mediakiln.probe import parse_probe_line

        meta = FileMetadata()
        parse_probe_line("Audio: aac, 128 kb/s", meta)

        assert meta.has_audio is True
        assert meta.audio_codec == "aac"
        assert meta.audio_bitrate == 128

    def test_audio_bitrate_not_taken_from_container(self):
        from mediakiln.models import FileMetadata
        from mediakiln.probe import parse_probe_line

        meta = FileMetadata()
        parse_probe_line("  Duration: 00:00:10.00, start: 0.000000, bitrate: 900 kb/s", meta)
        parse_probe_line("  Stream #0:1: Audio: opus, 48000 Hz, stereo, fltp (default)", meta)

        assert meta.total_bitrate == 900
        assert meta.audio_codec == "opus"
        assert meta.audio_bitrate == 0

    def test_full_output(self, probe_lines):
        from mediakiln.probe import parse_probe_output

        meta = parse_probe_output(probe_lines)

        assert meta.duration == 60.0
        assert meta.total_bitrate == 1500
        assert meta.has_audio is True
        assert meta.audio_codec == "aac"
        assert meta.audio_bitrate == 128

    def test_unparseable_lines_keep_defaults(self):
        from mediakiln.models import FileMetadata
        from mediakiln.probe import parse_probe_output

        meta = parse_probe_output(["  Duration: N/A, start: 0.0", "random noise"])
        assert meta == FileMetadata()

    def test_bitrate_read_when_duration_unavailable(self):
        from mediakiln.probe import parse_probe_output

        meta = parse_probe_output(["  Duration: N/A, start: 0.000000, bitrate: 1411 kb/s"])

        assert meta.duration == 0.0
        assert meta.total_bitrate == 1411


class TestMetadataProbe:
    """Tests for MetadataProbe against a fake engine."""

    def test_probe_populates_metadata_and_cleans_up(self, fake_engine_cls, sample_input):
        from mediakiln.probe import MetadataProbe

        engine = fake_engine_cls()
        meta = asyncio.run(MetadataProbe(engine).probe(sample_input))

        assert meta.duration == 60.0
        assert meta.audio_codec == "aac"
        assert len(engine.probe_calls) == 1
        assert engine.probe_calls[0][0] == "-hide_banner"
        assert engine.list_files() == []

    def test_same_identity_probed_once(self, fake_engine_cls, sample_input):
        from mediakiln.probe import MetadataProbe

        engine = fake_engine_cls()
        probe = MetadataProbe(engine)

        async def go():
            await probe.probe(sample_input)
            await probe.probe(sample_input)

        asyncio.run(go())
        assert len(engine.probe_calls) == 1

    def test_changed_file_is_probed_again(self, fake_engine_cls, sample_input):
        from mediakiln.probe import MetadataProbe

        engine = fake_engine_cls()
        probe = MetadataProbe(engine)

        async def go():
            await probe.probe(sample_input)
            sample_input.write_bytes(b"\x01" * 4096)
            st = sample_input.stat()
            os.utime(sample_input, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))
            await probe.probe(sample_input)

        asyncio.run(go())

        assert len(engine.probe_calls) == 2

    def test_listener_detached_after_probe(self, fake_engine_cls, sample_input):
        from mediakiln.engine import LOG
        from mediakiln.probe import MetadataProbe

        engine = fake_engine_cls()
        asyncio.run(MetadataProbe(engine).probe(sample_input))
        assert engine._handlers[LOG] == []

    def test_missing_file_degrades_to_defaults(self, fake_engine_cls, temp_dir):
        from mediakiln.events import EventLog
        from mediakiln.models import FileMetadata
        from mediakiln.probe import MetadataProbe

        events = EventLog()
        meta = asyncio.run(MetadataProbe(fake_engine_cls()).probe(temp_dir / "missing.mp4", events))

        assert meta == FileMetadata()
        assert events.messages("error")

    def test_engine_failure_degrades_to_defaults(self, fake_engine_cls, sample_input):
        from mediakiln.events import EventLog
        from mediakiln.models import FileMetadata
        from mediakiln.probe import MetadataProbe

        class BrokenEngine(fake_engine_cls):
            async def probe(self, argv):
                raise OSError("ffprobe vanished")

        events = EventLog()
        meta = asyncio.run(MetadataProbe(BrokenEngine()).probe(sample_input, events))

        assert meta == FileMetadata()
        assert any("Probe failed" in m for m in events.messages("error"))
