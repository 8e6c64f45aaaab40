"""
Unit tests for encoder capability probing and selection.

Tests cover:
- Parsing of `ffmpeg -encoders` / `-hwaccels` listings
- Compute-once probing under concurrent callers
- Priority-ordered selection with hardware and smoke checks
- Operator override and codec family fallback
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from mediaboard.core.config import MediaConfig
from mediaboard.media.encoders import (
    ENCODER_OPTIONS_MAP,
    ENCODER_PRIORITY_MAP,
    EncoderCapabilityProbe,
    EncoderRegistry,
    parse_encoder_listing,
    parse_hwaccel_listing,
    required_hwaccel,
)
from mediaboard.media.errors import FFmpegTimeoutError, NoUsableEncoder, ToolchainUnavailable
from mediaboard.media.ffmpeg_wrapper import ProcessResult


def encoder_listing(*names):
    header = (
        "Encoders:\n"
        " V..... = Video\n"
        " A..... = Audio\n"
        " S..... = Subtitle\n"
        " .F.... = Frame-level multithreading\n"
        " ------\n"
    )
    rows = "".join(f" V....D {name:<20} {name} encoder\n" for name in names)
    return header + rows


def hwaccel_listing(*names):
    return "Hardware acceleration methods:\n" + "".join(f"{name}\n" for name in names) + "\n"


def make_runner(encoders=(), hwaccels=(), failing_smoke=()):
    """Runner whose introspection and smoke tests are scripted."""
    runner = MagicMock()
    runner.ffmpeg_binary = "ffmpeg"

    async def introspect(flag):
        if flag == "-encoders":
            return encoder_listing(*encoders)
        return hwaccel_listing(*hwaccels)

    async def run(binary, args, label=None):
        encoder = args[args.index("-c:v") + 1]
        return ProcessResult(1 if encoder in failing_smoke else 0, "", "")

    runner.introspect = AsyncMock(side_effect=introspect)
    runner.run = AsyncMock(side_effect=run)
    return runner


def smoke_tested(runner):
    """Encoder names passed to smoke tests, in call order."""
    return [call.args[1][call.args[1].index("-c:v") + 1] for call in runner.run.call_args_list]


class TestListingParsers:
    """Test parsing of ffmpeg listing output."""

    def test_parse_encoder_listing_skips_legend(self):
        names = parse_encoder_listing(encoder_listing("libx264", "h264_nvenc", "libopus"))

        assert names == frozenset({"libx264", "h264_nvenc", "libopus"})
        assert "=" not in names

    def test_parse_encoder_listing_empty(self):
        assert parse_encoder_listing("") == frozenset()

    def test_parse_hwaccel_listing(self):
        assert parse_hwaccel_listing(hwaccel_listing("cuda", "vaapi", "qsv")) == frozenset({"cuda", "vaapi", "qsv"})

    def test_required_hwaccel(self):
        assert required_hwaccel("h264_nvenc") == "cuda"
        assert required_hwaccel("av1_qsv") == "qsv"
        assert required_hwaccel("hevc_vaapi") == "vaapi"
        assert required_hwaccel("libx264") is None


class TestEncoderTables:
    """Test the static encoder tables."""

    def test_every_priority_entry_has_options(self):
        for candidates in ENCODER_PRIORITY_MAP.values():
            for implementation in candidates:
                assert implementation in ENCODER_OPTIONS_MAP

    def test_software_encoder_is_last_resort(self):
        assert ENCODER_PRIORITY_MAP["h264"][-1] == "libx264"
        assert ENCODER_PRIORITY_MAP["vp9"][-1] == "libvpx-vp9"
        assert ENCODER_PRIORITY_MAP["av1"][-1] == "libsvtav1"
        assert ENCODER_PRIORITY_MAP["h265"][-1] == "libx265"

    def test_containers(self):
        assert ENCODER_OPTIONS_MAP["libx264"].container == "mp4"
        assert ENCODER_OPTIONS_MAP["libvpx-vp9"].container == "webm"


class TestEncoderCapabilityProbe:
    """Test compute-once capability probing."""

    @pytest.mark.asyncio
    async def test_probe_runs_once_for_concurrent_callers(self):
        runner = make_runner(encoders=("libx264",), hwaccels=("cuda",))
        probe = EncoderCapabilityProbe(runner)

        results = await asyncio.gather(*(probe.available_encoders() for _ in range(5)))
        hwaccels = await asyncio.gather(*(probe.available_hwaccels() for _ in range(5)))

        assert all(result == frozenset({"libx264"}) for result in results)
        assert all(result == frozenset({"cuda"}) for result in hwaccels)
        flags = [call.args[0] for call in runner.introspect.call_args_list]
        assert flags.count("-encoders") == 1
        assert flags.count("-hwaccels") == 1

    @pytest.mark.asyncio
    async def test_snapshot_reflects_cache(self):
        runner = make_runner(encoders=("libx264",))
        probe = EncoderCapabilityProbe(runner)

        assert probe.snapshot().available_encoders == frozenset()
        await probe.available_encoders()
        assert probe.snapshot().available_encoders == frozenset({"libx264"})

    @pytest.mark.asyncio
    async def test_missing_toolchain_propagates(self):
        runner = MagicMock()
        runner.introspect = AsyncMock(side_effect=ToolchainUnavailable("ffmpeg not found"))
        probe = EncoderCapabilityProbe(runner)

        with pytest.raises(ToolchainUnavailable):
            await probe.available_encoders()


class TestEncoderRegistry:
    """Test encoder selection."""

    @pytest.mark.asyncio
    async def test_software_fallback_without_gpu(self):
        """Test a host with encoders compiled in but no hardware backends."""
        runner = make_runner(encoders=("h264_nvenc", "h264_qsv", "libx264"), hwaccels=())
        registry = EncoderRegistry(runner, MediaConfig())

        selected = await registry.select_encoder("h264")

        assert selected == "libx264"
        assert smoke_tested(runner) == ["libx264"]

    @pytest.mark.asyncio
    async def test_first_hardware_candidate_wins(self):
        runner = make_runner(encoders=("h264_nvenc", "h264_qsv", "libx264"), hwaccels=("cuda", "qsv"))
        registry = EncoderRegistry(runner, MediaConfig())

        assert await registry.select_encoder("h264") == "h264_nvenc"
        assert smoke_tested(runner) == ["h264_nvenc"]

    @pytest.mark.asyncio
    async def test_failed_smoke_test_moves_to_next_candidate(self):
        runner = make_runner(
            encoders=("h264_nvenc", "libx264"),
            hwaccels=("cuda",),
            failing_smoke=("h264_nvenc",),
        )
        registry = EncoderRegistry(runner, MediaConfig())

        assert await registry.select_encoder("h264") == "libx264"
        assert smoke_tested(runner) == ["h264_nvenc", "libx264"]

    @pytest.mark.asyncio
    async def test_timed_out_smoke_test_moves_to_next_candidate(self):
        """Test that a hung hardware encoder is skipped when a timeout is configured."""
        runner = make_runner(encoders=("h264_nvenc", "libx264"), hwaccels=("cuda",))

        async def run(binary, args, label=None):
            if args[args.index("-c:v") + 1] == "h264_nvenc":
                raise FFmpegTimeoutError("ffmpeg timed out after 5s")
            return ProcessResult(0, "", "")

        runner.run = AsyncMock(side_effect=run)
        registry = EncoderRegistry(runner, MediaConfig())

        assert await registry.select_encoder("h264") == "libx264"
        assert smoke_tested(runner) == ["h264_nvenc", "libx264"]

    @pytest.mark.asyncio
    async def test_amf_is_always_rejected(self):
        runner = make_runner(encoders=("h264_amf",), hwaccels=("cuda", "qsv", "vaapi"))
        registry = EncoderRegistry(runner, MediaConfig())

        with pytest.raises(NoUsableEncoder):
            await registry.select_encoder("h264")
        assert smoke_tested(runner) == []

    @pytest.mark.asyncio
    async def test_encoder_missing_from_build_is_skipped(self):
        runner = make_runner(encoders=("libx264",), hwaccels=("cuda",))
        registry = EncoderRegistry(runner, MediaConfig())

        assert await registry.select_encoder("h264") == "libx264"
        assert "h264_nvenc" not in smoke_tested(runner)

    @pytest.mark.asyncio
    async def test_no_usable_encoder(self):
        runner = make_runner(encoders=("libx264",), failing_smoke=("libx264",))
        registry = EncoderRegistry(runner, MediaConfig())

        with pytest.raises(NoUsableEncoder):
            await registry.select_encoder("h264")

    @pytest.mark.asyncio
    async def test_unknown_codec_family(self):
        registry = EncoderRegistry(make_runner(), MediaConfig())

        with pytest.raises(NoUsableEncoder):
            await registry.select_encoder("mpeg2")

    @pytest.mark.asyncio
    async def test_selection_is_cached_per_family(self):
        runner = make_runner(encoders=("libx264", "libvpx-vp9"))
        registry = EncoderRegistry(runner, MediaConfig())

        first = await registry.select_encoder("h264")
        second = await registry.select_encoder("h264")
        vp9 = await registry.select_encoder("vp9")

        assert first == second == "libx264"
        assert vp9 == "libvpx-vp9"
        assert smoke_tested(runner) == ["libx264", "libvpx-vp9"]
        assert registry.usable_encoders == {"h264": "libx264", "vp9": "libvpx-vp9"}

    @pytest.mark.asyncio
    async def test_concurrent_selection_smoke_tests_once(self):
        runner = make_runner(encoders=("libx264",))
        registry = EncoderRegistry(runner, MediaConfig())

        results = await asyncio.gather(*(registry.select_encoder("h264") for _ in range(4)))

        assert set(results) == {"libx264"}
        assert smoke_tested(runner) == ["libx264"]

    @pytest.mark.asyncio
    async def test_override_bypasses_every_check(self):
        """Test that the override is returned even when absent from the host."""
        runner = make_runner(encoders=())
        registry = EncoderRegistry(runner, MediaConfig(ENCODER_OVERRIDE="h264_nvenc"))

        assert await registry.select_encoder("h264") == "h264_nvenc"
        runner.introspect.assert_not_called()
        runner.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_override_is_ignored(self):
        runner = make_runner(encoders=("libx264",))
        registry = EncoderRegistry(runner, MediaConfig(ENCODER_OVERRIDE="h264_magic"))

        assert registry.override() is None
        assert await registry.select_encoder("h264") == "libx264"

    def test_preview_codec_family_fallback(self):
        registry = EncoderRegistry(make_runner(), MediaConfig(VIDEO_ENCODER="theora"))
        assert registry.preview_codec_family() == "h264"

    def test_preview_codec_family_normalised(self):
        registry = EncoderRegistry(make_runner(), MediaConfig(VIDEO_ENCODER=" VP9 "))
        assert registry.preview_codec_family() == "vp9"

    @pytest.mark.asyncio
    async def test_smoke_test_arguments(self):
        runner = make_runner(encoders=("h264_qsv",), hwaccels=("qsv",))
        registry = EncoderRegistry(runner, MediaConfig())

        await registry.select_encoder("h264")

        binary, args = runner.run.call_args.args[:2]
        assert binary == "ffmpeg"
        assert args[:4] == ["-hide_banner", "-loglevel", "error", "-y"]
        assert "-init_hw_device" in args
        assert "testsrc=duration=1:size=320x240:rate=30" in args
        assert args[-3:] == ["-f", "null", "-"]
