"""Tests for the pipeline orchestrator, with ffmpeg/sox mocked out."""

from pathlib import Path
from unittest.mock import patch

import pytest

from tapeforge.engine import Pipeline, RunReport, SegmentState
from tapeforge.errors import ConfigError, ExternalProcessError, FormatError
from tapeforge.models import FrameMeasurement, TimeRange
from tapeforge.noise import encode_profile
from tapeforge.script import parse_script

HEADER = 'original "tape.mkv"\nno_reduce_noise\n'


@pytest.fixture
def ff():
    with patch("tapeforge.engine.ffutil") as mock:
        mock.read_metadata.return_value = ";FFMETADATA1\nencoder=Lavf\n"
        mock.measure_frame_rate.return_value = FrameMeasurement(frames=250, out_time_us=10_000_000)
        mock.audio_duration_ms.return_value = 10_000
        mock.sox_cmd.side_effect = lambda audio_file, effects, niceness=None: [str(audio_file), *effects]
        mock.build_audio.side_effect = lambda extract, process, monitor: Path(process[0]).write_bytes(b"RIFF")
        mock.video_encode_cmd.side_effect = lambda *args, **kwargs: [str(args[5])]
        mock.run_with_progress.side_effect = lambda cmd, monitor, stage: Path(cmd[0]).write_bytes(b"video")
        yield mock


@pytest.fixture
def pipeline(config, workdir, display):
    return Pipeline(config, workdir, display=display)


def run(pipeline, text: str) -> RunReport:
    return pipeline.run(parse_script(HEADER + text))


class TestRunReport:
    def test_defaults(self):
        r = RunReport()
        assert r.results == []
        assert r.failures == []
        assert r.playlists == []
        assert r.ok


class TestPipelineSetup:
    def test_requires_sample_rate(self, workdir):
        from tapeforge.config import TranscodeConfig
        with pytest.raises(ConfigError, match="audio_sample_rate"):
            Pipeline(TranscodeConfig(), workdir)


class TestSegment:
    def test_mkv_skips_frame_rate(self, ff, pipeline, workdir):
        report = run(pipeline, 'segment "clip.mkv" 00:00:10-00:00:20\n')
        result = report.results[0]
        assert result.stage_count == 2
        assert result.stages == ["creating audio", "creating video"]
        assert result.state is SegmentState.DONE
        assert result.duration_ms == 10_000
        ff.measure_frame_rate.assert_not_called()
        assert (workdir / "clip.mkv").read_bytes() == b"video"
        assert ff.video_encode_cmd.call_args.kwargs["frame_rate"] is None

    def test_other_containers_measure_frame_rate(self, ff, pipeline):
        ff.measure_frame_rate.return_value = FrameMeasurement(frames=250, out_time_us=9_990_000)
        ff.audio_duration_ms.return_value = 9_990
        report = run(pipeline, 'segment "clip.mp4" 00:00:10-00:00:20\n')
        result = report.results[0]
        assert result.stage_count == 3
        assert result.stages[0] == "calculating framerate"
        assert result.duration_ms == 9_990
        assert ff.video_encode_cmd.call_args.kwargs["frame_rate"] == "250000000/9990000"

    def test_audio_cache_reused(self, ff, pipeline, workdir):
        report = run(
            pipeline,
            'segment "clip.mkv" 00:00:10-00:00:20\n'
            'segment "clip.mkv" 00:00:10-00:00:20\n',
        )
        first, second = report.results
        assert second.stage_count == first.stage_count - 1
        assert second.audio_cached
        assert second.stages == ["creating video"]
        assert ff.build_audio.call_count == 1

    def test_old_output_renamed(self, ff, pipeline, workdir):
        (workdir / "clip.mkv").write_bytes(b"previous")
        report = run(pipeline, 'segment "clip.mkv" 00:00:10-00:00:20\n')
        assert report.results[0].renamed_old == workdir / "clip.mkv.old"
        assert (workdir / "clip.mkv.old").read_bytes() == b"previous"

    def test_metadata_written_once(self, ff, pipeline, workdir):
        run(pipeline, 'prepare_segment "show.mkv" 00:00:10-00:00:20 00:00:30-00:00:40\n')
        metadata = workdir / "temp" / "show.txt"
        text = metadata.read_text()
        assert "title=show" in text
        assert "START=10000000000" in text
        assert "title=Chapter 2" in text

        metadata.write_text(text.replace("Chapter 2", "Credits"))
        run(pipeline, 'prepare_segment "show.mkv" 00:00:10-00:00:20 00:00:30-00:00:40\n')
        assert "title=Credits" in metadata.read_text()

    def test_prepare_only_stops_before_video(self, ff, pipeline, workdir):
        report = run(pipeline, 'prepare_segment "clip.mkv" 00:00:10-00:00:20\n')
        assert report.results[0].state is SegmentState.PREPARE_ONLY
        assert (workdir / "temp" / "clip.wav").exists()
        ff.run_with_progress.assert_not_called()

    def test_whole_file_segment_skips_sync_check(self, ff, pipeline, workdir):
        report = run(pipeline, 'segment "all.mkv"\n')
        assert report.results[0].duration_ms is None
        ff.audio_duration_ms.assert_not_called()
        assert ff.audio_extract_cmd.call_args.args[1] is None
        assert "[CHAPTER]" not in (workdir / "temp" / "all.txt").read_text()

    def test_whole_file_segment_gets_measured_chapter(self, ff, pipeline, workdir):
        report = run(pipeline, 'segment "all.mp4"\n')
        assert report.results[0].duration_ms == 10_000
        text = (workdir / "temp" / "all.txt").read_text()
        assert text.count("[CHAPTER]") == 1
        assert "START=0\nEND=10000000000\ntitle=all\n" in text


class TestFailures:
    def test_sync_error_stops_segment_only(self, ff, pipeline, workdir):
        ff.audio_duration_ms.side_effect = [5_000_000, 10_000]
        report = run(
            pipeline,
            'segment "a.mkv" 00:00:10-00:00:20\n'
            'segment "b.mkv" 00:00:10-00:00:20\n',
        )
        assert not report.ok
        assert report.failures[0].path == Path("a.mkv")
        assert report.failures[0].stage == "validating sync"
        assert "too long" in report.failures[0].error
        assert not (workdir / "a.mkv").exists()
        assert [r.path for r in report.results] == [Path("b.mkv")]

    def test_external_failure_keeps_intermediates(self, ff, pipeline, workdir):
        ff.build_audio.side_effect = ExternalProcessError("creating audio", 2, "sox: bad effect")
        report = run(pipeline, 'segment "clip.mkv" 00:00:10-00:00:20\n')
        assert report.failures[0].stage == "creating audio"
        assert (workdir / "temp" / "clip.txt").exists()
        ff.run_with_progress.assert_not_called()

    def test_unresolved_noise(self, ff, pipeline):
        with pytest.raises(ConfigError, match="noise profile"):
            pipeline.run(parse_script('original "tape.mkv"\nsegment "clip.mkv"\n'))

    def test_segment_before_original(self, ff, pipeline):
        with pytest.raises(ConfigError, match="'original'"):
            pipeline.run(parse_script('no_reduce_noise\nsegment "clip.mkv"\n'))

    def test_missing_original(self, ff, pipeline):
        with pytest.raises(ConfigError, match="does not exist"):
            pipeline.run(parse_script('original "nope.mkv"\n'))

    def test_segment_named_like_original(self, ff, pipeline):
        with pytest.raises(ConfigError, match="same name as the original"):
            run(pipeline, 'segment "tape.mkv"\n')

    def test_segment_without_extension(self, ff, pipeline):
        with pytest.raises(FormatError, match="file extension"):
            run(pipeline, 'segment "videos/clip"\n')


class TestAudioSettings:
    def test_default_noise_profile_written_for_sox(self, ff, config, workdir, display):
        config.noise_profile = encode_profile(b"Channel 0: 1.0\n")
        pipeline = Pipeline(config, workdir, display=display)
        pipeline.run(parse_script('original "tape.mkv"\nreduce_noise 0.3\nsegment "clip.mkv"\n'))
        profile = workdir / "temp" / "clip.noiseprof"
        assert profile.read_bytes() == b"Channel 0: 1.0\n"
        effects = ff.sox_cmd.call_args.args[1]
        assert effects[:3] == ["noisered", str(profile), "0.3"]

    def test_noise_amount_defaults_to_config(self, ff, config, workdir, display):
        config.noise_profile = encode_profile(b"Channel 0: 1.0\n")
        config.noise_reduction = 0.15
        pipeline = Pipeline(config, workdir, display=display)
        pipeline.run(parse_script('original "tape.mkv"\nreduce_noise\nsegment "clip.mkv"\n'))
        effects = ff.sox_cmd.call_args.args[1]
        assert effects[0] == "noisered"
        assert effects[2] == "0.15"

    def test_sampled_noise_profile(self, ff, pipeline, workdir):
        ff.sample_noise_profile.return_value = b"sampled\n"
        pipeline.run(parse_script(
            'original "tape.mkv"\nreduce_noise 0.21 00:00:00-00:00:01\nsegment "clip.mkv"\n'
        ))
        ff.sample_noise_profile.assert_called_once_with(workdir / "tape.mkv", TimeRange(0, 1000), None)

    def test_audio_delay_pads(self, ff, pipeline):
        run(pipeline, 'audio_delay 1.5\nsegment "clip.mkv" 00:00:10-00:00:20\n')
        args = ff.audio_extract_cmd.call_args.args
        assert "aevalsrc=0:s=32000:c=2:d=1.500" in args[2]
        assert args[3] == "padded_audio"

    def test_frequency_range_and_filters(self, ff, pipeline):
        run(pipeline, 'audio_frequency_range 0 12000\naudio_filters "norm -3"\nsegment "clip.mkv"\n')
        effects = ff.sox_cmd.call_args.args[1]
        assert effects[:4] == ["equalizer", "12000", "5h", "-90"]
        assert effects[-2:] == ["norm", "-3"]

    def test_video_filters_reach_graph(self, ff, pipeline):
        run(pipeline, 'video_filters "hqdn3d"\nsegment "clip.mkv" 00:00:10-00:00:20\n')
        graph = ff.video_encode_cmd.call_args.args[4]
        assert graph.endswith("[v0] concat=n=1, hqdn3d [video]")


class TestPlaylist:
    def test_written_and_reset(self, ff, pipeline, workdir):
        report = run(
            pipeline,
            'segment "videos/one.mkv" 00:00:10-00:00:20\n'
            'playlist "first.m3u"\n'
            'segment "videos/two.mkv" 00:00:10-00:00:20\n'
            'playlist "second.m3u"\n',
        )
        assert report.playlists == [workdir / "first.m3u", workdir / "second.m3u"]
        assert (workdir / "first.m3u").read_text() == "#EXTM3U\n#EXTINF:10,one\nvideos/one.mkv\n"
        assert "one" not in (workdir / "second.m3u").read_text()

    def test_failed_segment_not_listed(self, ff, pipeline, workdir):
        ff.audio_duration_ms.return_value = 5_000_000
        run(pipeline, 'segment "clip.mkv" 00:00:10-00:00:20\nplaylist "list.m3u"\n')
        assert (workdir / "list.m3u").read_text() == "#EXTM3U\n"


class TestPlaySegment:
    def test_preview_with_crop_suggestions(self, ff, pipeline, workdir, caplog):
        lines = [
            "[Parsed_cropdetect_1 @ 0x1] x1:5 x2:714 y1:2 y2:573 w:704 h:560 x:8 y:8 pts:1 t:1.000000 crop=704:560:8:8\n",
            "[Parsed_cropdetect_1 @ 0x1] x1:5 x2:714 y1:2 y2:573 w:704 h:560 x:8 y:8 pts:2 t:4.000000 crop=704:560:8:8\n",
        ]
        ff.run_preview.side_effect = lambda cmd, on_line: [on_line(line) for line in lines]
        with caplog.at_level("INFO", logger="tapeforge.engine"):
            run(pipeline, 'play_segment "clip.mkv" 00:01:00-00:02:00\n')
        assert ff.preview_cmd.call_args.args[:2] == (workdir / "tape.mkv", 60_000)
        assert 'video_filters "crop=704:560:8:8"' in caplog.text

    def test_preview_failure_not_blamed_on_earlier_stage(self, ff, pipeline):
        ff.build_audio.side_effect = ExternalProcessError("creating audio", 2, "sox: bad effect")
        ff.run_preview.side_effect = ExternalProcessError("playing segment", 1)
        report = run(
            pipeline,
            'segment "clip.mkv" 00:00:10-00:00:20\n'
            'play_segment "clip.mkv" 00:01:00-00:02:00\n',
        )
        assert [f.stage for f in report.failures] == ["creating audio", "pending"]
