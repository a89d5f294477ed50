"""Orchestrator — runs the directives of a segment script."""

import enum
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from tapeforge import ffutil, script
from tapeforge.config import TranscodeConfig
from tapeforge.errors import ConfigError, ExternalProcessError, SyncError
from tapeforge.models import Playlist, PlaylistEntry, SegmentPlan
from tapeforge.noise import NoiseMode, NoiseSettings, resolve_noise, sox_effects
from tapeforge.plan import (
    apply_audio_delay,
    build_segment_plan,
    render_segment_metadata,
    segment_title,
    whole_source_chapters,
)
from tapeforge.preview import CropSuggester
from tapeforge.progress import ProgressMonitor, TerminalStatus
from tapeforge.sync import SYNC_TOLERANCE_MS, check_audio_sync

log = logging.getLogger(__name__)

# containers that store variable frame rate video natively
VFR_SUFFIXES = (".mkv",)


class SegmentState(enum.Enum):
    PENDING = "pending"
    MEASURING_FRAMERATE = "calculating framerate"
    BUILDING_AUDIO = "creating audio"
    VALIDATING_SYNC = "validating sync"
    BUILDING_VIDEO = "creating video"
    PREPARE_ONLY = "prepared"
    DONE = "done"


@dataclass
class SegmentContext:
    """State built up by the directives of one script run."""

    workdir: Path
    original: Path | None = None
    original_metadata: str = ""
    audio_delay: float = 0.0
    noise: NoiseSettings = field(default_factory=NoiseSettings)
    video_filters: str = ""
    audio_filters: str = ""
    frequency_range: tuple[int, int] | None = None
    playlist: Playlist = field(default_factory=Playlist)
    have_created_segments: bool = False


@dataclass
class SegmentResult:
    path: Path
    title: str
    stage_count: int
    stages: list[str] = field(default_factory=list)
    state: SegmentState = SegmentState.PENDING
    duration_ms: int | None = None
    audio_cached: bool = False
    renamed_old: Path | None = None


@dataclass
class SegmentFailure:
    path: Path
    stage: str
    error: str


@dataclass
class RunReport:
    results: list[SegmentResult] = field(default_factory=list)
    failures: list[SegmentFailure] = field(default_factory=list)
    playlists: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class Pipeline:
    """Interprets segment-script directives against the original recording.

    Args:
        config: User configuration.
        workdir: Directory relative paths in the script resolve against.
        display: Status display shared by all progress monitors; a terminal
            status line on stderr when omitted.
    """

    def __init__(
        self,
        config: TranscodeConfig,
        workdir: Path,
        display=None,
        clock: Callable[[], float] = time.time,
        sync_tolerance_ms: int = SYNC_TOLERANCE_MS,
    ):
        self.config = config
        self.sample_rate = config.require_sample_rate()
        self.display = display
        self.clock = clock
        self.sync_tolerance_ms = sync_tolerance_ms
        self.context = SegmentContext(
            workdir=Path(workdir),
            audio_delay=config.audio_delay,
            video_filters=config.video_filters,
            audio_filters=config.audio_filters,
            frequency_range=config.audio_frequency_range,
        )
        self._state = SegmentState.PENDING
        self._handlers = {
            script.Original: self.original,
            script.AudioDelay: self.audio_delay,
            script.ReduceNoise: self.reduce_noise,
            script.NoReduceNoise: self.no_reduce_noise,
            script.Segment: self.segment,
            script.PrepareSegment: self.prepare_segment,
            script.PlaySegment: self.play_segment,
            script.Playlist: self.playlist,
            script.VideoFilters: self.video_filters,
            script.AudioFilters: self.audio_filters,
            script.AudioFrequencyRange: self.audio_frequency_range,
        }

    def _path(self, path: Path) -> Path:
        return path if path.is_absolute() else self.context.workdir / path

    def _monitor(self, label: str, total_ms: int | None, ticks_per_ms: int = 1) -> ProgressMonitor:
        return ProgressMonitor(
            label,
            total_ms=total_ms or 0,
            ticks_per_ms=ticks_per_ms,
            display=self.display or TerminalStatus(),
            clock=self.clock,
        )

    # --- script runner ---

    def run(self, directives) -> RunReport:
        """Run every directive in order.

        A sync or external-process failure abandons only the current
        segment; format and configuration errors abort the run.
        """
        ffutil.check_tools("ffmpeg", "sox")
        report = RunReport()
        for directive in directives:
            handler = self._handlers[type(directive)]
            try:
                outcome = handler(directive)
            except (SyncError, ExternalProcessError) as e:
                if not isinstance(directive, script.Segment):
                    raise
                log.error("%s: %s failed: %s", directive.path, self._state.value, e)
                report.failures.append(
                    SegmentFailure(path=directive.path, stage=self._state.value, error=str(e))
                )
                continue
            if isinstance(outcome, SegmentResult):
                report.results.append(outcome)
            elif isinstance(directive, script.Playlist):
                report.playlists.append(outcome)

        if not self.context.have_created_segments:
            log.warning("Please specify at least one segment")
        return report

    # --- settings directives ---

    def original(self, d: script.Original) -> None:
        path = self._path(d.path)
        if not path.exists():
            raise ConfigError(f"Original file {path} does not exist")
        self.context.original = path
        self.context.original_metadata = ffutil.read_metadata(path, self.config.niceness)

    def audio_delay(self, d: script.AudioDelay) -> None:
        self.context.audio_delay = d.seconds

    def reduce_noise(self, d: script.ReduceNoise) -> None:
        sampler = None
        if self.context.original is not None:
            original = self.context.original

            def sampler(r):
                return ffutil.sample_noise_profile(original, r, self.config.niceness)

        amount = self.config.noise_reduction if d.amount is None else d.amount
        self.context.noise = resolve_noise(
            amount, self.config.noise_profile, sample=d.sample, sampler=sampler
        )

    def no_reduce_noise(self, d: script.NoReduceNoise) -> None:
        self.context.noise = NoiseSettings.disabled()

    def video_filters(self, d: script.VideoFilters) -> None:
        self.context.video_filters = d.chain

    def audio_filters(self, d: script.AudioFilters) -> None:
        self.context.audio_filters = d.effects

    def audio_frequency_range(self, d: script.AudioFrequencyRange) -> None:
        self.context.frequency_range = (d.low_hz, d.high_hz)

    def playlist(self, d: script.Playlist) -> Path:
        path = self._path(d.path)
        path.write_text(self.context.playlist.render())
        self.context.playlist.clear()
        log.info("%s created", path)
        return path

    # --- segments ---

    def _require_original(self) -> Path:
        if self.context.original is None:
            raise ConfigError("Please add an 'original' line before the first segment")
        return self.context.original

    @staticmethod
    def planned_stages(audio_cached: bool, variable_frame_rate: bool) -> list[SegmentState]:
        stages = []
        if not variable_frame_rate:
            stages.append(SegmentState.MEASURING_FRAMERATE)
        if not audio_cached:
            stages.append(SegmentState.BUILDING_AUDIO)
        stages.append(SegmentState.BUILDING_VIDEO)
        return stages

    def prepare_segment(self, d: script.PrepareSegment) -> SegmentResult:
        """Build a segment's audio and metadata without encoding the video."""
        return self.segment(d, prepare_only=True)

    def segment(self, d: script.Segment, prepare_only: bool = False) -> SegmentResult:
        ctx = self.context
        self._state = SegmentState.PENDING
        original = self._require_original()
        title = segment_title(d.path)
        output = self._path(d.path)
        if output.resolve() == original.resolve():
            raise ConfigError(
                f"Can't create segment '{d.path}' - would have the same name as the original file"
            )
        if ctx.noise.mode is NoiseMode.UNRESOLVED:
            raise ConfigError(
                "Please add a noise profile (add 'reduce_noise <amount>' or "
                "'no_reduce_noise' to the segment script)"
            )
        ctx.have_created_segments = True

        temp = ctx.workdir / "temp"
        audio_file = temp / f"{title}.wav"
        metadata_file = temp / f"{title}.txt"
        audio_cached = audio_file.exists()
        vfr = output.suffix.lower() in VFR_SUFFIXES

        planned = self.planned_stages(audio_cached, vfr)
        result = SegmentResult(
            path=d.path, title=title, stage_count=len(planned), audio_cached=audio_cached
        )
        plan = build_segment_plan(list(d.ranges), title, ctx.video_filters)
        if len(planned) > 1:
            log.info("%s started (%d stages)", d.path, len(planned))

        def label(state: SegmentState) -> str:
            self._state = state
            result.stages.append(state.value)
            if len(planned) == 1:
                return str(d.path)
            return f"{d.path} {state.value} ({len(result.stages)}/{len(planned)})"

        target_ms = plan.total_duration_ms
        frame_rate = None
        if not vfr:
            monitor = self._monitor(label(SegmentState.MEASURING_FRAMERATE), target_ms, 1000)
            cmd = ffutil.frame_rate_cmd(
                original, plan.seek_ms, plan.video_graph.render(), plan.video_out, self.config.niceness
            )
            measured = ffutil.measure_frame_rate(cmd, monitor)
            frame_rate = measured.rate
            target_ms = measured.duration_ms

        output.parent.mkdir(parents=True, exist_ok=True)
        temp.mkdir(parents=True, exist_ok=True)

        # user-edited chapter titles survive reruns
        if not metadata_file.exists():
            chapters = plan.chapters or whole_source_chapters(title, target_ms)
            metadata_file.write_text(
                render_segment_metadata(ctx.original_metadata, title, chapters)
            )

        if audio_cached:
            log.info("using existing audio %s", audio_file)
        else:
            monitor = self._monitor(label(SegmentState.BUILDING_AUDIO), target_ms)
            self._build_audio(original, plan, audio_file, monitor)

        self._state = SegmentState.VALIDATING_SYNC
        if target_ms is not None:
            check_audio_sync(
                target_ms,
                ffutil.audio_duration_ms(audio_file),
                audio_name=f"audio file {audio_file}",
                tolerance_ms=self.sync_tolerance_ms,
            )
        result.duration_ms = target_ms

        if prepare_only:
            result.state = SegmentState.PREPARE_ONLY
        else:
            if output.exists():
                old = output.with_name(output.name + ".old")
                output.rename(old)
                result.renamed_old = old
                log.info("renamed old %s to %s", output, old)

            monitor = self._monitor(label(SegmentState.BUILDING_VIDEO), target_ms, 1000)
            cmd = ffutil.video_encode_cmd(
                original,
                plan.seek_ms,
                audio_file,
                metadata_file,
                plan.video_graph.render(),
                output,
                self.config.encoder,
                frame_rate=frame_rate,
                video_out=plan.video_out,
                niceness=self.config.niceness,
            )
            ffutil.run_with_progress(cmd, monitor, SegmentState.BUILDING_VIDEO.value)
            result.state = SegmentState.DONE
            log.info("%s finished", d.path)

        ctx.playlist.append(
            PlaylistEntry(title=title, duration_s=(target_ms or 0) // 1000, path=d.path)
        )
        self._state = SegmentState.PENDING
        return result

    def _build_audio(
        self, original: Path, plan: SegmentPlan, audio_file: Path, monitor: ProgressMonitor
    ) -> None:
        ctx = self.context
        graph, out = apply_audio_delay(
            plan.audio_graph,
            ctx.audio_delay,
            self.sample_rate,
            self.config.audio_channels,
            plan.audio_out,
        )
        profile_path = None
        if ctx.noise.mode is NoiseMode.PROFILE:
            profile_path = audio_file.with_suffix(".noiseprof")
            profile_path.write_bytes(ctx.noise.profile)
        effects = sox_effects(
            ctx.noise, profile_path, ctx.frequency_range, self.sample_rate, ctx.audio_filters
        )
        extract = ffutil.audio_extract_cmd(
            original, plan.seek_ms, graph.render(), out, self.config.niceness
        )
        process = ffutil.sox_cmd(audio_file, effects, self.config.niceness)
        ffutil.build_audio(extract, process, monitor)

    def play_segment(self, d: script.PlaySegment) -> None:
        """Preview a segment with the current video filters and suggest a crop."""
        self._state = SegmentState.PENDING
        original = self._require_original()
        self.context.have_created_segments = True
        plan = build_segment_plan(list(d.ranges), segment_title(d.path), self.context.video_filters)
        suggester = CropSuggester()

        def on_line(line: str) -> None:
            suggestion = suggester.feed(line)
            if suggestion:
                log.info("Suggested video filters: %s", suggestion)

        ffutil.run_preview(
            ffutil.preview_cmd(original, plan.seek_ms, self.context.video_filters), on_line
        )
