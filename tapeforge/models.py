"""Shared data types used across TapeForge."""

from dataclasses import dataclass, field
from pathlib import Path

from tapeforge.filtergraph import FilterGraph


@dataclass(frozen=True)
class TimeRange:
    """A start/end time pair in milliseconds."""

    start_ms: int
    end_ms: int

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    def shifted(self, offset_ms: int) -> "TimeRange":
        return TimeRange(self.start_ms - offset_ms, self.end_ms - offset_ms)


@dataclass(frozen=True)
class Chapter:
    """A titled range in a segment's own output timeline."""

    start_ms: int
    end_ms: int
    title: str


@dataclass(frozen=True)
class SegmentPlan:
    """Everything needed to cut one segment out of the original recording.

    ``ranges`` are in source coordinates, ``chapters`` in output coordinates.
    ``total_duration_ms`` and ``seek_ms`` are None for whole-file segments.
    """

    title: str
    ranges: tuple[TimeRange, ...]
    chapters: tuple[Chapter, ...]
    total_duration_ms: int | None
    seek_ms: int | None
    video_graph: FilterGraph
    audio_graph: FilterGraph
    video_out: str = "video"
    audio_out: str = "audio"


@dataclass(frozen=True)
class FrameMeasurement:
    """Frame count and output time (microseconds) from a dry-run encode."""

    frames: int
    out_time_us: int

    @property
    def duration_ms(self) -> int:
        return self.out_time_us // 1000

    @property
    def rate(self) -> str:
        """Average frame rate as an ffmpeg ``-r`` rational."""
        return f"{self.frames * 1_000_000}/{self.out_time_us}"


@dataclass
class PlaylistEntry:
    title: str
    duration_s: int
    path: Path


@dataclass
class Playlist:
    entries: list[PlaylistEntry] = field(default_factory=list)

    def append(self, entry: PlaylistEntry) -> None:
        self.entries.append(entry)

    def render(self) -> str:
        lines = ["#EXTM3U"]
        for e in self.entries:
            lines.append(f"#EXTINF:{e.duration_s},{e.title}")
            lines.append(str(e.path))
        return "\n".join(lines) + "\n"

    def clear(self) -> None:
        self.entries.clear()
