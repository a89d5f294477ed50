"""Segment plan builder — filter graphs and chapters for one output file."""

from pathlib import Path

from tapeforge.errors import FormatError
from tapeforge.filtergraph import FilterGraph
from tapeforge.models import Chapter, SegmentPlan, TimeRange
from tapeforge.timecode import ms_to_fractional_seconds, parse_range

FFMETADATA_HEADER = ";FFMETADATA1"
TIMEBASE = "1/1000000000"


def segment_title(filename: str | Path) -> str:
    """Title for a segment: the file name up to its first dot.

    Raises FormatError if the name has no extension, since the muxer is
    chosen from it.
    """
    name = Path(filename).name
    title, dot, ext = name.partition(".")
    if not dot or not ext:
        raise FormatError(f"Please add a file extension for segment {str(filename)!r}")
    return title


def build_segment_plan(
    ranges: list[str],
    title: str,
    video_filters: str = "",
) -> SegmentPlan:
    """Translate source ranges into graphs and chapters on the output timeline.

    The first range's start becomes the input seek offset, so every range is
    shifted by it. Each range is trimmed and its timestamps reset to zero
    before all of them are concatenated; ``video_filters`` run on the joined
    video.
    """
    video = FilterGraph(sources=("0:v",))
    audio = FilterGraph(sources=("0:a",))

    if not ranges:
        video.add(["0:v"], [video_filters or "null"], ["video"])
        audio.add(["0:a"], ["anull"], ["audio"])
        return SegmentPlan(
            title=title,
            ranges=(),
            chapters=(),
            total_duration_ms=None,
            seek_ms=None,
            video_graph=video,
            audio_graph=audio,
        )

    source_ranges = [parse_range(r) for r in ranges]
    seek_ms = source_ranges[0].start_ms

    chapters: list[Chapter] = []
    total_ms = 0
    for i, source_range in enumerate(source_ranges):
        r = source_range.shifted(seek_ms)
        if r.start_ms < 0:
            raise FormatError(
                f"Range {ranges[i]!r} starts before the segment's first range"
            )
        start_s = ms_to_fractional_seconds(r.start_ms)
        end_s = ms_to_fractional_seconds(r.end_ms)
        video.add(["0:v"], [f"trim=start={start_s}:end={end_s}", "setpts=PTS-STARTPTS"], [f"v{i}"])
        audio.add(["0:a"], [f"atrim=start={start_s}:end={end_s}", "asetpts=PTS-STARTPTS"], [f"a{i}"])

        chapter_title = title if len(source_ranges) == 1 else f"Chapter {i + 1}"
        chapters.append(Chapter(total_ms, total_ms + r.duration_ms, chapter_title))
        total_ms += r.duration_ms

    n = len(source_ranges)
    video_chain = [f"concat=n={n}"]
    if video_filters:
        video_chain.append(video_filters)
    video.add([f"v{i}" for i in range(n)], video_chain, ["video"])
    audio.add([f"a{i}" for i in range(n)], [f"concat=n={n}:v=0:a=1"], ["audio"])

    return SegmentPlan(
        title=title,
        ranges=tuple(source_ranges),
        chapters=tuple(chapters),
        total_duration_ms=total_ms,
        seek_ms=seek_ms,
        video_graph=video,
        audio_graph=audio,
    )


def whole_source_chapters(title: str, duration_ms: int | None) -> tuple[Chapter, ...]:
    """The single chapter of a whole-file segment, once its length is known.

    A whole-file plan has no duration, so its chapter is only produced after
    the frame-rate pass has measured one. Without a duration (``.mkv`` output
    skips that pass) there is no chapter.
    """
    if not duration_ms:
        return ()
    return (Chapter(0, duration_ms, title),)


def apply_audio_delay(
    audio_graph: FilterGraph,
    delay_s: float,
    sample_rate: int,
    channels: int = 2,
    label: str = "audio",
) -> tuple[FilterGraph, str]:
    """Return a copy of ``audio_graph`` shifted by ``delay_s`` and its output label.

    Negative delays trim leading audio, positive delays prepend silence.
    """
    graph = audio_graph.copy()
    graph.require_output(label)
    # ffmpeg durations are given to the millisecond
    delay_ms = round(delay_s * 1000)
    if delay_ms == 0:
        return graph, label
    if delay_ms < 0:
        graph.add([label], [f"atrim=start={ms_to_fractional_seconds(-delay_ms)}"], ["trimmed_audio"])
        return graph, "trimmed_audio"
    padding = f"aevalsrc=0:s={sample_rate}:c={channels}:d={ms_to_fractional_seconds(delay_ms)}"
    graph.add([], [padding], ["padding"])
    graph.add(["padding", label], ["concat=v=0:a=1"], ["padded_audio"])
    return graph, "padded_audio"


def render_chapter_metadata(chapters) -> str:
    """ffmetadata ``[CHAPTER]`` stanzas with nanosecond boundaries."""
    stanzas = []
    for ch in chapters:
        stanzas.append(
            "[CHAPTER]\n"
            f"TIMEBASE={TIMEBASE}\n"
            f"START={ch.start_ms * 1_000_000}\n"
            f"END={ch.end_ms * 1_000_000}\n"
            f"title={ch.title}\n"
        )
    return "".join(stanzas)


def render_segment_metadata(original_metadata: str, title: str, chapters) -> str:
    """The metadata artifact muxed into a segment: source tags, title, chapters."""
    body = original_metadata.strip("\n")
    if not body.startswith(FFMETADATA_HEADER):
        body = f"{FFMETADATA_HEADER}\n{body}" if body else FFMETADATA_HEADER
    return (
        f"{body}\n"
        "; To add chapter titles etc., edit the values below then re-run.\n"
        f"title={title}\n"
        f"{render_chapter_metadata(chapters)}"
    )
