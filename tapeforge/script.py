"""Segment scripts — the per-recording list of transcode directives.

A script is plain text, one directive per line, with shell-style quoting and
``#`` comments::

    original "tape 1.mkv"
    audio_delay 0.0
    reduce_noise 0.21
    segment "videos/tape 1.mkv" 00:00:30-00:15:00 00:19:00-00:28:00
    playlist "tape 1.m3u"

Scripts are parsed into directive objects; nothing in them is executed.
"""

import shlex
from dataclasses import dataclass
from pathlib import Path

from tapeforge.errors import FormatError
from tapeforge.models import TimeRange
from tapeforge.timecode import parse_range


@dataclass(frozen=True)
class Original:
    path: Path


@dataclass(frozen=True)
class AudioDelay:
    seconds: float


@dataclass(frozen=True)
class ReduceNoise:
    amount: float | None = None
    sample: TimeRange | None = None


@dataclass(frozen=True)
class NoReduceNoise:
    pass


@dataclass(frozen=True)
class Segment:
    path: Path
    ranges: tuple[str, ...] = ()


@dataclass(frozen=True)
class PrepareSegment(Segment):
    pass


@dataclass(frozen=True)
class PlaySegment(Segment):
    pass


@dataclass(frozen=True)
class Playlist:
    path: Path


@dataclass(frozen=True)
class VideoFilters:
    chain: str


@dataclass(frozen=True)
class AudioFilters:
    effects: str


@dataclass(frozen=True)
class AudioFrequencyRange:
    low_hz: int
    high_hz: int


Directive = (
    Original | AudioDelay | ReduceNoise | NoReduceNoise | Segment
    | Playlist | VideoFilters | AudioFilters | AudioFrequencyRange
)


def _number(text: str, kind=float):
    try:
        return kind(text)
    except ValueError:
        raise FormatError(f"Expected a number, got {text!r}") from None


def _arity(name: str, args: list[str], low: int, high: int | None) -> None:
    if len(args) < low or (high is not None and len(args) > high):
        if low == high:
            expected = f"{low}"
        elif high is None:
            expected = f"at least {low}"
        else:
            expected = f"{low} to {high}"
        raise FormatError(f"'{name}' takes {expected} argument(s), got {len(args)}")


def _audio_delay(args: list[str]) -> AudioDelay:
    # "0", "0.0", "." etc. all mean no delay
    if set(args[0]) <= {"0", "."}:
        return AudioDelay(0.0)
    return AudioDelay(_number(args[0]))


def _reduce_noise(args: list[str]) -> ReduceNoise:
    amount = _number(args[0]) if args else None
    sample = parse_range(args[1]) if len(args) > 1 else None
    return ReduceNoise(amount=amount, sample=sample)


def _segment(cls):
    def build(args: list[str]):
        for r in args[1:]:
            parse_range(r)
        return cls(path=Path(args[0]), ranges=tuple(args[1:]))
    return build


# name -> (min args, max args, builder)
_DIRECTIVES = {
    "original": (1, 1, lambda a: Original(Path(a[0]))),
    "audio_delay": (1, 1, _audio_delay),
    "reduce_noise": (0, 2, _reduce_noise),
    "no_reduce_noise": (0, 0, lambda a: NoReduceNoise()),
    "segment": (1, None, _segment(Segment)),
    "prepare_segment": (1, None, _segment(PrepareSegment)),
    "play_segment": (1, None, _segment(PlaySegment)),
    "playlist": (1, 1, lambda a: Playlist(Path(a[0]))),
    "video_filters": (1, 1, lambda a: VideoFilters(a[0])),
    "audio_filters": (1, 1, lambda a: AudioFilters(a[0])),
    "audio_frequency_range": (
        2, 2, lambda a: AudioFrequencyRange(_number(a[0], int), _number(a[1], int))
    ),
}


def parse_script(text: str) -> list:
    """Parse script text into a list of directives."""
    directives = []
    for lineno, line in enumerate(text.splitlines(), 1):
        try:
            words = shlex.split(line, comments=True)
        except ValueError as e:
            raise FormatError(f"line {lineno}: {e}") from None
        if not words:
            continue
        name, args = words[0], words[1:]
        if name not in _DIRECTIVES:
            raise FormatError(f"line {lineno}: unknown directive {name!r}")
        low, high, build = _DIRECTIVES[name]
        try:
            _arity(name, args, low, high)
            directives.append(build(args))
        except FormatError as e:
            raise FormatError(f"line {lineno}: {e}") from None
    return directives


def load_script(path: str | Path) -> list:
    """Parse the script at ``path``."""
    return parse_script(Path(path).read_text())
