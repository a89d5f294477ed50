"""Conversions between ``HH:MM:SS.fff`` text and integer milliseconds."""

import re

from tapeforge.errors import FormatError
from tapeforge.models import TimeRange

_TIME_RE = re.compile(r"^(\d+):([0-5]\d):([0-5]\d)(?:\.(\d+))?$")


def parse_time(text: str) -> int:
    """Parse ``HH:MM:SS[.fraction]`` into milliseconds.

    The fraction is right-padded or truncated to three digits, so ``.5`` is
    500ms and ``.123456`` is 123ms.
    """
    m = _TIME_RE.match(text.strip())
    if m is None:
        raise FormatError(f"Invalid time {text!r}; expected HH:MM:SS[.fff]")
    hours, minutes, seconds, fraction = m.groups()
    ms = int((fraction or "").ljust(3, "0")[:3])
    return ((int(hours) * 60 + int(minutes)) * 60 + int(seconds)) * 1000 + ms


def format_ms(ms: int) -> str:
    """Render milliseconds as zero-padded ``HH:MM:SS.mmm``."""
    seconds, millis = divmod(ms, 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"


def ms_to_fractional_seconds(ms: int) -> str:
    """Render milliseconds as seconds for filter expressions (1500 -> "1.500")."""
    sign = "-" if ms < 0 else ""
    seconds, millis = divmod(abs(ms), 1000)
    return f"{sign}{seconds}.{millis:03d}"


def parse_range(text: str) -> TimeRange:
    """Parse ``start-end`` into a TimeRange in source coordinates."""
    start, sep, end = text.partition("-")
    if not sep:
        raise FormatError(f"Invalid range {text!r}; expected START-END")
    r = TimeRange(parse_time(start), parse_time(end))
    if r.start_ms >= r.end_ms:
        raise FormatError(f"Range {text!r} ends before it starts")
    return r
