"""Progress monitoring for long-running ffmpeg/sox processes.

ffmpeg's ``-progress`` output is a stream of ``key=value`` lines; sox's ``-S``
output is converted into the same events by :func:`sox_events`. A
:class:`ProgressMonitor` turns those events into a single, constantly
rewritten status line with a percentage and an ETA.
"""

import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator, TextIO

from tapeforge.errors import FormatError
from tapeforge.timecode import format_ms, parse_time


def _pluralise(count: int, unit: str) -> str | None:
    if count == 0:
        return None
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def format_eta(seconds: int) -> str:
    """Render a duration as e.g. ``1 hour, 2 minutes and 3 seconds``."""
    hours, rest = divmod(max(int(seconds), 0), 3600)
    minutes, secs = divmod(rest, 60)
    parts = [
        p
        for p in (
            _pluralise(hours, "hour"),
            _pluralise(minutes, "minute"),
            _pluralise(secs, "second"),
        )
        if p
    ]
    if not parts:
        return "0 seconds"
    if len(parts) == 1:
        return parts[0]
    return ", ".join(parts[:-1]) + " and " + parts[-1]


class TerminalStatus:
    """A status line on stderr, overwritten in place with carriage returns."""

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream or sys.stderr
        self._width = 0

    def update(self, text: str) -> None:
        self.stream.write("\r" + " " * self._width + "\r" + text)
        self.stream.flush()
        self._width = len(text)

    def clear(self) -> None:
        self.stream.write("\r" + " " * self._width + "\r")
        self.stream.flush()
        self._width = 0


class CallbackStatus:
    """Forwards status lines to a callback; an empty string means cleared."""

    def __init__(self, callback: Callable[[str], None]):
        self.callback = callback

    def update(self, text: str) -> None:
        self.callback(text)

    def clear(self) -> None:
        self.callback("")


@dataclass
class ProgressState:
    total_ms: int
    current_ms: int
    start_wall_clock: float


class ProgressMonitor:
    """Consumes progress events and keeps a status line up to date.

    With an unknown total (``total_ms == 0``) only the output position is
    shown. ``ticks_per_ms`` converts ``out_time_ms`` values to milliseconds;
    ffmpeg reports that key in microseconds.
    """

    def __init__(
        self,
        label: str,
        total_ms: int = 0,
        ticks_per_ms: int = 1,
        display=None,
        clock: Callable[[], float] = time.time,
    ):
        self.label = label
        self.ticks_per_ms = ticks_per_ms
        self.display = display or TerminalStatus()
        self.clock = clock
        self.state = ProgressState(total_ms=total_ms or 0, current_ms=0, start_wall_clock=clock())
        self.eta_seconds: int | None = None
        self.finished = False
        self._position: str | None = None

    def start(self) -> None:
        self.display.update(f"{datetime.now():%c} {self.label}...")

    def feed(self, key: str, value: str) -> bool:
        """Handle one event. Returns False once the end marker arrives."""
        if key == "progress" and value == "end":
            self.display.clear()
            self.finished = True
            return False
        if key == "status" and value == "clear":
            self._position = None
            self.display.clear()
            return True

        if not self.state.total_ms:
            if key == "out_time":
                position = value[:-7] if len(value) > 7 else value
                if position != self._position:
                    self._position = position
                    self.display.update(f"{datetime.now():%c} {self.label} {position}")
        elif key == "out_time_ms":
            try:
                current_ms = int(value) // self.ticks_per_ms
            except ValueError:
                return True
            if current_ms <= 0:
                return True
            self.state.current_ms = current_ms
            self._report()
        return True

    def _report(self) -> None:
        total, current = self.state.total_ms, self.state.current_ms
        elapsed = self.clock() - self.state.start_wall_clock
        self.eta_seconds = max(int(elapsed * (total - current) / current), 0)
        percent = 100 * current // total
        finish = datetime.now() + timedelta(seconds=self.eta_seconds)
        self.display.update(
            f"{datetime.now():%c} {self.label} {percent}% "
            f"ETA: {finish:%X} (about {format_eta(self.eta_seconds)})"
        )

    def consume(self, events: Iterable[tuple[str, str]]) -> None:
        for key, value in events:
            if not self.feed(key, value):
                return


def iter_records(stream: TextIO, separators: str = "\n") -> Iterator[str]:
    """Split a text stream on any of ``separators``, skipping empty records.

    Reads one character at a time so records from a live pipe are seen as
    soon as their separator arrives.
    """
    record: list[str] = []
    while True:
        ch = stream.read(1)
        if not ch:
            break
        if ch in separators:
            if record:
                yield "".join(record)
                record = []
        else:
            record.append(ch)
    if record:
        yield "".join(record)


def parse_lines(stream: TextIO) -> Iterator[tuple[str, str]]:
    """ffmpeg ``-progress`` events; lines without ``=`` are ignored."""
    for line in stream:
        key, sep, value = line.strip().partition("=")
        if sep:
            yield key, value


def sox_events(stream: TextIO) -> Iterator[tuple[str, str]]:
    """Translate ``sox -S`` status chunks into progress events in milliseconds.

    sox reports a zero position before any audio arrives; that becomes a
    ``status=clear`` event.
    """
    for record in iter_records(stream, "\r\n"):
        parts = record.split()
        if len(parts) < 2 or not parts[0].startswith("In:"):
            continue
        try:
            ms = parse_time(parts[1])
        except FormatError:
            continue
        if ms == 0:
            yield "status", "clear"
            continue
        yield "out_time", format_ms(ms) + "000"
        yield "out_time_ms", str(ms)
    yield "progress", "end"


def start_reader(
    stream: TextIO,
    monitor: ProgressMonitor,
    events: Callable[[TextIO], Iterable[tuple[str, str]]] = parse_lines,
) -> threading.Thread:
    """Drain ``stream`` through ``monitor`` on a background thread."""
    monitor.start()

    def run() -> None:
        monitor.consume(events(stream))
        # keep draining so the writer never blocks on a full pipe
        for _ in stream:
            pass

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread
