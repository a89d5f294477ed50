"""ffmpeg/sox/ffplay subprocess helpers."""

import logging
import shutil
import subprocess
import tempfile
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable

from tapeforge.config import EncoderConfig
from tapeforge.errors import ExternalProcessError, ToolNotFoundError
from tapeforge.models import FrameMeasurement, TimeRange
from tapeforge.progress import ProgressMonitor, parse_lines, sox_events, start_reader
from tapeforge.timecode import format_ms, ms_to_fractional_seconds

log = logging.getLogger(__name__)


def check_tools(*names: str) -> None:
    """Raise ToolNotFoundError if any of ``names`` is not on PATH."""
    for cmd in names or ("ffmpeg", "sox"):
        if shutil.which(cmd) is None:
            raise ToolNotFoundError(f"{cmd} not found on PATH")


def _nice(niceness: int | None) -> list[str]:
    return ["nice", "-n", f"+{niceness}"] if niceness else []


def _ffmpeg(niceness: int | None, loglevel: str = "error") -> list[str]:
    return [*_nice(niceness), "ffmpeg", "-hide_banner", "-nostdin", "-loglevel", loglevel]


def _seek(seek_ms: int | None) -> list[str]:
    return ["-ss", format_ms(seek_ms)] if seek_ms else []


def _read_tail(f) -> str:
    f.seek(0)
    return f.read().decode(errors="replace")[-2000:]


def read_metadata(path: Path, niceness: int | None = None) -> str:
    """Return the ffmetadata of ``path`` plus a DATE_DIGITIZED line from its mtime."""
    cmd = [*_ffmpeg(niceness), "-i", f"file:{path}", "-f", "ffmetadata", "-"]
    log.debug("running %s", cmd)
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise ExternalProcessError("reading metadata", result.returncode, result.stderr)
    mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    return result.stdout.rstrip("\n") + f"\nDATE_DIGITIZED={mtime:%Y-%m-%d %H:%M:%S}.000\n"


def audio_duration_ms(path: Path) -> int:
    """Duration of an audio file according to ``sox --info -D``."""
    result = subprocess.run(
        ["sox", "--info", "-D", str(path)], capture_output=True, text=True
    )
    if result.returncode != 0:
        raise ExternalProcessError("measuring audio", result.returncode, result.stderr)
    try:
        return int(Decimal(result.stdout.strip()) * 1000)
    except InvalidOperation:
        raise ExternalProcessError("measuring audio", 0, f"unexpected output {result.stdout!r}")


def sample_noise_profile(
    original: Path, time_range: TimeRange, niceness: int | None = None
) -> bytes:
    """Build a sox noise profile from a silent part of ``original``."""
    extract = [
        *_ffmpeg(niceness),
        "-ss", format_ms(time_range.start_ms),
        "-i", f"file:{original}",
        "-t", ms_to_fractional_seconds(time_range.duration_ms),
        "-vn", "-c:a", "pcm_s16le", "-f", "wav", "-",
    ]
    profile = ["sox", "-t", "wav", "-", "-n", "noiseprof"]
    log.debug("running %s | %s", extract, profile)
    with tempfile.TemporaryFile() as err:
        p1 = subprocess.Popen(extract, stdout=subprocess.PIPE, stderr=err)
        p2 = subprocess.Popen(profile, stdin=p1.stdout, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
        p1.stdout.close()
        out, _ = p2.communicate()
        rc = p1.wait()
        if rc != 0:
            raise ExternalProcessError("sampling noise profile", rc, _read_tail(err))
    if p2.returncode != 0:
        raise ExternalProcessError("sampling noise profile", p2.returncode)
    return out


def frame_rate_cmd(
    original: Path, seek_ms: int | None, video_graph: str, video_out: str = "video",
    niceness: int | None = None,
) -> list[str]:
    """Dry-run encode of the video graph that reports frames and output time."""
    return [
        *_ffmpeg(niceness),
        *_seek(seek_ms),
        "-i", f"file:{original}",
        "-filter_complex", video_graph,
        "-map", f"[{video_out}]",
        "-vcodec", "rawvideo", "-an",
        "-f", "null", "/dev/null",
        "-progress", "pipe:1",
    ]


def measure_frame_rate(cmd: list[str], monitor: ProgressMonitor) -> FrameMeasurement:
    """Run a dry-run encode, feeding its progress to ``monitor``."""
    log.debug("running %s", cmd)
    frames = 0
    out_time_us = 0
    with tempfile.TemporaryFile() as err:
        proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=err, text=True)
        monitor.start()
        for key, value in parse_lines(proc.stdout):
            if key == "frame":
                frames = int(value)
            elif key == "out_time_ms" and value.isdigit():
                out_time_us = int(value)
            monitor.feed(key, value)
        rc = proc.wait()
        if rc != 0:
            raise ExternalProcessError("calculating framerate", rc, _read_tail(err))
    if not frames or not out_time_us:
        raise ExternalProcessError("calculating framerate", rc, "no frames were produced")
    return FrameMeasurement(frames=frames, out_time_us=out_time_us)


def audio_extract_cmd(
    original: Path, seek_ms: int | None, audio_graph: str, audio_out: str,
    niceness: int | None = None,
) -> list[str]:
    """Cut, join and delay a segment's audio, writing WAV to stdout."""
    return [
        *_ffmpeg(niceness),
        *_seek(seek_ms),
        "-i", f"file:{original}",
        "-filter_complex", audio_graph,
        "-map", f"[{audio_out}]",
        "-vn", "-f", "wav", "-",
    ]


def sox_cmd(audio_file: Path, effects: list[str], niceness: int | None = None) -> list[str]:
    """Read WAV on stdin, apply ``effects`` and write ``audio_file``."""
    return [
        *_nice(niceness),
        "sox", "--temp", str(audio_file.parent),
        "-S", "-t", "wav", "-", str(audio_file),
        *effects,
    ]


def build_audio(extract: list[str], process: list[str], monitor: ProgressMonitor) -> None:
    """Pipe ffmpeg's audio into sox, reporting sox's progress."""
    log.debug("running %s | %s", extract, process)
    with tempfile.TemporaryFile() as err:
        p1 = subprocess.Popen(extract, stdout=subprocess.PIPE, stderr=err)
        p2 = subprocess.Popen(process, stdin=p1.stdout, stderr=subprocess.PIPE, text=True)
        p1.stdout.close()
        reader = start_reader(p2.stderr, monitor, sox_events)
        rc_sox = p2.wait()
        rc_ffmpeg = p1.wait()
        reader.join()
        if rc_ffmpeg != 0:
            raise ExternalProcessError("creating audio", rc_ffmpeg, _read_tail(err))
    if rc_sox != 0:
        raise ExternalProcessError("creating audio", rc_sox, "sox failed")


def video_encode_cmd(
    original: Path,
    seek_ms: int | None,
    audio_file: Path,
    metadata_file: Path,
    video_graph: str,
    output: Path,
    encoder: EncoderConfig,
    frame_rate: str | None = None,
    video_out: str = "video",
    niceness: int | None = None,
) -> list[str]:
    """Final encode: filtered video, prebuilt audio, metadata and chapters."""
    encoded = datetime.now(timezone.utc)
    return [
        *_ffmpeg(niceness),
        "-progress", "pipe:1",
        *_seek(seek_ms),
        "-i", f"file:{original}",
        "-i", f"file:{audio_file}",
        "-i", f"file:{metadata_file}",
        "-filter_complex", video_graph,
        "-c:v", encoder.video_codec, *encoder.video_options,
        "-c:a", encoder.audio_codec, *encoder.audio_options,
        "-f", encoder.muxer, *encoder.muxer_options,
        "-map", "1:0",
        "-map", f"[{video_out}]",
        "-map_metadata", "2",
        "-map_chapters", "2",
        "-metadata", f"DATE_ENCODED={encoded:%Y-%m-%d %H:%M:%S}.000",
        *(["-r", frame_rate] if frame_rate else []),
        f"file:{output}",
    ]


def run_with_progress(cmd: list[str], monitor: ProgressMonitor, stage: str) -> None:
    """Run an ffmpeg command that writes ``-progress`` events to stdout."""
    log.debug("running %s", cmd)
    with tempfile.TemporaryFile() as err:
        proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=err, text=True)
        reader = start_reader(proc.stdout, monitor)
        rc = proc.wait()
        reader.join()
        if rc != 0:
            raise ExternalProcessError(stage, rc, _read_tail(err))


def preview_cmd(original: Path, seek_ms: int | None, video_filters: str) -> list[str]:
    """ffplay the original from ``seek_ms`` with cropdetect after the filters."""
    vf = ", ".join(f for f in (video_filters, "cropdetect=24:2:1500") if f)
    return ["ffplay", *_seek(seek_ms), "-i", f"file:{original}", "-vf", vf]


def run_preview(cmd: list[str], on_line: Callable[[str], None]) -> None:
    """Run ffplay, passing each stderr line to ``on_line``."""
    log.debug("running %s", cmd)
    proc = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, text=True)
    for line in proc.stderr:
        on_line(line)
    rc = proc.wait()
    if rc != 0:
        raise ExternalProcessError("playing segment", rc)
