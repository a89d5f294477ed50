"""User configuration — capture capabilities, encoder settings and defaults."""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

from tapeforge.errors import ConfigError
from tapeforge.noise import DEFAULT_NOISE_REDUCTION

DEFAULT_CONFIG_PATH = Path("~/.config/tapeforge/config.json")

# remove overscan
DEFAULT_VIDEO_FILTERS = "crop=(iw-10):(ih-14):3:0, pad=iw+10:ih+14:(ow-iw)/2:(oh-ih)/2"

# sox effect: make all files about as loud as each other
DEFAULT_AUDIO_FILTERS = "norm -1"


@dataclass
class EncoderConfig:
    """Codecs and options for the final segment encode."""

    video_codec: str = "libx264"
    audio_codec: str = "libmp3lame"
    muxer: str = "matroska"
    video_options: list[str] = field(
        default_factory=lambda: ["-flags", "+ilme+ildct", "-preset", "veryslow", "-crf", "22", "-pix_fmt", "yuv420p"]
    )
    # ffmpeg desyncs audio and video with -q:a, so use a bitrate
    audio_options: list[str] = field(default_factory=lambda: ["-b:a", "256k"])
    muxer_options: list[str] = field(default_factory=list)


@dataclass
class TranscodeConfig:
    """Settings shared by every transcode run."""

    audio_sample_rate: int | None = None
    audio_channels: int = 2
    audio_delay: float = 0.0
    noise_reduction: float = DEFAULT_NOISE_REDUCTION
    noise_profile: str | None = None
    video_filters: str = DEFAULT_VIDEO_FILTERS
    audio_filters: str = DEFAULT_AUDIO_FILTERS
    audio_frequency_range: tuple[int, int] | None = None
    niceness: int | None = 20
    encoder: EncoderConfig = field(default_factory=EncoderConfig)

    def require_sample_rate(self) -> int:
        if not self.audio_sample_rate:
            raise ConfigError(
                "Please specify 'audio_sample_rate' in your configuration "
                "(the rate your capture device records audio at, e.g. 32000)"
            )
        return self.audio_sample_rate


def config_path(path: str | Path | None = None) -> Path:
    if path is None:
        path = os.environ.get("TAPEFORGE_CONFIG") or DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _check_keys(cls, data: dict, where: str) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown {where} setting(s): {', '.join(unknown)}")


def load_config(path: str | Path | None = None) -> TranscodeConfig:
    """Load configuration from JSON; a missing file gives the defaults."""
    path = config_path(path)
    if not path.exists():
        return TranscodeConfig()
    data = json.loads(path.read_text())

    _check_keys(TranscodeConfig, data, "configuration")
    encoder_data = data.pop("encoder", {})
    _check_keys(EncoderConfig, encoder_data, "encoder")

    freq = data.pop("audio_frequency_range", None)
    if freq is not None:
        if len(freq) != 2:
            raise ConfigError("'audio_frequency_range' must be [low_hz, high_hz]")
        freq = (int(freq[0]), int(freq[1]))

    return TranscodeConfig(
        **data,
        audio_frequency_range=freq,
        encoder=EncoderConfig(**encoder_data),
    )


def save_config(config: TranscodeConfig, path: str | Path | None = None) -> Path:
    path = config_path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(asdict(config), indent=2) + "\n")
    return path
