"""Audio denoising: sox noise-profile reduction and pass-band notch chains."""

import enum
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from tapeforge.errors import ConfigError, FormatError
from tapeforge.models import TimeRange

DEFAULT_NOISE_REDUCTION = 0.21

CALIBRATION_HELP = """\
Please specify a default noise profile.

Pause a tape (so only background noise is playing), record a few seconds,
then run:

\ttapeforge profile <recording> 00:00:00-00:00:01

This will save information about the background noise."""


class NoiseMode(enum.Enum):
    UNRESOLVED = "unresolved"
    DISABLED = "disabled"
    PROFILE = "profile"


@dataclass(frozen=True)
class NoiseSettings:
    """Noise reduction state for a run.

    UNRESOLVED means neither ``reduce_noise`` nor ``no_reduce_noise`` was
    given; building audio in that state is a configuration error.
    """

    mode: NoiseMode = NoiseMode.UNRESOLVED
    profile: bytes | None = None
    amount: float = DEFAULT_NOISE_REDUCTION

    @classmethod
    def disabled(cls) -> "NoiseSettings":
        return cls(mode=NoiseMode.DISABLED)

    @classmethod
    def from_profile(cls, profile: bytes, amount: float = DEFAULT_NOISE_REDUCTION) -> "NoiseSettings":
        return cls(mode=NoiseMode.PROFILE, profile=profile, amount=amount)


def encode_profile(profile: bytes) -> str:
    """Collapse a sox noise profile onto one line for the config file."""
    return profile.decode("utf-8").rstrip("\n").replace("\n", "\t")


def decode_profile(text: str) -> bytes:
    return (text.replace("\t", "\n").rstrip("\n") + "\n").encode("utf-8")


def resolve_noise(
    amount: float,
    default_profile: str | None,
    sample: TimeRange | None = None,
    sampler: Callable[[TimeRange], bytes] | None = None,
) -> NoiseSettings:
    """Pick the profile for ``reduce_noise``.

    A ``sample`` range of the original overrides the configured default.
    """
    if sample is not None:
        if sampler is None:
            raise ConfigError("Cannot sample a noise profile before the original is set")
        return NoiseSettings.from_profile(sampler(sample), amount)
    if not default_profile:
        raise ConfigError(CALIBRATION_HELP)
    return NoiseSettings.from_profile(decode_profile(default_profile), amount)


@dataclass(frozen=True)
class Notch:
    """One sox ``equalizer`` band."""

    freq_hz: int
    width: str
    gain_db: int

    def args(self) -> list[str]:
        return ["equalizer", str(self.freq_hz), self.width, str(self.gain_db)]


def frequency_notches(low_hz: int, high_hz: int, sample_rate: int) -> list[Notch]:
    """Approximate a steep band-pass using only equalizer notches.

    Below ``low_hz``: -50dB every 10Hz. Above ``high_hz`` the roll-off widens
    and deepens in three bands up to the Nyquist frequency; when ``high_hz``
    is already in the top half of the spectrum a single band is used.
    """
    if low_hz < 0 or high_hz <= low_hz:
        raise FormatError(f"Invalid frequency range {low_hz}-{high_hz}Hz")
    nyquist = sample_rate // 2

    notches = [Notch(hz, "1h", -50) for hz in range(0, low_hz, 10)]
    if high_hz < sample_rate // 4:
        notches += [Notch(hz, "1h", -50) for hz in range(high_hz, high_hz + 501, 10)]
        notches += [Notch(hz, "5h", -90) for hz in range(high_hz, high_hz * 2 + 1, 50)]
        notches += [Notch(hz, "10h", -120) for hz in range(high_hz * 2, nyquist + 1, 100)]
    else:
        notches += [Notch(hz, "5h", -90) for hz in range(high_hz, nyquist + 1, 50)]
    return notches


def sox_effects(
    noise: NoiseSettings,
    profile_path: Path | None,
    frequency_range: tuple[int, int] | None,
    sample_rate: int,
    audio_filters: str = "",
) -> list[str]:
    """Build the sox effect arguments applied to a segment's audio."""
    if noise.mode is NoiseMode.UNRESOLVED:
        raise ConfigError(
            "Please add a noise profile (add 'reduce_noise <amount>' or "
            "'no_reduce_noise' to the segment script)"
        )

    effects: list[str] = []
    if noise.mode is NoiseMode.PROFILE:
        if profile_path is None:
            raise ConfigError("Noise profile file was not written")
        effects += ["noisered", str(profile_path), f"{noise.amount:g}"]
    if frequency_range is not None:
        for notch in frequency_notches(*frequency_range, sample_rate):
            effects += notch.args()
    effects += shlex.split(audio_filters)
    return effects
