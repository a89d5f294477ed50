"""Audio/video duration check run before a segment's video is encoded."""

from tapeforge.errors import SyncError
from tapeforge.timecode import ms_to_fractional_seconds

# Gross-misconfiguration guard. Audio and video are encoded in separate passes,
# so small offsets are normal.
SYNC_TOLERANCE_MS = 1_000_000


def check_audio_sync(
    target_ms: int,
    audio_ms: int,
    audio_name: str = "audio file",
    tolerance_ms: int = SYNC_TOLERANCE_MS,
) -> int:
    """Return the absolute audio offset, or raise SyncError beyond tolerance."""
    if audio_ms > target_ms:
        offset_ms = audio_ms - target_ms
        direction = "long"
        suggestion = (
            "if you really want your audio to continue past the end of your "
            "video, add some periods of black video"
        )
    else:
        offset_ms = target_ms - audio_ms
        direction = "short"
        suggestion = (
            "if you really want silence at the end of your video, add silence "
            "to the end of the audio file"
        )

    if offset_ms > tolerance_ms:
        raise SyncError(
            f"{audio_name} is {ms_to_fractional_seconds(offset_ms)} seconds too {direction}\n"
            "Please fix the problem and try again\n"
            "  * to rebuild the audio automatically, delete the .wav file and re-run.\n"
            f"  * {suggestion}",
            direction=f"too {direction}",
            offset_ms=offset_ms,
        )
    return offset_ms
