"""Error taxonomy for TapeForge."""


class TapeForgeError(Exception):
    """Base error for the transcoding pipeline."""


class FormatError(TapeForgeError, ValueError):
    """Malformed time text, range, directive or segment filename."""


class ConfigError(TapeForgeError):
    """Missing or inconsistent configuration; the message says how to fix it."""


class ToolNotFoundError(ConfigError):
    """An external program (ffmpeg, sox, ffplay) is not on PATH."""


class SyncError(TapeForgeError):
    """Segment audio and video durations differ by more than the tolerance."""

    def __init__(self, message: str, direction: str, offset_ms: int):
        super().__init__(message)
        self.direction = direction
        self.offset_ms = offset_ms


class ExternalProcessError(TapeForgeError):
    """An external transform exited with a nonzero status."""

    def __init__(self, stage: str, returncode: int, stderr: str = ""):
        detail = f": {stderr.strip()[-500:]}" if stderr.strip() else ""
        super().__init__(f"{stage} failed (rc={returncode}){detail}")
        self.stage = stage
        self.returncode = returncode
        self.stderr = stderr
