"""Shared test fixtures."""

from pathlib import Path

import pytest

from tapeforge.config import TranscodeConfig


class RecordingDisplay:
    """Collects status lines instead of drawing them."""

    def __init__(self):
        self.lines: list[str] = []
        self.cleared = 0

    def update(self, text: str) -> None:
        self.lines.append(text)

    def clear(self) -> None:
        self.cleared += 1


@pytest.fixture
def display() -> RecordingDisplay:
    return RecordingDisplay()


@pytest.fixture
def config() -> TranscodeConfig:
    return TranscodeConfig(audio_sample_rate=32000, niceness=None)


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    (tmp_path / "tape.mkv").write_bytes(b"fake recording")
    return tmp_path
