"""Crop suggestions from ffplay's cropdetect output during ``play_segment``."""

import re
from decimal import Decimal

_CROP_RE = re.compile(r"\bt:(\d+(?:\.\d+)?)\b.*\b(crop=[\d:]+)\s*$")
_SIZE_RE = re.compile(r"Video: .*?\b(\d{2,5})x(\d{2,5})\b")

STABLE_US = 2_000_000


class CropSuggester:
    """Suggests a ``video_filters`` line once a crop has been stable for 2s."""

    def __init__(self, width: int | None = None, height: int | None = None):
        self.width = width
        self.height = height
        self._crop: str | None = None
        self._since_us = 0
        self._last: str | None = None

    def feed(self, line: str) -> str | None:
        """Consume one stderr line; return a new suggestion, if any."""
        if self.width is None:
            size = _SIZE_RE.search(line)
            if size:
                self.width, self.height = int(size.group(1)), int(size.group(2))
                return None

        m = _CROP_RE.search(line)
        if m is None:
            return None
        t_us = int(Decimal(m.group(1)) * 1_000_000)
        crop = m.group(2)

        if crop != self._crop:
            self._crop = crop
            self._since_us = t_us
            return None

        stable_us = t_us - self._since_us
        if stable_us <= STABLE_US:
            return None

        chain = crop
        if self.width and self.height:
            chain += f", pad={self.width}:{self.height}:(ow-iw)/2:(oh-ih)/2"
        suggestion = f'video_filters "{chain}"'
        if suggestion == self._last:
            return None
        self._last = suggestion
        return f"{suggestion}  # measured good for {stable_us // 1_000_000} second(s)"
