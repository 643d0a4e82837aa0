"""Per-scanner debounce of repeated QR reads."""

from __future__ import annotations

from typing import Dict, Optional

from ..config import DEFAULT_DUPLICATE_WINDOW_MS
from ..utils.time import Clock, now_ms


class DuplicateScanGuard:
    """Remember recently scanned payloads for ``window_ms`` milliseconds.

    Camera scanners fire several reads of one code in quick succession; only
    the first read inside the window goes through.
    """

    def __init__(self, window_ms: int = DEFAULT_DUPLICATE_WINDOW_MS, *, clock: Optional[Clock] = None) -> None:
        if window_ms < 0:
            raise ValueError("window_ms must not be negative")
        self.window_ms = window_ms
        self._clock = clock or now_ms
        self._seen: Dict[str, int] = {}

    def seen(self, key: str) -> bool:
        """Return True if ``key`` was recorded inside the window, else record it."""
        now = self._clock()
        self._gc(now)
        if key in self._seen:
            return True
        self._seen[key] = now + self.window_ms
        return False

    def forget(self, key: str) -> None:
        """Drop ``key`` so the next read of it goes through."""
        self._seen.pop(key, None)

    def clear(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)

    def _gc(self, now: int) -> None:
        expired = [k for k, v in self._seen.items() if v <= now]
        for k in expired:
            self._seen.pop(k, None)
