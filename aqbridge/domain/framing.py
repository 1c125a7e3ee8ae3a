from __future__ import annotations
import logging
from typing import Optional

from .errors import MalformedFrameError

logger = logging.getLogger(__name__)

DEFAULT_DELIMITER = 33  # '!'
DEFAULT_CAPACITY = 1024


class FrameDecoder:
    """
    Incremental splitter for a delimiter-terminated byte stream.

    Bytes are fed in chunks of any size. ``next_frame`` surfaces at most one
    completed frame per call; whatever follows the delimiter stays queued
    (``has_pending``) for the next call, so several frames arriving in one
    chunk come out over successive poll cycles.

    A frame that grows past ``capacity`` raises MalformedFrameError. The
    partial bytes are dropped and the input is skipped up to and including
    the next delimiter, after which decoding resumes normally.
    """

    def __init__(self, delimiter: int = DEFAULT_DELIMITER, capacity: int = DEFAULT_CAPACITY) -> None:
        if not 0 <= delimiter <= 255:
            raise ValueError(f"delimiter must be a byte value, got {delimiter}")
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._delimiter = delimiter
        self._capacity = capacity
        self._frame = bytearray()
        self._pending = bytearray()
        self._discarding = False

    @property
    def delimiter(self) -> int:
        return self._delimiter

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def has_pending(self) -> bool:
        """True while fed bytes are still waiting to be scanned."""
        return bool(self._pending)

    @property
    def partial_length(self) -> int:
        return len(self._frame)

    def feed(self, chunk: bytes) -> None:
        if chunk:
            self._pending.extend(chunk)

    def reset(self) -> None:
        self._frame.clear()
        self._pending.clear()
        self._discarding = False

    def next_frame(self) -> Optional[bytes]:
        if not self._pending:
            return None

        idx = self._pending.find(self._delimiter)
        if idx < 0:
            segment = bytes(self._pending)
            self._pending.clear()
            if not self._discarding:
                self._accumulate(segment, terminated=False)
            return None

        segment = bytes(self._pending[:idx])
        del self._pending[: idx + 1]

        if self._discarding:
            # Delimiter closes the oversized frame; back in sync
            self._discarding = False
            return None

        self._accumulate(segment, terminated=True)
        frame = bytes(self._frame)
        self._frame.clear()
        return frame

    def _accumulate(self, segment: bytes, terminated: bool) -> None:
        size = len(self._frame) + len(segment)
        if size > self._capacity:
            self._frame.clear()
            # an unterminated overflow keeps skipping until the next delimiter
            self._discarding = not terminated
            logger.warning("Frame overflow: %d bytes without delimiter (capacity=%d)", size, self._capacity)
            raise MalformedFrameError(
                f"frame exceeded {self._capacity} bytes before delimiter {self._delimiter}"
            )
        self._frame.extend(segment)
