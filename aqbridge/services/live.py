from __future__ import annotations
from collections import deque

from ..core.timeutil import now_utc
from ..domain.models import LiveState


class LiveStateListener:
    """Keeps the snapshot served by /api/live, fed by pipeline notifications."""

    def __init__(self, mode: str = "sim", history: int = 10) -> None:
        self.live = LiveState(mode=mode)
        self._recent: deque[float] = deque(maxlen=history)

    def on_reading_decoded(self, species: str, value: float) -> None:
        self._recent.append(value)
        self.live.last_species = species
        self.live.last_value = value
        self.live.last_reading_utc = now_utc()
        self.live.recent_values = list(self._recent)

    def on_batch_published(self, mean_value: float) -> None:
        self.live.last_mean = mean_value
        self.live.last_mean_utc = now_utc()
