from __future__ import annotations
import logging
import math
import random
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Literal, Optional

from ..core.timeutil import now_utc
from ..domain.errors import SourceUnavailableError, TransientIOError
from ..domain.records import format_record

logger = logging.getLogger(__name__)

PatternType = Literal["manual", "sine", "step", "random"]


@dataclass
class PatternConfig:
    type: PatternType = "manual"
    species: str = "O3"
    serial: str = "SIM-0001"
    baseline_ppb: float = 40.0
    amplitude_ppb: float = 15.0
    period_s: float = 600.0
    noise_ppb: float = 2.0
    temperature_c: int = 20
    step_low_ppb: float = 20.0
    step_high_ppb: float = 80.0
    step_period_s: float = 120.0


class SimulatedByteSource:
    """
    Stand-in for the sensor board: emits one well-formed frame every
    ``frame_interval_s`` and records commands written back to it.
    """

    def __init__(
        self,
        frame_interval_s: float = 1.0,
        delimiter: int = 33,
        chunk_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if frame_interval_s <= 0:
            raise ValueError(f"frame_interval_s must be positive, got {frame_interval_s}")
        self._lock = Lock()
        self._interval = frame_interval_s
        self._delimiter = bytes([delimiter])
        self._chunk_size = chunk_size
        self._clock = clock

        self._open = False
        self._enabled = True
        self._fail_reads = False
        self._pattern = PatternConfig()
        self._manual_ppb: Optional[float] = self._pattern.baseline_ppb
        self._out = bytearray()
        self._t0 = 0.0
        self._next_emit = 0.0
        self._commands: list[str] = []

    # --- ByteSource ---
    def open(self) -> None:
        with self._lock:
            if not self._enabled:
                raise SourceUnavailableError("Simulated board is powered off")
            self._open = True
            self._t0 = self._clock()
            self._next_emit = self._t0
            self._out.clear()
        logger.info("Simulated source open (interval=%.2fs)", self._interval)

    def close(self) -> None:
        with self._lock:
            self._open = False
            self._out.clear()

    def bytes_available(self) -> int:
        with self._lock:
            self._check_readable()
            self._generate()
            if self._chunk_size:
                return min(len(self._out), self._chunk_size)
            return len(self._out)

    def read_into(self, buffer: bytearray) -> int:
        with self._lock:
            self._check_readable()
            n = min(len(buffer), len(self._out))
            buffer[:n] = self._out[:n]
            del self._out[:n]
            return n

    def write(self, data: bytes) -> int:
        command = data.decode("ascii", errors="replace")
        with self._lock:
            self._commands.append(command)
            if command == "shutdown":
                # The board powers down; it stops producing until re-enabled
                self._enabled = False
                self._open = False
                self._out.clear()
        logger.info("Simulated source received command %r", command)
        return len(data)

    # --- simulation controls ---
    def enable(self) -> None:
        with self._lock:
            self._enabled = True

    def disable(self) -> None:
        with self._lock:
            self._enabled = False

    def fail_reads(self, fail: bool = True) -> None:
        with self._lock:
            self._fail_reads = fail

    def set_manual(self, ppb: float, species: Optional[str] = None, temperature_c: Optional[int] = None) -> None:
        with self._lock:
            self._pattern.type = "manual"
            self._manual_ppb = float(ppb)
            if species is not None:
                self._pattern.species = species
            if temperature_c is not None:
                self._pattern.temperature_c = int(temperature_c)

    def set_pattern(self, cfg: PatternConfig) -> None:
        with self._lock:
            self._pattern = cfg
            if cfg.type != "manual":
                self._manual_ppb = None

    def inject(self, data: bytes) -> None:
        """Queue raw bytes verbatim, e.g. to exercise malformed frames."""
        with self._lock:
            self._out.extend(data)

    @property
    def commands(self) -> list[str]:
        with self._lock:
            return list(self._commands)

    def status(self) -> dict:
        with self._lock:
            return {
                "open": self._open,
                "enabled": self._enabled,
                "fail_reads": self._fail_reads,
                "manual_ppb": self._manual_ppb,
                "pending_bytes": len(self._out),
                "pattern": dict(self._pattern.__dict__),
                "commands": list(self._commands),
            }

    # --- internals (lock held) ---
    def _check_readable(self) -> None:
        if not self._open:
            raise TransientIOError("Simulated source is not open")
        if self._fail_reads:
            raise TransientIOError("Simulated read failure")

    def _ppb_value(self, t: float) -> float:
        p = self._pattern
        if p.type == "manual":
            return float(self._manual_ppb if self._manual_ppb is not None else p.baseline_ppb)

        if p.type == "sine":
            return p.baseline_ppb + p.amplitude_ppb * math.sin(2 * math.pi * t / max(p.period_s, 1.0))

        if p.type == "step":
            phase = (t % max(p.step_period_s, 1.0)) / max(p.step_period_s, 1.0)
            return p.step_high_ppb if phase >= 0.5 else p.step_low_ppb

        if p.type == "random":
            return p.baseline_ppb + random.uniform(-p.amplitude_ppb, p.amplitude_ppb)

        return p.baseline_ppb

    def _generate(self) -> None:
        now = self._clock()
        while now >= self._next_emit:
            p = self._pattern
            ppb = self._ppb_value(self._next_emit - self._t0)
            if p.type != "manual" and p.noise_ppb > 0:
                ppb += random.uniform(-p.noise_ppb, p.noise_ppb)
            record = format_record(
                p.species,
                max(0, int(round(ppb))),
                p.temperature_c,
                now_utc().strftime("%Y-%m-%dT%H:%M:%S"),
                p.serial,
            )
            self._out.extend(record.encode("ascii") + self._delimiter)
            self._next_emit += self._interval
