from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import serial

from ..domain.errors import SourceUnavailableError, TransientIOError

logger = logging.getLogger(__name__)


@dataclass
class SerialConfig:
    port: str = "/dev/rfcomm0"      # Windows example: "COM3"; pyserial URLs work too
    baudrate: int = 9600
    bytesize: int = 8
    parity: str = "N"               # "N", "E", "O"
    stopbits: int = 1
    timeout_s: float = 0.0
    reconnect_backoff_s: float = 1.0
    max_reconnect_backoff_s: float = 10.0


class SerialByteSource:
    """
    Serial / RFCOMM byte source.
    Responsible for: open/reopen, non-blocking reads, command writes.
    """

    def __init__(self, cfg: SerialConfig):
        self.cfg = cfg
        self._port: Optional[serial.SerialBase] = None
        self._backoff = cfg.reconnect_backoff_s

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    def open(self) -> None:
        if self.is_open:
            return
        try:
            self._port = serial.serial_for_url(
                self.cfg.port,
                baudrate=self.cfg.baudrate,
                bytesize=self.cfg.bytesize,
                parity=self.cfg.parity,
                stopbits=self.cfg.stopbits,
                timeout=self.cfg.timeout_s,
            )
        except (serial.SerialException, ValueError) as e:
            self._port = None
            raise SourceUnavailableError(f"Unable to open serial port {self.cfg.port}: {e}") from e
        self._backoff = self.cfg.reconnect_backoff_s
        logger.info("Serial port open on %s (baud=%s)", self.cfg.port, self.cfg.baudrate)

    def close(self) -> None:
        port, self._port = self._port, None
        if port is None:
            return
        try:
            port.close()
        except serial.SerialException as e:
            logger.warning("Serial close failed on %s: %s", self.cfg.port, e)
        logger.info("Serial port closed on %s", self.cfg.port)

    def _ensure_open(self) -> serial.SerialBase:
        if self.is_open:
            return self._port
        # one reopen attempt per call with bounded backoff
        try:
            self.open()
        except SourceUnavailableError as e:
            logger.warning("Serial reopen failed: %s", e)
            time.sleep(self._backoff)
            self._backoff = min(self._backoff * 2, self.cfg.max_reconnect_backoff_s)
            raise TransientIOError(str(e)) from e
        return self._port

    def bytes_available(self) -> int:
        port = self._ensure_open()
        try:
            return port.in_waiting
        except (serial.SerialException, OSError) as e:
            # Mark closed so the next call reopens
            self.close()
            raise TransientIOError(f"Serial in_waiting failed: {e}") from e

    def read_into(self, buffer: bytearray) -> int:
        port = self._ensure_open()
        try:
            data = port.read(len(buffer))
        except (serial.SerialException, OSError) as e:
            self.close()
            raise TransientIOError(f"Serial read failed: {e}") from e
        buffer[: len(data)] = data
        return len(data)

    def write(self, data: bytes) -> int:
        port = self._ensure_open()
        try:
            written = port.write(data)
            port.flush()
        except (serial.SerialException, OSError) as e:
            self.close()
            raise TransientIOError(f"Serial write failed: {e}") from e
        return written if written is not None else len(data)
