from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable
from .models import BatchRecord, Reading

# None on success, the failure otherwise
ActionCallback = Callable[[Optional[BaseException]], None]


@runtime_checkable
class ByteSource(Protocol):
    """Non-blocking byte stream from the sensor board."""

    def open(self) -> None:
        ...

    def bytes_available(self) -> int:
        ...

    def read_into(self, buffer: bytearray) -> int:
        ...

    def write(self, data: bytes) -> int:
        ...

    def close(self) -> None:
        ...


@dataclass(frozen=True)
class ConnectOptions:
    host: str
    port: int = 1883
    client_id: str = "AirPollutionPi"
    keepalive_s: int = 60
    clean_session: bool = False
    automatic_reconnect: bool = True
    username: Optional[str] = None
    password: Optional[str] = None
    reconnect_min_delay_s: int = 1
    reconnect_max_delay_s: int = 120

    @property
    def server_uri(self) -> str:
        return f"tcp://{self.host}:{self.port}"


@runtime_checkable
class TransportCallback(Protocol):
    def on_connect_complete(self, reconnect: bool, server_uri: str) -> None:
        ...

    def on_connection_lost(self, cause: Optional[BaseException]) -> None:
        ...

    def on_delivery_complete(self, topic: str) -> None:
        ...

    def on_message_arrived(self, topic: str, payload: bytes) -> None:
        ...


@runtime_checkable
class BrokerTransport(Protocol):
    def set_callback(self, callback: TransportCallback) -> None:
        ...

    def connect(self, options: ConnectOptions, on_result: ActionCallback) -> None:
        ...

    def subscribe(self, topic: str, qos: int, on_result: ActionCallback) -> None:
        ...

    def publish(self, topic: str, payload: bytes, qos: int, on_result: ActionCallback) -> None:
        ...

    def disconnect(self) -> None:
        ...


@runtime_checkable
class PipelineListener(Protocol):
    def on_reading_decoded(self, species: str, value: float) -> None:
        ...

    def on_batch_published(self, mean_value: float) -> None:
        ...


@runtime_checkable
class Repository(Protocol):
    async def init(self) -> None:
        ...

    async def insert_reading(self, reading: Reading) -> None:
        ...

    async def insert_batch(self, batch: BatchRecord) -> None:
        ...

    async def query_readings(self, start_ts: str, end_ts: str, limit: int) -> list[Reading]:
        ...

    async def query_batches(self, start_ts: str, end_ts: str, limit: int) -> list[BatchRecord]:
        ...
