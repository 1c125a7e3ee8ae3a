"""Shared fakes for the byte source and the broker transport."""

from __future__ import annotations

import json
from collections import deque
from typing import Iterable, Optional

import pytest

from aqbridge.domain.errors import SourceUnavailableError, TransientIOError
from aqbridge.domain.interfaces import ConnectOptions
from aqbridge.services.pipeline import PipelineConfig, StreamPipeline
from aqbridge.services.publisher import Publisher, PublisherConfig

FRAME = b"O3,40,20,2024-01-01T00:00:00,SN123!"


class FakeByteSource:
    """Serves queued chunks one per read; records writes and open/close calls."""

    def __init__(self, chunks: Iterable[bytes] = (), fail_open: bool = False) -> None:
        self.chunks: deque[bytes] = deque(chunks)
        self.fail_open = fail_open
        self.read_failures = 0
        self.is_open = False
        self.opened = 0
        self.closed = 0
        self.written: list[bytes] = []

    def push(self, *chunks: bytes) -> None:
        self.chunks.extend(chunks)

    def open(self) -> None:
        if self.fail_open:
            raise SourceUnavailableError("fake board unreachable")
        self.is_open = True
        self.opened += 1

    def close(self) -> None:
        self.is_open = False
        self.closed += 1

    def bytes_available(self) -> int:
        if self.read_failures:
            self.read_failures -= 1
            raise TransientIOError("fake read failure")
        return len(self.chunks[0]) if self.chunks else 0

    def read_into(self, buffer: bytearray) -> int:
        if not self.chunks:
            return 0
        chunk = self.chunks.popleft()
        n = min(len(buffer), len(chunk))
        buffer[:n] = chunk[:n]
        if n < len(chunk):
            self.chunks.appendleft(chunk[n:])
        return n

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        return len(data)


class FakeTransport:
    """In-memory broker transport; connects and acknowledges synchronously."""

    def __init__(self, auto_connect: bool = True, ack: bool = True) -> None:
        self.auto_connect = auto_connect
        self.ack = ack
        self.callback = None
        self.connect_calls: list[ConnectOptions] = []
        self.subscriptions: list[tuple[str, int]] = []
        self.published: list[tuple[str, bytes, int]] = []
        self.disconnects = 0
        self.options: Optional[ConnectOptions] = None

    def set_callback(self, callback) -> None:
        self.callback = callback

    def connect(self, options: ConnectOptions, on_result) -> None:
        self.connect_calls.append(options)
        self.options = options
        if self.auto_connect:
            on_result(None)
            self.callback.on_connect_complete(False, options.server_uri)

    def subscribe(self, topic: str, qos: int, on_result) -> None:
        self.subscriptions.append((topic, qos))
        on_result(None)

    def publish(self, topic: str, payload: bytes, qos: int, on_result) -> None:
        self.published.append((topic, payload, qos))
        if self.ack:
            on_result(None)
            self.callback.on_delivery_complete(topic)

    def disconnect(self) -> None:
        self.disconnects += 1

    # --- test controls ---
    def complete_connect(self, reconnect: bool = False) -> None:
        self.callback.on_connect_complete(reconnect, self.options.server_uri)

    def drop(self) -> None:
        self.callback.on_connection_lost(ConnectionError("link down"))

    def payloads(self) -> list[dict]:
        return [json.loads(payload) for _, payload, _ in self.published]


def make_publisher(transport: FakeTransport, offline_buffer_size: int = 100, **kwargs) -> Publisher:
    options = ConnectOptions(host="broker.test", client_id="AirPollutionPi")
    return Publisher(
        transport,
        PublisherConfig(options=options, offline_buffer_size=offline_buffer_size),
        **kwargs,
    )


def make_pipeline(
    source: FakeByteSource,
    transport: FakeTransport,
    batch_capacity: int = 10,
    repo=None,
) -> StreamPipeline:
    publisher = make_publisher(transport)
    publisher.start()
    return StreamPipeline(
        source,
        publisher,
        PipelineConfig(batch_capacity=batch_capacity, poll_interval_s=0.005),
        repo=repo,
    )


@pytest.fixture
def source() -> FakeByteSource:
    return FakeByteSource()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
