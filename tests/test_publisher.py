"""Broker session handling: connection states, offline buffer, results."""

from __future__ import annotations

import json
from typing import Optional

import pytest

from aqbridge.domain.errors import PublishFailure
from aqbridge.domain.message import build_document
from aqbridge.domain.models import Coordinate
from aqbridge.services.publisher import ConnectionState

from conftest import FakeTransport, make_publisher


class ResultLog:
    def __init__(self) -> None:
        self.results: list[tuple[str, Optional[BaseException]]] = []

    def __call__(self, topic: str, error: Optional[BaseException]) -> None:
        self.results.append((topic, error))

    @property
    def failures(self) -> list[BaseException]:
        return [e for _, e in self.results if e is not None]

    @property
    def successes(self) -> int:
        return sum(1 for _, e in self.results if e is None)


def _doc(value: float):
    return build_document(value, Coordinate(59.3, 18.0), "2024-01-01T00:00:00", "SN123")


def _values(transport: FakeTransport) -> list[float]:
    return [p["FeatureOfInterest"]["result"]["Value"] for p in transport.payloads()]


def test_start_connects_and_subscribes() -> None:
    transport = FakeTransport()
    states: list[ConnectionState] = []
    publisher = make_publisher(transport, on_state_change=states.append)

    publisher.start()

    assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert publisher.state is ConnectionState.CONNECTED
    assert publisher.buffer_enabled
    assert transport.subscriptions == [("test", 0)]
    options = transport.connect_calls[0]
    assert options.client_id == "AirPollutionPi"
    assert options.clean_session is False
    assert options.automatic_reconnect is True
    assert options.server_uri == "tcp://broker.test:1883"


def test_start_twice_connects_once() -> None:
    transport = FakeTransport()
    publisher = make_publisher(transport)

    publisher.start()
    publisher.start()

    assert len(transport.connect_calls) == 1


def test_publish_while_connected_goes_straight_out() -> None:
    transport = FakeTransport()
    log = ResultLog()
    publisher = make_publisher(transport, on_result=log)
    publisher.start()

    publisher.publish(_doc(1.5), "test")

    topic, payload, qos = transport.published[0]
    assert topic == "test"
    assert qos == 0
    assert json.loads(payload)["FeatureOfInterest"]["result"]["Value"] == 1.5
    assert log.results == [("test", None)]


def test_publish_before_first_connect_fails() -> None:
    transport = FakeTransport(auto_connect=False)
    log = ResultLog()
    publisher = make_publisher(transport, on_result=log)
    publisher.start()

    publisher.publish(_doc(1.0), "test")

    assert publisher.state is ConnectionState.CONNECTING
    assert not publisher.buffer_enabled
    assert publisher.buffered == 0
    assert transport.published == []
    assert len(log.failures) == 1
    assert isinstance(log.failures[0], PublishFailure)


def test_publish_without_start_fails() -> None:
    log = ResultLog()
    publisher = make_publisher(FakeTransport(), on_result=log)

    publisher.publish(_doc(1.0), "test")

    assert isinstance(log.failures[0], PublishFailure)


def test_connection_loss_buffers_and_reconnect_flushes_in_order() -> None:
    transport = FakeTransport()
    states: list[ConnectionState] = []
    publisher = make_publisher(transport, on_state_change=states.append)
    publisher.start()

    transport.drop()
    for value in (1.0, 2.0, 3.0):
        publisher.publish(_doc(value), "test")

    assert publisher.state is ConnectionState.CONNECTING
    assert publisher.buffered == 3
    assert transport.published == []

    transport.complete_connect(reconnect=True)

    assert _values(transport) == [1.0, 2.0, 3.0]
    assert publisher.buffered == 0
    assert transport.subscriptions == [("test", 0), ("test", 0)]
    assert states == [
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.CONNECTION_LOST,
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
    ]


def test_full_buffer_rejects_newest_message() -> None:
    transport = FakeTransport()
    log = ResultLog()
    publisher = make_publisher(transport, offline_buffer_size=3, on_result=log)
    publisher.start()
    transport.drop()

    for value in (1.0, 2.0, 3.0, 4.0):
        publisher.publish(_doc(value), "test")

    assert publisher.buffered == 3
    assert len(log.failures) == 1
    assert "buffer full" in str(log.failures[0])

    transport.complete_connect(reconnect=True)

    assert _values(transport) == [1.0, 2.0, 3.0]
    assert log.successes == 3


def test_transport_error_is_reported_not_raised() -> None:
    class BrokenTransport(FakeTransport):
        def publish(self, topic, payload, qos, on_result) -> None:
            raise OSError("socket closed")

    log = ResultLog()
    publisher = make_publisher(BrokenTransport(), on_result=log)
    publisher.start()

    publisher.publish(_doc(1.0), "test")

    assert len(log.failures) == 1
    assert isinstance(log.failures[0], PublishFailure)


def test_encoding_error_raises() -> None:
    publisher = make_publisher(FakeTransport())
    publisher.start()

    with pytest.raises(ValueError):
        publisher.publish(_doc(float("nan")), "test")


def test_stop_disconnects_and_drops_buffer() -> None:
    transport = FakeTransport()
    log = ResultLog()
    publisher = make_publisher(transport, on_result=log)
    publisher.start()
    transport.drop()
    publisher.publish(_doc(1.0), "test")

    publisher.stop()

    assert publisher.state is ConnectionState.DISCONNECTED
    assert publisher.buffered == 0
    assert transport.disconnects == 1
    assert len(log.failures) == 1

    # late callbacks from the transport are ignored
    transport.complete_connect(reconnect=True)
    assert publisher.state is ConnectionState.DISCONNECTED
    assert transport.published == []


def test_inbound_messages_are_only_logged(caplog) -> None:
    publisher = make_publisher(FakeTransport())
    publisher.start()

    with caplog.at_level("INFO", logger="aqbridge.services.publisher"):
        publisher.on_message_arrived("test", b"hello")

    assert "hello" in caplog.text
