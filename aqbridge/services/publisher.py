from __future__ import annotations
import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..domain.errors import BridgeError, PublishFailure
from ..domain.interfaces import BrokerTransport, ConnectOptions
from ..domain.message import encode_document
from ..domain.models import MeasurementDocument

logger = logging.getLogger(__name__)

# (topic, error) -- error is None once the transport confirms delivery
PublishResultCallback = Callable[[str, Optional[BaseException]], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CONNECTION_LOST = "CONNECTION_LOST"


@dataclass(frozen=True)
class PublisherConfig:
    options: ConnectOptions
    subscribe_topic: str = "test"
    qos: int = 0
    offline_buffer_size: int = 100


class Publisher:
    """
    Delivers measurement documents to the broker.

    The offline buffer is switched on by the first successful connect and
    stays on. While disconnected, messages queue up to ``offline_buffer_size``;
    once full, new messages are rejected rather than evicting old ones.
    Queued messages go out in FIFO order ahead of anything newer after each
    reconnect. Every outcome is reported through ``on_result``; nothing is
    retried here beyond the transport's own reconnect.
    """

    def __init__(
        self,
        transport: BrokerTransport,
        cfg: PublisherConfig,
        on_result: Optional[PublishResultCallback] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
    ) -> None:
        self._transport = transport
        self._cfg = cfg
        self._on_result = on_result
        self._on_state_change = on_state_change

        self._lock = threading.Lock()
        # serializes hand-off to the transport so buffered messages keep their order
        self._send_lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._buffer_enabled = False
        self._buffer: deque[tuple[str, bytes]] = deque()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def buffer_enabled(self) -> bool:
        return self._buffer_enabled

    @property
    def buffered(self) -> int:
        with self._lock:
            return len(self._buffer)

    def set_result_callback(self, on_result: Optional[PublishResultCallback]) -> None:
        self._on_result = on_result

    def set_state_callback(self, on_state_change: Optional[Callable[[ConnectionState], None]]) -> None:
        self._on_state_change = on_state_change

    # --- lifecycle ---
    def start(self) -> None:
        with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                return
        self._set_state(ConnectionState.CONNECTING)
        self._transport.set_callback(self)
        self._transport.connect(self._cfg.options, self._on_connect_result)

    def stop(self) -> None:
        with self._lock:
            if self._state is ConnectionState.DISCONNECTED:
                return
            dropped = list(self._buffer)
            self._buffer.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        self._transport.disconnect()
        for topic, _ in dropped:
            self._report(topic, PublishFailure("publisher stopped with message still buffered"))
        if dropped:
            logger.warning("Publisher stopped; dropped %d buffered message(s)", len(dropped))

    # --- publishing ---
    def publish(self, document: MeasurementDocument, topic: str) -> None:
        """Encode and hand off ``document``. Only encoding errors raise."""
        payload = encode_document(document)
        self.publish_bytes(topic, payload)

    def publish_bytes(self, topic: str, payload: bytes) -> None:
        error: Optional[BaseException] = None
        with self._send_lock:
            with self._lock:
                connected = self._state is ConnectionState.CONNECTED
                if connected and not self._buffer:
                    send_now = True
                elif self._buffer_enabled and len(self._buffer) < self._cfg.offline_buffer_size:
                    self._buffer.append((topic, payload))
                    send_now = False
                    if not connected:
                        logger.info("Broker offline; buffered message for %s (%d pending)", topic, len(self._buffer))
                else:
                    send_now = False
                    if self._buffer_enabled:
                        error = PublishFailure(f"offline buffer full ({self._cfg.offline_buffer_size} messages)")
                    else:
                        error = PublishFailure(f"not connected to {self._cfg.options.server_uri}")
            if send_now:
                self._send(topic, payload)
            elif connected:
                self._drain_locked()
        if error is not None:
            logger.warning("Publish to %s rejected: %s", topic, error)
            self._report(topic, error)

    def _send(self, topic: str, payload: bytes) -> None:
        try:
            self._transport.publish(topic, payload, self._cfg.qos, lambda err: self._report(topic, err))
        except (BridgeError, OSError) as e:
            self._report(topic, PublishFailure(f"publish to {topic} failed: {e}"))

    def _drain_locked(self) -> None:
        # caller holds _send_lock
        sent = 0
        while True:
            with self._lock:
                if self._state is not ConnectionState.CONNECTED or not self._buffer:
                    break
                topic, payload = self._buffer.popleft()
            self._send(topic, payload)
            sent += 1
        if sent:
            logger.info("Flushed %d buffered message(s) to broker", sent)

    def _report(self, topic: str, error: Optional[BaseException]) -> None:
        if error is not None:
            logger.warning("Publish to %s failed: %s", topic, error)
        if self._on_result:
            self._on_result(topic, error)

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            if self._state is state:
                return
            previous, self._state = self._state, state
        logger.info("Broker connection %s -> %s", previous.value, state.value)
        if self._on_state_change:
            self._on_state_change(state)

    # --- transport callbacks (may run on the transport's thread) ---
    def _on_connect_result(self, error: Optional[BaseException]) -> None:
        if error is not None:
            logger.warning("Broker connect to %s failed: %s", self._cfg.options.server_uri, error)

    def on_connect_complete(self, reconnect: bool, server_uri: str) -> None:
        with self._lock:
            if self._state is ConnectionState.DISCONNECTED:
                return
            self._buffer_enabled = True
        logger.info("Connected to %s (reconnect=%s)", server_uri, reconnect)
        self._set_state(ConnectionState.CONNECTED)
        self._subscribe()
        with self._send_lock:
            self._drain_locked()

    def on_connection_lost(self, cause: Optional[BaseException]) -> None:
        with self._lock:
            if self._state is ConnectionState.DISCONNECTED:
                return
        logger.warning("Lost connection to %s: %s", self._cfg.options.server_uri, cause)
        self._set_state(ConnectionState.CONNECTION_LOST)
        if self._cfg.options.automatic_reconnect:
            self._set_state(ConnectionState.CONNECTING)

    def on_delivery_complete(self, topic: str) -> None:
        logger.debug("Delivered message to %s", topic)

    def on_message_arrived(self, topic: str, payload: bytes) -> None:
        logger.info("Message arrived on %s: %s", topic, payload.decode("utf-8", errors="replace"))

    def _subscribe(self) -> None:
        topic = self._cfg.subscribe_topic

        def done(error: Optional[BaseException]) -> None:
            if error is None:
                logger.info("Subscribed to topic %s", topic)
            else:
                logger.warning("Could not subscribe to topic %s: %s", topic, error)

        try:
            self._transport.subscribe(topic, self._cfg.qos, done)
        except (BridgeError, OSError) as e:
            done(e)
