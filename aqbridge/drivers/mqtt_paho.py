from __future__ import annotations

import logging
import threading
from typing import Optional

import paho.mqtt.client as mqtt

from ..domain.errors import BrokerConnectError, PublishFailure
from ..domain.interfaces import ActionCallback, ConnectOptions, TransportCallback

logger = logging.getLogger(__name__)


class PahoTransport:
    """
    BrokerTransport backed by paho-mqtt.

    paho runs its network loop on its own thread (loop_start) and reconnects
    by itself after a drop; every result and lifecycle callback below fires
    on that thread.
    """

    def __init__(self) -> None:
        self._client: Optional[mqtt.Client] = None
        self._callback: Optional[TransportCallback] = None
        self._options: Optional[ConnectOptions] = None
        self._lock = threading.Lock()

        self._connect_result: Optional[ActionCallback] = None
        self._ever_connected = False
        self._closing = False

        # mid -> (topic, on_result)
        self._pending_publish: dict[int, tuple[str, ActionCallback]] = {}
        self._pending_subscribe: dict[int, tuple[str, ActionCallback]] = {}
        # acks that raced ahead of publish()/subscribe() returning their mid
        self._early_acks: set[int] = set()
        self._early_subacks: dict[int, list] = {}

    def set_callback(self, callback: TransportCallback) -> None:
        self._callback = callback

    def connect(self, options: ConnectOptions, on_result: ActionCallback) -> None:
        with self._lock:
            self._options = options
            self._connect_result = on_result
            self._closing = False
            self._client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=options.client_id,
                clean_session=options.clean_session,
                protocol=mqtt.MQTTv311,
            )
            client = self._client

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_publish = self._on_publish
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message

        if options.username:
            client.username_pw_set(options.username, options.password)
        client.reconnect_delay_set(
            min_delay=options.reconnect_min_delay_s,
            max_delay=options.reconnect_max_delay_s,
        )

        logger.info("MQTT connecting to %s (client_id=%s)", options.server_uri, options.client_id)
        try:
            client.connect_async(options.host, options.port, keepalive=options.keepalive_s)
            client.loop_start()
        except (OSError, ValueError) as e:
            self._finish_connect(BrokerConnectError(f"failed to connect to {options.server_uri}: {e}"))

    def subscribe(self, topic: str, qos: int, on_result: ActionCallback) -> None:
        client = self._require_client()
        rc, mid = client.subscribe(topic, qos=qos)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            on_result(BrokerConnectError(f"subscribe to {topic} failed: {mqtt.error_string(rc)}"))
            return
        with self._lock:
            reason_codes = self._early_subacks.pop(mid, None)
            if reason_codes is None:
                self._pending_subscribe[mid] = (topic, on_result)
        if reason_codes is not None:
            self._subscribed(topic, reason_codes, on_result)

    def publish(self, topic: str, payload: bytes, qos: int, on_result: ActionCallback) -> None:
        client = self._require_client()
        # paho is never called with self._lock held; it takes its own mutexes
        info = client.publish(topic, payload, qos=qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            on_result(PublishFailure(f"publish to {topic} failed: {mqtt.error_string(info.rc)}"))
            return
        with self._lock:
            if info.mid in self._early_acks:
                self._early_acks.discard(info.mid)
                acked = True
            else:
                self._pending_publish[info.mid] = (topic, on_result)
                acked = False
        if acked:
            self._delivered(topic, on_result)

    def disconnect(self) -> None:
        with self._lock:
            client, self._client = self._client, None
            self._closing = True
            pending = list(self._pending_publish.values())
            self._pending_publish.clear()
            self._pending_subscribe.clear()
            self._early_acks.clear()
            self._early_subacks.clear()
        if client is None:
            return
        client.disconnect()
        client.loop_stop()
        for topic, on_result in pending:
            on_result(PublishFailure(f"disconnected before delivery to {topic}"))
        logger.info("MQTT disconnected")

    # --- paho callbacks (network thread) ---
    def _require_client(self) -> mqtt.Client:
        client = self._client
        if client is None:
            raise BrokerConnectError("transport is not connected")
        return client

    def _finish_connect(self, error: Optional[BaseException]) -> None:
        with self._lock:
            on_result, self._connect_result = self._connect_result, None
        if on_result is not None:
            on_result(error)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        uri = self._options.server_uri if self._options else "?"
        if reason_code.is_failure:
            logger.warning("MQTT connect to %s refused: %s", uri, reason_code)
            self._finish_connect(BrokerConnectError(f"connect refused: {reason_code}"))
            return

        reconnect = self._ever_connected
        self._ever_connected = True
        self._finish_connect(None)
        if self._callback:
            self._callback.on_connect_complete(reconnect, uri)

    def _on_connect_fail(self, client, userdata) -> None:
        uri = self._options.server_uri if self._options else "?"
        logger.warning("MQTT connect to %s failed; paho will retry", uri)
        self._finish_connect(BrokerConnectError(f"failed to connect to {uri}"))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None) -> None:
        if self._closing:
            return
        logger.warning("MQTT connection lost: %s", reason_code)
        if self._callback:
            self._callback.on_connection_lost(BrokerConnectError(f"connection lost: {reason_code}"))

    def _on_publish(self, client, userdata, mid, reason_code, properties=None) -> None:
        with self._lock:
            entry = self._pending_publish.pop(mid, None)
            if entry is None:
                self._early_acks.add(mid)
                return
        topic, on_result = entry
        self._delivered(topic, on_result)

    def _delivered(self, topic: str, on_result: ActionCallback) -> None:
        on_result(None)
        if self._callback:
            self._callback.on_delivery_complete(topic)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None) -> None:
        with self._lock:
            entry = self._pending_subscribe.pop(mid, None)
            if entry is None:
                self._early_subacks[mid] = list(reason_code_list)
                return
        topic, on_result = entry
        self._subscribed(topic, reason_code_list, on_result)

    def _subscribed(self, topic: str, reason_code_list, on_result: ActionCallback) -> None:
        failures = [rc for rc in reason_code_list if rc.is_failure]
        if failures:
            on_result(BrokerConnectError(f"subscribe to {topic} refused: {failures[0]}"))
        else:
            on_result(None)

    def _on_message(self, client, userdata, message) -> None:
        if self._callback:
            self._callback.on_message_arrived(message.topic, message.payload)
