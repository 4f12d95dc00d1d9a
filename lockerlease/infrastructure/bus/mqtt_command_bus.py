from __future__ import annotations

import json
import logging
import secrets
import threading
from typing import Any
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from lockerlease.core.errors import BusUnavailable
from lockerlease.core.gateways.command_bus import CommandBus, StatusHandler

logger = logging.getLogger(__name__)


class MqttCommandBus(CommandBus):
    """
    paho-mqtt adapter. The network loop runs on paho's background thread and reconnects on its own;
    while it is down `publish` raises BusUnavailable instead of buffering.
    """

    def __init__(
        self,
        *,
        broker_url: str,
        username: str | None = None,
        password: str | None = None,
        client_id: str | None = None,
        qos: int = 1,
        keepalive: int = 60,
    ) -> None:
        parsed = urlparse(broker_url)
        self._host = parsed.hostname or "localhost"
        self._port = parsed.port or 1883
        self._qos = qos
        self._keepalive = keepalive
        self._connected = threading.Event()
        self._handlers: dict[str, StatusHandler] = {}

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id or f"lockerlease_{secrets.token_hex(4)}",
            clean_session=True,
        )
        if username:
            self._client.username_pw_set(username, password)
        self._client.reconnect_delay_set(min_delay=1, max_delay=30)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    def connect(self) -> None:
        logger.info("mqtt_connecting", extra={"host": self._host, "port": self._port})
        self._client.connect_async(self._host, self._port, self._keepalive)
        self._client.loop_start()

    def disconnect(self) -> None:
        self._client.disconnect()
        self._client.loop_stop()
        self._connected.clear()
        logger.info("mqtt_disconnected", extra={"host": self._host})

    def publish(self, topic: str, payload: dict[str, Any]) -> bool:
        if not self._connected.is_set():
            raise BusUnavailable(f"MQTT client is not connected to {self._host}:{self._port}")

        info = self._client.publish(topic, json.dumps(payload), qos=self._qos, retain=False)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning("mqtt_publish_failed", extra={"topic": topic, "rc": info.rc})
            return False
        return True

    def subscribe(self, topic: str, handler: StatusHandler) -> None:
        self._handlers[topic] = handler
        if self._connected.is_set():
            self._client.subscribe(topic, qos=self._qos)

    # paho callbacks, invoked on the network thread
    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.error("mqtt_connect_refused", extra={"reason": str(reason_code)})
            return
        self._connected.set()
        logger.info("mqtt_connected", extra={"host": self._host, "port": self._port})
        for topic in list(self._handlers):
            client.subscribe(topic, qos=self._qos)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        self._connected.clear()
        logger.warning("mqtt_offline", extra={"reason": str(reason_code)})

    def _on_message(self, client, userdata, message) -> None:
        handler = self._handlers.get(message.topic)
        if handler is None:
            return
        try:
            payload = json.loads(message.payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.warning("mqtt_status_unparseable", extra={"topic": message.topic})
            return
        if not isinstance(payload, dict):
            payload = {"value": payload}
        handler(message.topic, payload)
