import logging
from typing import Protocol

import paho.mqtt.client as mqtt

from modbus2mqtt.exception import PublishError
from modbus2mqtt.schema.system_config_schema import MqttConfig

logger = logging.getLogger("MqttPublisher")


class Publisher(Protocol):
    """Outbound side of the bridge: fire-and-forget publish."""

    async def publish(self, topic: str, payload: str) -> None: ...


class MqttPublisher:
    """paho-mqtt publisher; the network loop runs in paho's own thread (loop_start)."""

    def __init__(self, config: MqttConfig, client: mqtt.Client | None = None):
        self.config = config
        self.client: mqtt.Client = client or mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.CLIENT_ID,
            protocol=mqtt.MQTTv311,
        )
        self.connected: bool = False
        self._publish_count: int = 0
        self._error_count: int = 0

        if config.USERNAME:
            self.client.username_pw_set(config.USERNAME, config.PASSWORD)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_connect_fail = self._on_connect_fail

    async def connect(self) -> None:
        """
        Start connecting in paho's network thread and return immediately.

        An unreachable broker is retried by paho's network loop;
        until it connects, publish() fails with PublishError.
        """
        logger.info(f"[MQTT] Connecting to {self.config.HOST}:{self.config.PORT}")
        self.client.connect_async(self.config.HOST, self.config.PORT, self.config.KEEPALIVE)
        self.client.loop_start()

    async def publish(self, topic: str, payload: str) -> None:
        full_topic: str = self.full_topic(topic)
        info = self.client.publish(full_topic, payload, qos=self.config.QOS, retain=self.config.RETAIN)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._error_count += 1
            raise PublishError(f"publish rc={info.rc} ({mqtt.error_string(info.rc)})", topic=full_topic)

        self._publish_count += 1
        logger.debug(f"[MQTT] {full_topic} <- {payload}")

    def full_topic(self, topic: str) -> str:
        prefix: str = self.config.TOPIC_PREFIX.strip("/")
        if not prefix:
            return topic
        return f"{prefix}/{topic.lstrip('/')}"

    async def close(self) -> None:
        try:
            self.client.loop_stop()
            self.client.disconnect()
        except Exception as e:
            logger.warning(f"[MQTT] Error during disconnect: {e}")
        self.connected = False
        logger.info(f"[MQTT] Closed (published={self._publish_count}, errors={self._error_count})")

    @property
    def stats(self) -> dict[str, int | bool]:
        return {"connected": self.connected, "published": self._publish_count, "errors": self._error_count}

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        self.connected = not reason_code.is_failure
        if self.connected:
            logger.info("[MQTT] Connected")
        else:
            logger.warning(f"[MQTT] Connect refused: {reason_code}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self.connected = False
        logger.warning(f"[MQTT] Disconnected: {reason_code}")

    def _on_connect_fail(self, client, userdata):
        self.connected = False
        logger.warning(f"[MQTT] Broker {self.config.HOST}:{self.config.PORT} unreachable, retrying")
