import logging

from modbus2mqtt.emitter.change_emitter import ChangeEmitter, OutboundMessage
from modbus2mqtt.model.value_change import ValueChange
from modbus2mqtt.sender.mqtt_publisher import Publisher
from modbus2mqtt.util.pubsub.base import PubSub
from modbus2mqtt.util.pubsub.pubsub_topic import PubSubTopic

logger = logging.getLogger("MqttEmitterSubscriber")


class MqttEmitterSubscriber:
    def __init__(self, pubsub: PubSub, publisher: Publisher, emitter: ChangeEmitter | None = None):
        self.pubsub = pubsub
        self.publisher = publisher
        self.emitter = emitter or ChangeEmitter()
        self.published_count: int = 0
        self.failed_count: int = 0

    async def run(self):
        async for change in self.pubsub.subscribe(PubSubTopic.VALUE_CHANGED):
            await self.handle_change(change)

    async def handle_change(self, change: ValueChange) -> None:
        message_list: list[OutboundMessage] = self.emitter.build_messages(change)
        for message in message_list:
            try:
                await self.publisher.publish(message.topic, message.payload)
                self.published_count += 1
            except Exception as e:
                self.failed_count += 1
                logger.exception("[MqttEmitterSubscriber] Publish to %s failed: %s", message.topic, e)
