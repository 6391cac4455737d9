import asyncio
import logging

from modbus2mqtt.model.topic_policy import DropPolicyEnum, TopicPolicyModel
from modbus2mqtt.util.pubsub.in_memory_pubsub import InMemoryPubSub
from modbus2mqtt.util.pubsub.pubsub_topic import PubSubTopic

logger = logging.getLogger(__name__)


def build_pubsub_policies(queue_maxsize: int) -> dict[PubSubTopic, TopicPolicyModel]:
    # Newer value for the same signal supersedes an older one
    return {
        PubSubTopic.VALUE_CHANGED: TopicPolicyModel(queue_maxsize=queue_maxsize, drop_policy=DropPolicyEnum.DROP_OLDEST),
    }


async def pubsub_drop_metrics_loop(
    pubsub: InMemoryPubSub, topics_to_monitor: list[PubSubTopic], report_interval_sec: float = 10.0
) -> None:
    """
    Periodically warn about messages dropped because the emitter fell behind.

    Args:
        pubsub: InMemoryPubSub instance
        topics_to_monitor: topics to watch
        report_interval_sec: seconds between checks
    """
    last_counts: dict[PubSubTopic, int] = {topic: 0 for topic in topics_to_monitor}

    while True:
        await asyncio.sleep(report_interval_sec)

        for topic in topics_to_monitor:
            current_dropped = pubsub.get_dropped_count(topic)
            new_drops = current_dropped - last_counts.get(topic, 0)
            last_counts[topic] = current_dropped

            if new_drops > 0:
                stats = pubsub.get_queue_stats(topic)
                logger.warning(
                    f"[PubSub] {topic.value}: +{new_drops} dropped in the last {report_interval_sec:.0f}s "
                    f"(total={current_dropped}, subscribers={stats['subscriber_count']}, "
                    f"queue_sizes={stats['current_queue_sizes']}, policy={stats['drop_policy']}); "
                    f"the MQTT publisher is slower than the device loops"
                )
