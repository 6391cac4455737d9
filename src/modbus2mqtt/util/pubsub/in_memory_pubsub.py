import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncGenerator, DefaultDict

from modbus2mqtt.model.topic_policy import DropPolicyEnum, TopicPolicyModel
from modbus2mqtt.util.pubsub.base import PubSub
from modbus2mqtt.util.pubsub.pubsub_topic import PubSubTopic

logger = logging.getLogger("InMemoryPubSub")


class InMemoryPubSub(PubSub):
    """
    Hand-off channel between device loops and the emitter.

    - publish never blocks (put_nowait), so a slow or failing MQTT sink cannot stall a read loop
    - every subscriber owns a bounded queue; overflow follows the topic's TopicPolicyModel
    - dropped messages are counted per topic
    """

    def __init__(self) -> None:
        self._topic_subscribers: DefaultDict[PubSubTopic, list[asyncio.Queue]] = defaultdict(list)
        self._topic_policy: dict[PubSubTopic, TopicPolicyModel] = {}
        self._dropped: DefaultDict[PubSubTopic, int] = defaultdict(int)

    def set_topic_policy(self, topic: PubSubTopic, policy: TopicPolicyModel) -> None:
        self._topic_policy[topic] = policy

    def get_dropped_count(self, topic: PubSubTopic) -> int:
        return int(self._dropped.get(topic, 0))

    def get_queue_stats(self, topic: PubSubTopic) -> dict[str, Any]:
        queues = self._topic_subscribers.get(topic, [])
        policy = self._get_policy(topic)

        return {
            "subscriber_count": len(queues),
            "max_queue_size": policy.queue_maxsize,
            "drop_policy": policy.drop_policy.value,
            "current_queue_sizes": [q.qsize() for q in queues],
            "total_dropped": self.get_dropped_count(topic),
        }

    async def publish(self, topic: PubSubTopic, data: Any) -> None:
        queues = self._topic_subscribers.get(topic)
        if not queues:
            return

        policy = self._get_policy(topic)

        for queue in list(queues):
            try:
                queue.put_nowait(data)
                continue
            except asyncio.QueueFull:
                pass

            self._dropped[topic] += 1
            if policy.drop_policy == DropPolicyEnum.DROP_NEWEST:
                continue

            # DROP_OLDEST: make room, then enqueue
            try:
                queue.get_nowait()
                queue.task_done()
            except asyncio.QueueEmpty:
                pass
            try:
                queue.put_nowait(data)
            except asyncio.QueueFull:
                logger.warning(f"[PubSub] queue still full for topic={topic.value}, message dropped")

    async def subscribe(self, topic: PubSubTopic) -> AsyncGenerator[Any, None]:
        policy = self._get_policy(topic)
        queue: asyncio.Queue = asyncio.Queue(maxsize=policy.queue_maxsize)
        self._topic_subscribers[topic].append(queue)

        try:
            while True:
                data = await queue.get()
                try:
                    yield data
                finally:
                    # Done once the consumer asks for the next item
                    queue.task_done()
        finally:
            subs = self._topic_subscribers.get(topic, [])
            if queue in subs:
                subs.remove(queue)

    async def wait_drained(self, topic: PubSubTopic, timeout: float) -> bool:
        """
        Wait until every subscriber of topic has consumed what is queued.

        Returns False if the queues were not empty within timeout.
        """
        queues = list(self._topic_subscribers.get(topic, []))
        if not queues:
            return True

        try:
            await asyncio.wait_for(asyncio.gather(*(queue.join() for queue in queues)), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            pending: int = sum(queue.qsize() for queue in queues)
            logger.warning(f"[PubSub] topic={topic.value} not drained after {timeout:.1f}s ({pending} queued)")
            return False

    async def close(self) -> None:
        self._topic_subscribers.clear()
        self._topic_policy.clear()
        self._dropped.clear()

    def _get_policy(self, topic: PubSubTopic) -> TopicPolicyModel:
        return self._topic_policy.get(topic, TopicPolicyModel())
