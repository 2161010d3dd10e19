import asyncio
import itertools
from collections import defaultdict
from typing import Any

from loguru import logger

Topic = tuple[str, str]


class Publisher:
    """A fan-out service that distributes state snapshots to subscribers.

    Feed controllers and the market service publish immutable snapshots
    under a topic such as ``("feed", "BTC")``. Consumers subscribe an
    `asyncio.Queue` to a topic and receive every snapshot published after
    subscribing, until they unsubscribe with the returned ID.

    All calls are expected from the event loop thread, which makes the
    loop the single context in which state changes become visible.
    """

    def __init__(self) -> None:
        # A mapping from topic to a dict of {subscription_id: queue}
        self._subscriptions: defaultdict[Topic, dict[int, asyncio.Queue[Any]]] = (
            defaultdict(dict)
        )
        # A reverse mapping from subscription_id to its topic
        self._id_to_topic: dict[int, Topic] = {}
        self._id_generator = itertools.count(1)

    def subscribe(self, topic: Topic, queue: "asyncio.Queue[Any]") -> int:
        """Subscribes a queue to receive snapshots for a topic.

        Args:
            topic: The (kind, key) pair, e.g. ("feed", "BTC").
            queue: The asyncio.Queue to which snapshots will be sent.

        Returns:
            A unique subscription ID that can be used to unsubscribe.
        """
        sub_id = next(self._id_generator)
        self._subscriptions[topic][sub_id] = queue
        self._id_to_topic[sub_id] = topic
        logger.debug(f"New subscription (ID: {sub_id}) for {topic}.")
        return sub_id

    def unsubscribe(self, sub_id: int) -> None:
        """Removes a subscription. Unknown IDs are ignored with a warning."""
        topic = self._id_to_topic.pop(sub_id, None)
        if topic is None:
            logger.warning(f"Attempted to unsubscribe with invalid ID: {sub_id}")
            return

        del self._subscriptions[topic][sub_id]
        logger.debug(f"Unsubscribed ID {sub_id} from {topic}.")
        if not self._subscriptions[topic]:
            del self._subscriptions[topic]

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._subscriptions.get(topic, {}))

    def publish(self, topic: Topic, snapshot: Any) -> None:
        """Delivers a snapshot to every queue subscribed to the topic.

        A full queue has its oldest snapshot discarded to make room, since
        a slow consumer only ever needs the latest state.
        """
        for queue in list(self._subscriptions.get(topic, {}).values()):
            if queue.full():
                logger.warning(
                    f"Subscriber queue for {topic} is full. "
                    "Dropping the oldest snapshot. This may indicate a slow consumer."
                )
                queue.get_nowait()
            queue.put_nowait(snapshot)
