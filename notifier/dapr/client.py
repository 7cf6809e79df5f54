"""Dapr pub/sub transport for retry and dead-letter messages."""
import asyncio
import json
import uuid
from typing import Any, Dict, Optional

from dapr.clients import DaprClient

from notifier.schemas.notification import RetryMessage
from notifier.utils.logger import get_logger
from notifier.utils.time import utcnow

logger = get_logger(__name__)


class DaprRetryQueue:
    """Publishes retry messages to Kafka/Pulsar/Service Bus via Dapr pub/sub.

    Per-message delay is requested through the ``deliverAfter`` publish
    metadata; the pub/sub component must support delayed delivery.
    """

    def __init__(
        self,
        pubsub_name: str,
        retry_topic: str,
        dead_letter_topic: str,
        source: str = "notification-dispatcher",
    ):
        """Initialize Dapr retry queue publisher."""
        self.pubsub_name = pubsub_name
        self.retry_topic = retry_topic
        self.dead_letter_topic = dead_letter_topic
        self.source = source

    def _publish(self, topic: str, event_type: str, data: Dict[str, Any], metadata: Optional[Dict[str, str]] = None) -> str:
        event_envelope = {
            "event_id": str(uuid.uuid4()),
            "type": event_type,
            "timestamp": utcnow().isoformat(),
            "source": self.source,
            "data": data,
        }
        with DaprClient() as client:
            client.publish_event(
                pubsub_name=self.pubsub_name,
                topic_name=topic,
                data=json.dumps(event_envelope),
                data_content_type="application/json",
                publish_metadata=metadata or {},
            )
        logger.info("Published event", event_type=event_type, topic=topic, event_id=event_envelope["event_id"])
        return event_envelope["event_id"]

    async def send_retry(self, message: RetryMessage, delay_seconds: int) -> str:
        """Enqueue a retry message that becomes visible after ``delay_seconds``."""
        metadata = {"deliverAfter": f"{int(delay_seconds)}s"}
        return await asyncio.to_thread(
            self._publish, self.retry_topic, "notification.retry", message.model_dump(), metadata
        )

    async def send_dead_letter(self, message: RetryMessage) -> str:
        """Forward an exhausted attempt to the dead-letter topic."""
        return await asyncio.to_thread(
            self._publish, self.dead_letter_topic, "notification.dead_letter", message.model_dump()
        )


def unwrap_event(body: Dict[str, Any]) -> Dict[str, Any]:
    """Extract the message payload from a Dapr CloudEvent delivery.

    Dapr wraps the published envelope in ``data``; the envelope itself
    carries the payload in its own ``data`` field, possibly as a JSON string.
    """
    data = body.get("data", body)
    if isinstance(data, str):
        data = json.loads(data)
    if isinstance(data, dict) and "type" in data and isinstance(data.get("data"), (dict, str)):
        inner = data["data"]
        data = json.loads(inner) if isinstance(inner, str) else inner
    return data
