"""Publishers for integration requests and completion events."""

from abc import ABC, abstractmethod
from typing import Any, Dict

import structlog

from shared.framework.producer import KafkaProducer
from shared.utils.tracing import get_w3c_trace_context


logger = structlog.get_logger(__name__)


class RequestPublisher(ABC):
    """Submits one integration request to the message bus."""

    @abstractmethod
    async def publish_request(self, topic: str, key: str, message: Dict[str, Any]) -> None:
        """Raise on failure; returning means the bus accepted the message."""


class CompletionPublisher(ABC):
    """Announces that a job reached a terminal status."""

    @abstractmethod
    async def publish_completion(self, event: Dict[str, Any]) -> None:
        ...


class KafkaRequestPublisher(RequestPublisher):
    """Request publisher writing straight to per-provider Kafka topics."""

    def __init__(self, producer: KafkaProducer):
        self.producer = producer

    async def publish_request(self, topic: str, key: str, message: Dict[str, Any]) -> None:
        await self.producer.produce(
            topic=topic,
            payload=message,
            key=key,
            headers=get_w3c_trace_context(),
        )


class KafkaCompletionPublisher(CompletionPublisher):
    """Completion events go through the producer's queue on its default topic."""

    def __init__(self, producer: KafkaProducer):
        self.producer = producer

    async def publish_completion(self, event: Dict[str, Any]) -> None:
        await self.producer.send_message(event, key=event.get("jobId"))
        logger.debug("Completion event queued", job_id=event.get("jobId"), status=event.get("status"))
