"""
Kafka producer abstraction for async services.

Provides a Kafka producer with two paths: queued fire-and-forget
sends on the default topic, and direct submission to an explicit
topic that reports failures to the caller.
"""

import asyncio
from typing import Optional, Dict, Any, Callable, Awaitable
from dataclasses import dataclass
import json
import time

from confluent_kafka import Producer, KafkaError, KafkaException
import structlog

from .config import KafkaConfig
from shared.utils.errors import PublishError


logger = structlog.get_logger()


@dataclass
class ProducerConfig:
    """Producer configuration."""
    topic: str
    batch_size: int = 16384
    linger_ms: int = 10
    flush_timeout: float = 5.0
    retry_backoff_ms: int = 100
    max_retries: int = 3


class KafkaProducer:
    """
    Kafka producer with async processing.

    Features:
    - Queued sends drained by a background task
    - Direct per-topic submission with PublishError on failure
    - Delivery callbacks feeding send/failure counters
    - Graceful shutdown with flush
    """

    def __init__(
        self,
        config: ProducerConfig,
        kafka_config: KafkaConfig,
        error_handler: Optional[Callable[[Exception], Awaitable[None]]] = None
    ):
        self.config = config
        self.kafka_config = kafka_config
        self.error_handler = error_handler or self._default_error_handler

        self.logger = structlog.get_logger("kafka-producer")
        self.producer: Optional[Producer] = None
        self.running = False
        self.task: Optional[asyncio.Task] = None

        self.message_queue: asyncio.Queue = asyncio.Queue()

        # Metrics
        self.messages_sent = 0
        self.messages_failed = 0
        self.last_message_time = None

    def _create_producer(self) -> Producer:
        """Create Kafka producer instance."""
        producer_config = {
            'bootstrap.servers': self.kafka_config.bootstrap_servers,
            'retries': self.config.max_retries,
            'retry.backoff.ms': self.config.retry_backoff_ms,
            'batch.size': self.config.batch_size,
            'linger.ms': self.config.linger_ms,
            'compression.type': 'snappy',
        }

        return Producer(producer_config)

    async def start(self) -> None:
        """Start the producer."""
        if self.running:
            return

        self.logger.info(
            "Starting Kafka producer",
            topic=self.config.topic
        )

        self.producer = self._create_producer()
        self.running = True
        self.task = asyncio.create_task(self._produce_loop())

    async def stop(self) -> None:
        """Stop the producer."""
        if not self.running:
            return

        self.logger.info("Stopping Kafka producer")

        self.running = False

        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass

        await self._drain_queue()

        if self.producer:
            remaining = self.producer.flush(self.config.flush_timeout)
            if remaining:
                self.logger.warning("Messages left undelivered at shutdown", count=remaining)
            self.producer = None

        self.logger.info("Kafka producer stopped")

    async def send_message(
        self,
        payload: Dict[str, Any],
        key: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> None:
        """Queue a message for the default topic."""
        message_data = {
            "topic": self.config.topic,
            "payload": payload,
            "key": key,
            "headers": headers or {},
            "timestamp": time.time(),
        }

        await self.message_queue.put(message_data)

    async def produce(
        self,
        topic: str,
        payload: Dict[str, Any],
        key: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Submit a message to an explicit topic.

        Returns once the client has accepted the message into its
        send buffer. Raises PublishError when it is refused.
        """
        if not self.producer:
            raise PublishError("Producer is not started", topic=topic)

        await self._send_message_sync({
            "topic": topic,
            "payload": payload,
            "key": key,
            "headers": headers or {},
        })

    async def _produce_loop(self) -> None:
        """Drain queued messages."""
        while self.running:
            try:
                try:
                    message_data = await asyncio.wait_for(
                        self.message_queue.get(),
                        timeout=1.0
                    )
                except asyncio.TimeoutError:
                    if self.producer:
                        self.producer.poll(0)
                    continue

                await self._send_message_sync(message_data)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Producer loop error", error=str(e), exc_info=True)
                await self.error_handler(e)
                await asyncio.sleep(1)

    async def _drain_queue(self) -> None:
        """Hand every still-queued message to the client before shutdown."""
        while not self.message_queue.empty():
            message_data = self.message_queue.get_nowait()
            try:
                await self._send_message_sync(message_data)
            except PublishError as e:
                self.logger.error("Queued message dropped at shutdown", topic=e.topic, error=e.message)

    async def _send_message_sync(self, message_data: Dict[str, Any]) -> None:
        """Hand one message to the client."""
        if not self.producer:
            return

        topic = message_data["topic"]
        try:
            payload_bytes = json.dumps(message_data["payload"], default=str).encode('utf-8')
            key_bytes = message_data["key"].encode('utf-8') if message_data["key"] else None

            self.producer.produce(
                topic=topic,
                value=payload_bytes,
                key=key_bytes,
                headers=message_data["headers"],
                callback=self._delivery_callback
            )
            # Serve delivery callbacks without blocking
            self.producer.poll(0)

            self.messages_sent += 1
            self.last_message_time = time.time()

        except (BufferError, KafkaException, TypeError, ValueError) as e:
            self.logger.error(
                "Message send error",
                error=str(e),
                topic=topic
            )
            self.messages_failed += 1
            raise PublishError(f"Failed to publish to {topic}: {e}", topic=topic) from e

    def _delivery_callback(self, err: Optional[KafkaError], msg: Any) -> None:
        """Delivery callback for Kafka messages."""
        if err:
            self.logger.error(
                "Message delivery failed",
                error=str(err),
                topic=msg.topic() if msg else None,
                partition=msg.partition() if msg else None,
                offset=msg.offset() if msg else None
            )
            self.messages_failed += 1
        else:
            self.logger.debug(
                "Message delivered",
                topic=msg.topic(),
                partition=msg.partition(),
                offset=msg.offset()
            )

    async def _default_error_handler(self, error: Exception) -> None:
        """Default error handler."""
        self.logger.error("Producer error", error=str(error), exc_info=True)

    def get_metrics(self) -> Dict[str, Any]:
        """Get producer metrics."""
        return {
            "messages_sent": self.messages_sent,
            "messages_failed": self.messages_failed,
            "last_message_time": self.last_message_time,
            "queue_size": self.message_queue.qsize(),
            "running": self.running,
        }
