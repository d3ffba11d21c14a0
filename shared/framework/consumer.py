"""
Kafka consumer abstraction for async services.

Provides a Kafka consumer with error handling, metrics
collection, and graceful shutdown. Topics starting with ``^``
are treated as subscription patterns by librdkafka.
"""

import asyncio
from typing import Optional, Callable, Any, Dict, List, Awaitable, Tuple
from dataclasses import dataclass
import json

from confluent_kafka import Consumer, KafkaError, Message, TopicPartition
import structlog

from .config import KafkaConfig


logger = structlog.get_logger()


@dataclass
class ConsumerConfig:
    """Consumer configuration."""
    topics: List[str]
    group_id: str
    auto_offset_reset: str = "latest"
    enable_auto_commit: bool = True
    max_poll_records: int = 500
    poll_timeout: float = 1.0
    session_timeout_ms: int = 30000
    heartbeat_interval_ms: int = 3000
    retry_backoff_seconds: float = 1.0

    @classmethod
    def from_kafka_config(
        cls,
        topics: List[str],
        group_id: str,
        kafka_config: KafkaConfig,
        enable_auto_commit: Optional[bool] = None
    ) -> "ConsumerConfig":
        """
        Build consumer settings from the shared Kafka configuration.

        ``enable_auto_commit`` overrides the shared setting for
        consumers that commit only after their handler succeeds.
        """
        if enable_auto_commit is None:
            enable_auto_commit = kafka_config.enable_auto_commit
        return cls(
            topics=topics,
            group_id=group_id,
            auto_offset_reset=kafka_config.auto_offset_reset,
            enable_auto_commit=enable_auto_commit,
            max_poll_records=kafka_config.max_poll_records,
            session_timeout_ms=kafka_config.session_timeout_ms,
            heartbeat_interval_ms=kafka_config.heartbeat_interval_ms,
        )


class KafkaConsumer:
    """
    Kafka consumer with async batch processing.

    Features:
    - Error handling that never stops the poll loop
    - Metrics collection
    - Graceful shutdown
    - Message batching
    """

    def __init__(
        self,
        config: ConsumerConfig,
        kafka_config: KafkaConfig,
        message_handler: Callable[[List[Dict[str, Any]]], Awaitable[None]],
        error_handler: Optional[Callable[[Exception], Awaitable[None]]] = None
    ):
        self.config = config
        self.kafka_config = kafka_config
        self.message_handler = message_handler
        self.error_handler = error_handler or self._default_error_handler

        self.logger = structlog.get_logger("kafka-consumer")
        self.consumer: Optional[Consumer] = None
        self.running = False
        self.task: Optional[asyncio.Task] = None

        # Metrics
        self.messages_processed = 0
        self.messages_failed = 0
        self.last_message_time = None

    def _create_consumer(self) -> Consumer:
        """Create Kafka consumer instance."""
        consumer_config = {
            'bootstrap.servers': self.kafka_config.bootstrap_servers,
            'group.id': self.config.group_id,
            'auto.offset.reset': self.config.auto_offset_reset,
            'enable.auto.commit': self.config.enable_auto_commit,
            'session.timeout.ms': self.config.session_timeout_ms,
            'heartbeat.interval.ms': self.config.heartbeat_interval_ms,
        }

        return Consumer(consumer_config)

    async def start(self) -> None:
        """Start the consumer."""
        if self.running:
            return

        self.logger.info(
            "Starting Kafka consumer",
            topics=self.config.topics,
            group_id=self.config.group_id
        )

        self.consumer = self._create_consumer()
        self.consumer.subscribe(self.config.topics)

        self.running = True
        self.task = asyncio.create_task(self._consume_loop())

    async def stop(self) -> None:
        """Stop the consumer."""
        if not self.running:
            return

        self.logger.info("Stopping Kafka consumer")

        self.running = False

        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass

        if self.consumer:
            self.consumer.close()
            self.consumer = None

        self.logger.info("Kafka consumer stopped")

    async def _consume_loop(self) -> None:
        """Main consumption loop."""
        while self.running:
            try:
                # consume() blocks for up to poll_timeout; keep it off the loop
                messages = await asyncio.to_thread(
                    self.consumer.consume,
                    self.config.max_poll_records,
                    self.config.poll_timeout,
                )

                if not messages:
                    continue

                await self._process_messages(messages)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Consumer loop error", error=str(e), exc_info=True)
                await self.error_handler(e)
                await asyncio.sleep(1)

    async def _process_messages(self, messages: List[Message]) -> None:
        """
        Process a batch of messages.

        With auto-commit off, offsets are committed only after the
        handler returns. A handler failure rewinds each partition to
        the start of the batch so the messages are delivered again.
        """
        processed_messages = []
        positions: Dict[Tuple[str, int], Tuple[int, int]] = {}

        for message in messages:
            if message is None:
                continue

            if message.error():
                if message.error().code() == KafkaError._PARTITION_EOF:
                    continue
                self.logger.error(
                    "Message error",
                    error=str(message.error()),
                    topic=message.topic(),
                    partition=message.partition(),
                    offset=message.offset()
                )
                self.messages_failed += 1
                continue

            position = (message.topic(), message.partition())
            offset = message.offset()
            first, last = positions.get(position, (offset, offset))
            positions[position] = (min(first, offset), max(last, offset))

            try:
                processed_messages.append(self._parse_message(message))
            except Exception as e:
                self.logger.error(
                    "Message parsing error",
                    error=str(e),
                    topic=message.topic(),
                    partition=message.partition(),
                    offset=message.offset()
                )
                self.messages_failed += 1

        if processed_messages:
            try:
                await self.message_handler(processed_messages)
                self.messages_processed += len(processed_messages)
                self.last_message_time = asyncio.get_running_loop().time()

            except Exception as e:
                self.logger.error(
                    "Message handler error",
                    error=str(e),
                    batch_size=len(processed_messages)
                )
                self.messages_failed += len(processed_messages)
                await self.error_handler(e)
                if self._manual_commit:
                    await self._rewind(positions)
                    await asyncio.sleep(self.config.retry_backoff_seconds)
                return

        if self._manual_commit and positions:
            await self._commit(positions)

    @property
    def _manual_commit(self) -> bool:
        return not self.config.enable_auto_commit and self.consumer is not None

    async def _commit(self, positions: Dict[Tuple[str, int], Tuple[int, int]]) -> None:
        """Commit past the last offset seen on each partition."""
        offsets = [
            TopicPartition(topic, partition, last + 1)
            for (topic, partition), (_, last) in positions.items()
        ]
        await asyncio.to_thread(self.consumer.commit, offsets=offsets, asynchronous=False)

    async def _rewind(self, positions: Dict[Tuple[str, int], Tuple[int, int]]) -> None:
        """Seek each partition back to the first offset of the failed batch."""
        for (topic, partition), (first, _) in positions.items():
            self.consumer.seek(TopicPartition(topic, partition, first))
        self.logger.warning("Batch will be redelivered", partitions=len(positions))

    def _parse_message(self, message: Message) -> Dict[str, Any]:
        """Parse Kafka message to dictionary."""
        raw_value = message.value() or b""
        try:
            payload = json.loads(raw_value.decode('utf-8'))
        except (json.JSONDecodeError, UnicodeDecodeError):
            payload = raw_value.decode('utf-8', errors='replace')

        return {
            "topic": message.topic(),
            "partition": message.partition(),
            "offset": message.offset(),
            "timestamp": message.timestamp(),
            "key": message.key().decode('utf-8') if message.key() else None,
            "payload": payload,
        }

    async def _default_error_handler(self, error: Exception) -> None:
        """Default error handler."""
        self.logger.error("Consumer error", error=str(error), exc_info=True)

    def get_metrics(self) -> Dict[str, Any]:
        """Get consumer metrics."""
        return {
            "messages_processed": self.messages_processed,
            "messages_failed": self.messages_failed,
            "last_message_time": self.last_message_time,
            "running": self.running,
        }
