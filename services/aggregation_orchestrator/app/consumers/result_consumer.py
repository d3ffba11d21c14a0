"""Consumer turning integration result messages into outcome reports."""

import time
from typing import Any, Dict, List

import structlog

from shared.framework.consumer import ConsumerConfig, KafkaConsumer
from shared.framework.metrics import MetricsCollector
from shared.utils.errors import DataProcessingError
from shared.utils.tracing import trace_kafka_consumer

from ..config import OrchestratorConfig
from ..models import OutcomeReport
from ..tracker import CompletionTracker


logger = structlog.get_logger(__name__)


class IntegrationResultConsumer:
    """Feeds result messages from every provider topic into the tracker."""

    def __init__(
        self,
        config: OrchestratorConfig,
        tracker: CompletionTracker,
        metrics: MetricsCollector
    ):
        self.config = config
        self.tracker = tracker
        self.metrics = metrics
        self.consumer = KafkaConsumer(
            ConsumerConfig.from_kafka_config(
                topics=[config.result_topic_pattern],
                group_id=config.consumer_group,
                kafka_config=config.kafka,
                enable_auto_commit=False,
            ),
            config.kafka,
            message_handler=self.handle_messages,
        )

    async def start(self) -> None:
        await self.consumer.start()

    async def stop(self) -> None:
        await self.consumer.stop()

    async def handle_messages(self, messages: List[Dict[str, Any]]) -> None:
        """
        Apply a batch.

        A malformed or rejected message is logged and counted. A
        retryable failure such as a store outage propagates so the
        batch is not committed and gets delivered again.
        """
        for message in messages:
            await self.handle_message(message)

    async def handle_message(self, message: Dict[str, Any]) -> None:
        topic = message.get("topic", "unknown")
        started = time.monotonic()
        trace_kafka_consumer(topic, message.get("partition", -1), message.get("offset", -1))

        try:
            report = OutcomeReport.from_message(message.get("payload"))
            await self.tracker.handle_report(report)
        except DataProcessingError as e:
            if e.retryable:
                logger.error(
                    "Result message deferred",
                    topic=topic,
                    offset=message.get("offset"),
                    error=e.message,
                    error_code=e.error_code,
                )
                self.metrics.record_error(e.error_code, "result_consumer")
                raise
            logger.warning(
                "Result message rejected",
                topic=topic,
                offset=message.get("offset"),
                error=e.message,
                error_code=e.error_code,
            )
            self.metrics.record_error(e.error_code, "result_consumer")
            self.metrics.record_message_processed(topic, "rejected")
            return

        self.metrics.record_message_processed(
            topic,
            "ok",
            duration=time.monotonic() - started,
            message_type=report.outcome.value,
        )
