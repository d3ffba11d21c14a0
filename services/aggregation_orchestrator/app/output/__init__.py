"""Outbound messaging."""

from .publishers import (
    CompletionPublisher,
    KafkaCompletionPublisher,
    KafkaRequestPublisher,
    RequestPublisher,
)

__all__ = [
    "CompletionPublisher",
    "KafkaCompletionPublisher",
    "KafkaRequestPublisher",
    "RequestPublisher",
]
