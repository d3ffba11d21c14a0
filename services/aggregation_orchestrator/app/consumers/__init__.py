"""Inbound messaging."""

from .result_consumer import IntegrationResultConsumer

__all__ = ["IntegrationResultConsumer"]
