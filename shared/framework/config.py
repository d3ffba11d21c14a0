"""
Configuration management for the aggregation services.

Provides typed configuration classes with environment variable
injection and validation.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Any


@dataclass
class KafkaConfig:
    """Kafka configuration."""
    bootstrap_servers: str = field(default_factory=lambda: os.getenv("WALLET_AGG_KAFKA_BOOTSTRAP", "localhost:9092"))
    consumer_group: str = field(default_factory=lambda: os.getenv("WALLET_AGG_CONSUMER_GROUP", "wallet-agg"))
    auto_offset_reset: str = field(default_factory=lambda: os.getenv("WALLET_AGG_KAFKA_AUTO_OFFSET_RESET", "latest"))
    enable_auto_commit: bool = field(default_factory=lambda: os.getenv("WALLET_AGG_KAFKA_AUTO_COMMIT", "true").lower() == "true")
    max_poll_records: int = field(default_factory=lambda: int(os.getenv("WALLET_AGG_KAFKA_MAX_POLL_RECORDS", "500")))
    session_timeout_ms: int = field(default_factory=lambda: int(os.getenv("WALLET_AGG_KAFKA_SESSION_TIMEOUT_MS", "30000")))
    heartbeat_interval_ms: int = field(default_factory=lambda: int(os.getenv("WALLET_AGG_KAFKA_HEARTBEAT_MS", "3000")))


@dataclass
class DatabaseConfig:
    """Shared store configuration."""
    redis_url: str = field(default_factory=lambda: os.getenv("WALLET_AGG_REDIS_URL", "redis://localhost:6379/0"))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv("WALLET_AGG_REDIS_MAX_CONNECTIONS", "20")))
    redis_timeout: int = field(default_factory=lambda: int(os.getenv("WALLET_AGG_REDIS_TIMEOUT", "5")))


@dataclass
class ObservabilityConfig:
    """Observability configuration."""
    log_level: str = field(default_factory=lambda: os.getenv("WALLET_AGG_LOG_LEVEL", "info"))
    log_format: str = field(default_factory=lambda: os.getenv("WALLET_AGG_LOG_FORMAT", "json"))
    trace_enabled: bool = field(default_factory=lambda: os.getenv("WALLET_AGG_TRACE_ENABLED", "true").lower() == "true")
    trace_endpoint: str = field(default_factory=lambda: os.getenv("WALLET_AGG_TRACE_ENDPOINT", ""))
    health_port: int = field(default_factory=lambda: int(os.getenv("WALLET_AGG_HEALTH_PORT", "8080")))


@dataclass
class ServiceConfig:
    """Base service configuration."""
    service_name: str
    version: str = field(default_factory=lambda: os.getenv("WALLET_AGG_VERSION", "1.0.0"))
    environment: str = field(default_factory=lambda: os.getenv("WALLET_AGG_ENV", "local"))

    # Sub-configurations
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.service_name:
            raise ValueError("service_name is required")

        if self.environment not in ["local", "dev", "staging", "prod"]:
            raise ValueError(f"Invalid environment: {self.environment}")

    @classmethod
    def from_env(cls, service_name: str) -> "ServiceConfig":
        """Create configuration from environment variables."""
        return cls(service_name=service_name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "service_name": self.service_name,
            "version": self.version,
            "environment": self.environment,
            "kafka": {
                "bootstrap_servers": self.kafka.bootstrap_servers,
                "consumer_group": self.kafka.consumer_group,
                "auto_offset_reset": self.kafka.auto_offset_reset,
                "enable_auto_commit": self.kafka.enable_auto_commit,
                "max_poll_records": self.kafka.max_poll_records,
                "session_timeout_ms": self.kafka.session_timeout_ms,
            },
            "database": {
                "redis_url": self.database.redis_url,
                "redis_max_connections": self.database.redis_max_connections,
            },
            "observability": {
                "log_level": self.observability.log_level,
                "log_format": self.observability.log_format,
                "trace_enabled": self.observability.trace_enabled,
                "health_port": self.observability.health_port,
            },
        }
