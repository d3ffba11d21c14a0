"""Configuration for the aggregation orchestrator service."""

import os
from typing import Optional, Set, Tuple

import structlog

from shared.framework.config import ServiceConfig
from shared.utils.errors import ConfigurationError, ValidationError

from .chains import Chain


logger = structlog.get_logger(__name__)

JOB_TTL_RANGE = (30, 1800)
JOB_TIMEOUT_RANGE = (30, 3600)
SCAN_INTERVAL_RANGE = (5, 300)


def clamp(value: int, bounds: Tuple[int, int]) -> int:
    low, high = bounds
    return max(low, min(high, value))


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", setting=name) from e


def parse_enabled_chains(raw: Optional[str]) -> Optional[Set[Chain]]:
    """Comma-separated chain names; blank means every chain."""
    if raw is None or not raw.strip():
        return None
    try:
        return {Chain.parse(name) for name in raw.split(",") if name.strip()}
    except ValidationError as e:
        raise ConfigurationError(f"Invalid AGG_ENABLED_CHAINS: {e.message}", setting="AGG_ENABLED_CHAINS") from e


def parse_disabled_pairs(raw: Optional[str]) -> Set[Tuple[str, Chain]]:
    """Comma-separated ``provider:chain`` pairs."""
    pairs: Set[Tuple[str, Chain]] = set()
    if not raw:
        return pairs
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        provider, sep, chain_name = entry.partition(":")
        if not sep or not provider.strip():
            raise ConfigurationError(
                f"Invalid AGG_DISABLED_PROVIDER_CHAINS entry: {entry!r}",
                setting="AGG_DISABLED_PROVIDER_CHAINS",
            )
        try:
            pairs.add((provider.strip().lower(), Chain.parse(chain_name)))
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid AGG_DISABLED_PROVIDER_CHAINS entry: {e.message}",
                setting="AGG_DISABLED_PROVIDER_CHAINS",
            ) from e
    return pairs


class OrchestratorConfig(ServiceConfig):
    """Configuration for the aggregation orchestrator."""

    def __init__(self) -> None:
        super().__init__(service_name="aggregation-orchestrator")

        self.job_ttl_seconds = clamp(_int_env("AGG_JOB_TTL_SECONDS", 300), JOB_TTL_RANGE)
        # A job is never timed out later than its state lives
        self.job_timeout_seconds = min(
            clamp(_int_env("AGG_JOB_TIMEOUT_SECONDS", 180), JOB_TIMEOUT_RANGE),
            self.job_ttl_seconds,
        )
        self.timeout_scan_seconds = clamp(_int_env("AGG_TIMEOUT_SCAN_SECONDS", 60), SCAN_INTERVAL_RANGE)
        self.timeout_monitor_enabled = os.getenv("AGG_TIMEOUT_MONITOR_ENABLED", "true").lower() == "true"

        self.max_accounts = _int_env("AGG_MAX_ACCOUNTS", 3)
        if self.max_accounts < 1:
            raise ConfigurationError("AGG_MAX_ACCOUNTS must be at least 1", setting="AGG_MAX_ACCOUNTS")
        self.recent_jobs_limit = max(1, _int_env("AGG_RECENT_JOBS_LIMIT", 20))

        self.key_prefix = os.getenv("AGG_KEY_PREFIX", "wallet:agg:")
        self.enabled_chains = parse_enabled_chains(os.getenv("AGG_ENABLED_CHAINS"))
        self.disabled_provider_chains = parse_disabled_pairs(os.getenv("AGG_DISABLED_PROVIDER_CHAINS"))

        self.request_topic_prefix = os.getenv("AGG_REQUEST_TOPIC_PREFIX", "integration.request.")
        self.result_topic_pattern = os.getenv("AGG_RESULT_TOPIC_PATTERN", r"^integration\.result\..*")
        self.completion_topic = os.getenv("AGG_COMPLETION_TOPIC", "aggregation.completed")
        self.consumer_group = os.getenv("AGG_CONSUMER_GROUP", f"aggregation-orchestrator-{self.environment}")

    def request_topic(self, provider_id: str) -> str:
        return f"{self.request_topic_prefix}{provider_id}"
