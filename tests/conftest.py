"""Pytest configuration and fixtures."""

import pytest
from prometheus_client import CollectorRegistry

from shared.framework.metrics import MetricsCollector
from services.aggregation_orchestrator.app.addresses import AddressFamily
from services.aggregation_orchestrator.app.chains import Chain
from services.aggregation_orchestrator.app.config import OrchestratorConfig
from services.aggregation_orchestrator.app.main import AggregationOrchestrator
from services.aggregation_orchestrator.app.metrics import OrchestratorMetrics
from services.aggregation_orchestrator.app.providers import (
    ProviderCompatibilityMatrix,
    ProviderDescriptor,
    build_registry,
)
from tests.fixtures.mock_services import InMemoryJobStateStore, RecordingPublisher


ORCHESTRATOR_ENV = (
    "AGG_JOB_TTL_SECONDS",
    "AGG_JOB_TIMEOUT_SECONDS",
    "AGG_TIMEOUT_SCAN_SECONDS",
    "AGG_TIMEOUT_MONITOR_ENABLED",
    "AGG_MAX_ACCOUNTS",
    "AGG_RECENT_JOBS_LIMIT",
    "AGG_KEY_PREFIX",
    "AGG_ENABLED_CHAINS",
    "AGG_DISABLED_PROVIDER_CHAINS",
    "WALLET_AGG_ENV",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Strip orchestrator settings inherited from the host environment."""
    for name in ORCHESTRATOR_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def orchestrator_config(clean_env):
    """Orchestrator configuration with defaults."""
    return OrchestratorConfig()


@pytest.fixture
def metrics():
    """Orchestrator metrics on an isolated registry."""
    return OrchestratorMetrics(MetricsCollector("test-orchestrator", registry=CollectorRegistry()))


@pytest.fixture
def store():
    """In-memory job state store."""
    return InMemoryJobStateStore()


@pytest.fixture
def publisher():
    """Publisher recording requests and completion events."""
    return RecordingPublisher()


@pytest.fixture
def base_matrix():
    """Three EVM providers on Base plus one Solana provider."""
    registry = build_registry([
        ProviderDescriptor("alpha", "Alpha", AddressFamily.EVM_LIKE, frozenset({Chain.BASE})),
        ProviderDescriptor("bravo", "Bravo", AddressFamily.EVM_LIKE, frozenset({Chain.BASE, Chain.ETHEREUM})),
        ProviderDescriptor("charlie", "Charlie", AddressFamily.EVM_LIKE, frozenset({Chain.BASE})),
        ProviderDescriptor("solstice", "Solstice", AddressFamily.BASE58_LIKE, frozenset({Chain.SOLANA})),
    ])
    return ProviderCompatibilityMatrix(registry=registry)


@pytest.fixture
def orchestrator(orchestrator_config, store, publisher, base_matrix, metrics):
    """Orchestrator over the in-memory store and the small provider matrix."""
    return AggregationOrchestrator(
        orchestrator_config,
        store,
        publisher,
        completion_publisher=publisher,
        matrix=base_matrix,
        metrics=metrics,
    )


@pytest.fixture
def default_orchestrator(orchestrator_config, store, publisher, metrics):
    """Orchestrator using the built-in provider registry."""
    return AggregationOrchestrator(
        orchestrator_config,
        store,
        publisher,
        completion_publisher=publisher,
        metrics=metrics,
    )
