"""Request fan-out: job creation and per-combo request publishing."""

import asyncio
import time
from typing import List, Optional, Sequence

import structlog

from shared.utils.errors import (
    NoCompatibleProvidersError,
    StoreUnavailableError,
    ValidationError,
    create_error_context,
)
from shared.utils.identifiers import INTEGRATION_REQUEST_NAMESPACE, deterministic_uuid, new_job_id
from shared.utils.tracing import set_span_attribute, trace_async_function

from .addresses import Account, AddressClassifier
from .chains import Chain, default_chains, filter_enabled, parse_chains
from .config import OrchestratorConfig
from .keys import JobKeyResolver
from .metrics import OrchestratorMetrics
from .models import Combo, EnsureResult, JobMetadata, OutcomeKind, format_timestamp, utcnow
from .output.publishers import RequestPublisher
from .providers import ProviderCompatibilityMatrix
from .store.base import JobStateStore
from .tracker import CompletionTracker


logger = structlog.get_logger(__name__)

SERVICE_NAME = "aggregation-orchestrator"


def build_combos(
    accounts: Sequence[Account],
    chains: Sequence[Chain],
    matrix: ProviderCompatibilityMatrix
) -> List[Combo]:
    """Every (provider, chain, account) whose families line up, sorted by key."""
    combos = []
    for account in accounts:
        for chain in chains:
            if chain.family != account.family:
                continue
            for provider in matrix.providers_for(chain):
                combos.append(Combo(provider=provider.id, chain=chain.slug, account=account.address))
    return sorted(combos, key=lambda combo: combo.key)


class RequestFanout:
    """
    Ensures a job exists for a request and dispatches its combos.

    A live job for the same reuse key is returned as-is without
    publishing. Otherwise a new job is written to the store and one
    request per combo is published concurrently; a publish that fails
    becomes an immediate Failure outcome for that combo only.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        store: JobStateStore,
        matrix: ProviderCompatibilityMatrix,
        publisher: RequestPublisher,
        tracker: CompletionTracker,
        classifier: Optional[AddressClassifier] = None,
        key_resolver: Optional[JobKeyResolver] = None,
        metrics: Optional[OrchestratorMetrics] = None
    ):
        self.config = config
        self.store = store
        self.matrix = matrix
        self.publisher = publisher
        self.tracker = tracker
        self.classifier = classifier or AddressClassifier()
        self.key_resolver = key_resolver or JobKeyResolver()
        self.metrics = metrics or OrchestratorMetrics()

    async def ensure(
        self,
        accounts: Sequence[str],
        chains: Optional[Sequence[str]] = None,
        wallet_group_id: Optional[str] = None
    ) -> EnsureResult:
        """
        Return the job for this request, creating and dispatching it if needed.

        ``chains=None`` selects the default chains for the accounts'
        families; an explicit empty list is rejected.

        Raises:
            ValidationError: empty or malformed accounts or chains
            NoCompatibleProvidersError: nothing to dispatch
            StoreUnavailableError: the job store could not be reached
        """
        started = time.monotonic()
        try:
            async with trace_async_function("aggregation.ensure", {"wallet_group.id": wallet_group_id}):
                return await self._ensure(accounts, chains, wallet_group_id)
        finally:
            self.metrics.ensure_duration.observe(time.monotonic() - started)

    async def _ensure(
        self,
        accounts: Sequence[str],
        chains: Optional[Sequence[str]],
        wallet_group_id: Optional[str]
    ) -> EnsureResult:
        parsed_accounts = self.classifier.parse_many(accounts, self.config.max_accounts)
        requested = self._resolve_chains(parsed_accounts, chains)
        reuse_key = self.key_resolver.resolve(parsed_accounts, requested, wallet_group_id)
        chain_slugs = sorted(chain.slug for chain in requested)
        set_span_attribute("aggregation.reuse_key", reuse_key)

        existing = await self._live_job(reuse_key, chain_slugs)
        if existing is not None:
            self.metrics.job_ensured(reused=True)
            logger.info("Reusing live aggregation job", job_id=existing.job_id, reuse_key=reuse_key)
            return existing

        combos = build_combos(parsed_accounts, requested, self.matrix)
        if not combos:
            raise NoCompatibleProvidersError(
                "No provider supports the requested accounts and chains",
                accounts=[account.address for account in parsed_accounts],
                chains=chain_slugs,
            )

        return await self._create_job(parsed_accounts, chain_slugs, wallet_group_id, reuse_key, combos)

    def _resolve_chains(self, accounts: Sequence[Account], chains: Optional[Sequence[str]]) -> List[Chain]:
        if chains is None:
            candidates = default_chains(account.family for account in accounts)
        else:
            if isinstance(chains, str) or not chains:
                raise ValidationError("At least one chain is required", field="chains")
            candidates = parse_chains(chains)

        enabled = filter_enabled(candidates, self.config.enabled_chains)
        if not enabled:
            raise NoCompatibleProvidersError(
                "None of the requested chains is enabled",
                accounts=[account.address for account in accounts],
                chains=[chain.slug for chain in candidates],
            )
        return enabled

    async def _live_job(self, reuse_key: str, chain_slugs: List[str]) -> Optional[EnsureResult]:
        job_id = await self.store.try_get_pointer(reuse_key)
        if job_id is None:
            return None
        metadata = await self.store.get_metadata(job_id)
        if metadata is None:
            # Expired between the two reads
            return None
        return EnsureResult(
            job_id=job_id,
            reused=True,
            chains=metadata.chains or chain_slugs,
            expected_total=metadata.expected_total,
        )

    async def _create_job(
        self,
        accounts: Sequence[Account],
        chain_slugs: List[str],
        wallet_group_id: Optional[str],
        reuse_key: str,
        combos: List[Combo]
    ) -> EnsureResult:
        ttl = self.config.job_ttl_seconds
        job_id = new_job_id()
        created_at = utcnow()
        metadata = JobMetadata(
            job_id=job_id,
            accounts=[account.address for account in accounts],
            chains=chain_slugs,
            wallet_group_id=wallet_group_id,
            created_at=created_at,
            expected_total=len(combos),
        )
        log = logger.bind(job_id=job_id, reuse_key=reuse_key)

        if not await self.store.create_job_if_absent(metadata, [combo.key for combo in combos], ttl):
            log.warning("Job metadata already existed, falling back to live job")
            existing = await self._live_job(reuse_key, chain_slugs)
            if existing is not None:
                self.metrics.job_ensured(reused=True)
                return existing
            raise StoreUnavailableError(
                "Job creation collided with an existing job, retry the request",
                operation="create_job",
                context=create_error_context(SERVICE_NAME, "ensure", job_id=job_id),
            )

        log.info("Aggregation job created", expected_total=len(combos), accounts=len(accounts), chains=chain_slugs)
        set_span_attribute("job.id", job_id)
        set_span_attribute("job.expected_total", len(combos))

        requested_at = format_timestamp(created_at)
        await asyncio.gather(*(self._publish(job_id, combo, requested_at) for combo in combos))

        await self.store.set_pointer(reuse_key, job_id, ttl)
        self.metrics.job_ensured(reused=False)

        return EnsureResult(job_id=job_id, reused=False, chains=chain_slugs, expected_total=len(combos))

    async def _publish(self, job_id: str, combo: Combo, requested_at: str) -> None:
        message = {
            "jobId": job_id,
            "requestId": deterministic_uuid(INTEGRATION_REQUEST_NAMESPACE, job_id, combo.key),
            "account": combo.account,
            "chains": [combo.chain],
            "provider": combo.provider,
            "requestedAt": requested_at,
            "attempt": 1,
        }
        try:
            await self.publisher.publish_request(self.config.request_topic(combo.provider), combo.provider, message)
        except Exception as e:
            logger.warning("Request publish failed", job_id=job_id, combo=combo.key, error=str(e))
            self.metrics.combo_published(combo.provider, ok=False)
            try:
                await self.tracker.report_outcome(
                    job_id=job_id,
                    provider=combo.provider,
                    chain=combo.chain,
                    account=combo.account,
                    outcome=OutcomeKind.FAILURE,
                    error=f"publish failed: {e}",
                )
            except StoreUnavailableError as report_error:
                # Combo stays pending until the job times out
                logger.error(
                    "Could not record publish failure",
                    job_id=job_id,
                    combo=combo.key,
                    error=report_error.message,
                )
            return
        self.metrics.combo_published(combo.provider, ok=True)
