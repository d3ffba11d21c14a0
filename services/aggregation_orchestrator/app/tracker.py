"""Completion tracking: outcome intake, finalization and wholesale timeout."""

import json
from typing import Any, Dict, List, Optional

import structlog

from shared.utils.errors import ValidationError
from shared.utils.tracing import add_span_event, trace_async_function

from .addresses import AddressClassifier
from .chains import Chain
from .metrics import OrchestratorMetrics
from .models import (
    FinalizeResult,
    JobMetadata,
    OutcomeKind,
    OutcomeReport,
    ProcessedRecord,
    ReportResult,
    combo_key,
    format_timestamp,
    utcnow,
)
from .output.publishers import CompletionPublisher
from .store.base import JobStateStore, TimeoutMarkCode


logger = structlog.get_logger(__name__)

TIMEOUT_MARK_ATTEMPTS = 3


def merge_items(payloads: Dict[str, Any]) -> List[Any]:
    """
    Merge success payload fragments into one item list.

    Fragments are visited in combo-key order. Lists are extended,
    a mapping carrying an ``items`` list contributes that list, and
    any other value is appended as a single item.
    """
    items: List[Any] = []
    for key in sorted(payloads):
        fragment = payloads[key]
        if fragment is None:
            continue
        if isinstance(fragment, list):
            items.extend(fragment)
        elif isinstance(fragment, dict) and isinstance(fragment.get("items"), list):
            items.extend(fragment["items"])
        else:
            items.append(fragment)
    return items


def completion_event(metadata: JobMetadata, result: FinalizeResult) -> Dict[str, Any]:
    return {
        "type": "WalletAggregationCompleted",
        "jobId": result.job_id,
        "accounts": list(metadata.accounts),
        "walletGroupId": metadata.wallet_group_id,
        "status": result.status.value,
        "completedAt": format_timestamp(result.completed_at),
        "expected": result.expected_total,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "timedOut": result.timed_out,
    }


class CompletionTracker:
    """
    Applies outcome reports to job state.

    Reports for expired jobs are ignored. The report that empties a
    job's pending set triggers finalization, which a compare-and-set
    in the store lets happen exactly once per job.
    """

    def __init__(
        self,
        store: JobStateStore,
        completion_publisher: Optional[CompletionPublisher] = None,
        classifier: Optional[AddressClassifier] = None,
        metrics: Optional[OrchestratorMetrics] = None
    ):
        self.store = store
        self.completion_publisher = completion_publisher
        self.classifier = classifier or AddressClassifier()
        self.metrics = metrics or OrchestratorMetrics()

    async def report_outcome(
        self,
        job_id: str,
        provider: str,
        chain: str,
        outcome: Any,
        account: Optional[str] = None,
        payload: Any = None,
        error: Optional[str] = None
    ) -> Optional[ReportResult]:
        """Report one combo's outcome. Returns None when the job has expired."""
        return await self.handle_report(
            OutcomeReport(
                job_id=job_id,
                provider=provider,
                chain=chain,
                outcome=OutcomeKind.parse(outcome),
                account=account,
                payload=payload,
                error=error,
            )
        )

    async def handle_report(self, report: OutcomeReport) -> Optional[ReportResult]:
        log = logger.bind(job_id=report.job_id, provider=report.provider, outcome=report.outcome.value)

        async with trace_async_function(
            "aggregation.report_outcome",
            {"job.id": report.job_id, "provider": report.provider, "outcome": report.outcome.value},
        ):
            provider = report.provider.strip().lower()
            chain_slug = Chain.parse(report.chain).slug
            account = await self._resolve_account(report)
            if account is None:
                log.info("Outcome for expired job ignored")
                return None

            key = combo_key(provider, chain_slug, account)
            record = ProcessedRecord(
                provider=provider,
                chain=chain_slug,
                account=account,
                status=report.outcome.record_status,
                error=report.error if report.outcome is not OutcomeKind.SUCCESS else None,
                updated_at=format_timestamp(utcnow()),
            )
            payload_json = None
            if report.outcome is OutcomeKind.SUCCESS and report.payload is not None:
                payload_json = json.dumps(report.payload, default=str)

            result = await self.store.atomic_report_outcome(
                report.job_id, key, report.outcome, record, payload_json
            )
            if result is None:
                log.info("Outcome for expired job ignored", combo=key)
                return None

            self.metrics.outcome_reported(report.outcome.value, result.removed)
            if not result.known:
                log.warning("Outcome for unknown combo ignored", combo=key)
            elif not result.removed:
                log.debug("Duplicate outcome recorded", combo=key)

            if result.removed and result.pending_empty and not result.final_emitted:
                add_span_event("pending_drained", {"job.id": report.job_id})
                await self.finalize(report.job_id)

            return result

    async def _resolve_account(self, report: OutcomeReport) -> Optional[str]:
        if report.account:
            return self.classifier.normalize(report.account)

        metadata = await self.store.get_metadata(report.job_id)
        if metadata is None:
            return None
        if len(metadata.accounts) != 1:
            raise ValidationError(
                "Outcome for a multi-account job must name its account",
                field="account",
                value=report.job_id,
            )
        return metadata.accounts[0]

    async def finalize(self, job_id: str) -> Optional[FinalizeResult]:
        """Assemble items and finalize; returns None if another caller already did."""
        payloads = await self.store.get_payloads(job_id)
        items = merge_items(payloads)
        result = await self.store.try_finalize(job_id, items, utcnow())
        if result is None:
            logger.debug("Finalization skipped, job not ready or already final", job_id=job_id)
            return None

        logger.info(
            "Aggregation job completed",
            job_id=job_id,
            status=result.status.value,
            succeeded=result.succeeded,
            failed=result.failed,
            timed_out=result.timed_out,
            items=result.item_count,
        )
        await self._announce(result)
        return result

    async def mark_timed_out(self, job_id: str) -> Optional[FinalizeResult]:
        """
        Time out a running job wholesale.

        Remaining pending combos count as timed out and the job is
        finalized with status TimedOut. No-op for unknown or terminal
        jobs.
        """
        for _ in range(TIMEOUT_MARK_ATTEMPTS):
            payloads = await self.store.get_payloads(job_id)
            mark = await self.store.mark_timed_out(job_id, merge_items(payloads), len(payloads), utcnow())

            if mark.code == TimeoutMarkCode.MARKED:
                logger.warning(
                    "Aggregation job timed out",
                    job_id=job_id,
                    succeeded=mark.result.succeeded,
                    failed=mark.result.failed,
                    timed_out=mark.result.timed_out,
                )
                await self._announce(mark.result)
                return mark.result
            if mark.code == TimeoutMarkCode.DRAINED:
                # Every combo reported but nobody finalized yet
                return await self.finalize(job_id)
            if mark.code in (TimeoutMarkCode.TERMINAL, TimeoutMarkCode.NOT_FOUND):
                logger.debug("Timeout skipped", job_id=job_id, reason=mark.code.value)
                return None
            # PAYLOADS_CHANGED: a success landed meanwhile, rebuild items
        logger.warning("Timeout abandoned after concurrent updates", job_id=job_id)
        return None

    async def _announce(self, result: FinalizeResult) -> None:
        self.metrics.job_finalized(result.status.value)
        if self.completion_publisher is None:
            return
        metadata = await self.store.get_metadata(result.job_id)
        if metadata is None:
            return
        try:
            await self.completion_publisher.publish_completion(completion_event(metadata, result))
        except Exception as e:
            logger.error("Failed to publish completion event", job_id=result.job_id, error=str(e))
