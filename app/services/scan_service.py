import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from app.core.cache import get_cached_resources, invalidate_instance_cache, set_cached_resources
from app.core.config import settings
from app.core.exceptions import N8NClientError
from app.schemas.credential import Credential, CredentialSource, CredentialSummary
from app.schemas.finding import SecurityFinding, Severity
from app.schemas.scan import InstanceConnection, ScanResult, ScanState, ScanStats
from app.schemas.workflow import Workflow, WorkflowStatus, WorkflowSummary
from app.services.analytics_service import AnalyticsService
from app.services.detectors import WORKFLOW_DETECTORS, detect_credential_usage, usage_by_credential, workflow_references
from app.services.n8n_client import N8NClient, normalize_credentials, normalize_workflows
from app.services.workflow_classifier import classify, partition_workflows, workflow_breakdown

logger = logging.getLogger(__name__)


def reconcile_credentials(
    remote_credentials: list[Credential],
    workflows: list[Workflow],
    instance_id: str = "",
) -> list[Credential]:
    """
    Merge the remote credential list with credentials referenced by nodes.

    A node reference resolves to a remote credential by id first and by name
    as a fallback. References that resolve to nothing become workflow-sourced
    credentials so they still take part in usage analysis.
    """
    reconciled = list(remote_credentials)
    known = set()
    for credential in remote_credentials:
        known.update(credential.match_keys())

    for workflow in workflows:
        for reference in sorted(workflow_references(workflow)):
            if reference in known:
                continue
            known.add(reference)
            reconciled.append(Credential(
                id=reference,
                n8n_id=reference,
                name=reference,
                instance_id=instance_id,
                source=CredentialSource.WORKFLOW,
            ))
    return reconciled


def with_usage(credentials: list[Credential], active_workflows: list[Workflow]) -> list[Credential]:
    """Copies of the credentials with usedBy filled from the active workflows"""
    usage = usage_by_credential(credentials, active_workflows)
    return [
        credential.model_copy(update={"used_by": usage.get(credential.id, [])})
        for credential in credentials
    ]


def count_unique_references(workflows: list[Workflow]) -> int:
    references = set()
    for workflow in workflows:
        references.update(workflow_references(workflow))
    return len(references)


def build_stats(
    workflows: list[Workflow],
    findings: list[SecurityFinding],
    total_credentials: int,
    unique_credentials: int,
) -> ScanStats:
    active_findings = [finding for finding in findings if not finding.is_resolved]
    by_severity = {severity: 0 for severity in Severity}
    for finding in active_findings:
        by_severity[finding.severity] += 1

    return ScanStats(
        workflows=workflow_breakdown(workflows),
        total_credentials=total_credentials,
        unique_credentials=unique_credentials,
        active_findings=len(active_findings),
        critical_findings=by_severity[Severity.CRITICAL],
        high_findings=by_severity[Severity.HIGH],
        medium_findings=by_severity[Severity.MEDIUM],
        low_findings=by_severity[Severity.LOW],
    )


def summarize_workflow(workflow: Workflow) -> WorkflowSummary:
    return WorkflowSummary(
        id=workflow.id,
        name=workflow.name,
        is_active=workflow.is_active,
        status=classify(workflow),
        node_count=len(workflow.nodes),
    )


def summarize_credential(credential: Credential) -> CredentialSummary:
    return CredentialSummary(
        id=credential.id,
        name=credential.name,
        type=credential.type,
        source=credential.source,
        is_active=credential.is_active,
        used_by=len(credential.used_by),
    )


class ScanService:
    """
    Runs one security scan of one n8n instance.

    idle -> fetching -> analyzing -> aggregating -> done, or failed from any
    non-idle state. A scan holds no state between runs: the same remote
    snapshot always yields the same findings.
    """

    def __init__(self, client_factory: Callable[..., N8NClient] = N8NClient):
        self.client_factory = client_factory
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def _transition(self, instance_id: str, current: ScanState, new: ScanState) -> ScanState:
        self.logger.info(f"scan_instance: {current.value} -> {new.value} - instance: {instance_id}")
        return new

    async def _load_raw(
        self,
        instance_id: str,
        kind: str,
        fetch: Callable[[], Awaitable[list[dict]]],
    ) -> list[dict]:
        """Raw collection from the instance, through the response cache when enabled"""
        if not settings.n8n_api_cache_enabled:
            return await fetch()

        # Redis calls block; keep them off the event loop shared by concurrent scans
        cached = await asyncio.to_thread(get_cached_resources, instance_id, kind)
        if cached is not None:
            self.logger.info(f"_load_raw: Cache hit - instance: {instance_id}, kind: {kind}")
            return cached

        items = await fetch()
        await asyncio.to_thread(
            set_cached_resources, instance_id, kind, items, ttl_minutes=settings.n8n_cache_ttl_minutes
        )
        return items

    async def _fetch_credentials(self, client: N8NClient, instance_id: str) -> Optional[list[Credential]]:
        """Remote credential list, or None when the instance does not expose it"""
        try:
            raw = await self._load_raw(instance_id, "credentials", client.fetch_credentials)
        except N8NClientError as e:
            self.logger.info(
                f"_fetch_credentials: Credentials feature not available - instance: {instance_id}, "
                f"error_type: {e.error_type}, {e}"
            )
            return None
        return normalize_credentials(raw, instance_id)

    async def list_credentials(
        self,
        instance: InstanceConnection,
        refresh: bool = False,
    ) -> tuple[list[Credential], bool]:
        """
        Reconciled credential inventory of an instance and whether the remote
        credentials endpoint was available. Never fails because of a missing endpoint.
        """
        self.logger.info(f"list_credentials: Entry - instance: {instance.id}")
        if refresh:
            await asyncio.to_thread(invalidate_instance_cache, instance.id)

        client = self.client_factory(instance.url, instance.api_key)
        raw_workflows = await self._load_raw(instance.id, "workflows", client.fetch_workflows)
        workflows = normalize_workflows(raw_workflows, instance.id)
        remote_credentials = await self._fetch_credentials(client, instance.id)

        credentials = with_usage(
            reconcile_credentials(remote_credentials or [], workflows, instance.id),
            partition_workflows(workflows)[WorkflowStatus.ACTIVE],
        )
        self.logger.info(f"list_credentials: Success - instance: {instance.id}, count: {len(credentials)}")
        return credentials, remote_credentials is not None

    async def scan_instance(
        self,
        instance: InstanceConnection,
        refresh: bool = False,
        user_id: Optional[str] = None,
    ) -> ScanResult:
        """
        Scan one instance. Raises the N8NClientError subclass of a failed
        workflow fetch; a failed credentials fetch only empties the credential list.
        """
        self.logger.info(f"scan_instance: Entry - instance: {instance.id}, refresh: {refresh}")
        state = ScanState.IDLE
        scan_date = datetime.now(timezone.utc)

        try:
            state = self._transition(instance.id, state, ScanState.FETCHING)
            if refresh:
                await asyncio.to_thread(invalidate_instance_cache, instance.id)

            client = self.client_factory(instance.url, instance.api_key)
            raw_workflows = await self._load_raw(instance.id, "workflows", client.fetch_workflows)
            workflows = normalize_workflows(raw_workflows, instance.id)
            remote_credentials = await self._fetch_credentials(client, instance.id)

            state = self._transition(instance.id, state, ScanState.ANALYZING)
            partitions = partition_workflows(workflows)
            active_workflows = partitions[WorkflowStatus.ACTIVE]

            findings: list[SecurityFinding] = []
            for workflow in active_workflows:
                for detector in WORKFLOW_DETECTORS:
                    findings.extend(detector(workflow, detected_at=scan_date))

            credentials = with_usage(
                reconcile_credentials(remote_credentials or [], workflows, instance.id),
                active_workflows,
            )
            findings.extend(detect_credential_usage(
                credentials, active_workflows, instance_id=instance.id, detected_at=scan_date
            ))

            state = self._transition(instance.id, state, ScanState.AGGREGATING)
            stats = build_stats(
                workflows,
                findings,
                total_credentials=len(remote_credentials or []),
                unique_credentials=count_unique_references(workflows),
            )
            result = ScanResult(
                instance_id=instance.id,
                stats=stats,
                findings=findings,
                workflows=[summarize_workflow(workflow) for workflow in active_workflows],
                all_workflows=[summarize_workflow(workflow) for workflow in workflows],
                credentials=[summarize_credential(credential) for credential in credentials],
                credentials_available=remote_credentials is not None,
                scan_date=scan_date,
            )
            result.state = self._transition(instance.id, state, ScanState.DONE)

            await asyncio.to_thread(
                self.analytics.log_success,
                action='scan_instance',
                user_id=user_id,
                parameters={
                    'instance_id': instance.id,
                    'workflows': stats.workflows.total,
                    'findings': len(findings),
                },
            )
            self.logger.info(
                f"scan_instance: Success - instance: {instance.id}, "
                f"workflows: {stats.workflows.total}, findings: {len(findings)}"
            )
            return result
        except N8NClientError as e:
            self._transition(instance.id, state, ScanState.FAILED)
            await asyncio.to_thread(
                self.analytics.log_failure,
                action='scan_instance',
                error=str(e),
                user_id=user_id,
                parameters={'instance_id': instance.id},
                error_type=e.error_type,
            )
            self.logger.error(f"scan_instance: Failure - instance: {instance.id}, {e}")
            raise
        except Exception as e:
            self._transition(instance.id, state, ScanState.FAILED)
            await asyncio.to_thread(
                self.analytics.log_failure,
                action='scan_instance',
                error=str(e),
                user_id=user_id,
                parameters={'instance_id': instance.id},
                error_type='unexpected',
            )
            self.logger.error(f"scan_instance: Failure - instance: {instance.id}, {e}")
            raise
