import asyncio
import logging
from collections import Counter
from typing import Iterable, Optional

from app.core.exceptions import N8NClientError
from app.schemas.scan import (
    AggregatedScanResult,
    AggregatedStats,
    InstanceConnection,
    InstanceScanOutcome,
    InstanceStats,
    ScanResult,
)
from app.schemas.workflow import WorkflowBreakdown
from app.services.analytics_service import AnalyticsService
from app.services.scan_service import ScanService

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("development", "staging", "production")


def calculate_instance_stats(instances: Iterable) -> InstanceStats:
    """Counts of registered instances by active flag and environment"""
    instances = list(instances)
    environments = {environment: 0 for environment in ENVIRONMENTS}
    for instance in instances:
        environment = getattr(instance, "environment", None) or "production"
        environments[environment] = environments.get(environment, 0) + 1

    active = sum(1 for instance in instances if getattr(instance, "is_active", True))
    return InstanceStats(
        total_instances=len(instances),
        active_instances=active,
        inactive_instances=len(instances) - active,
        environments=environments,
    )


def merge_results(outcomes: list[InstanceScanOutcome]) -> AggregatedScanResult:
    results: list[ScanResult] = [outcome.result for outcome in outcomes if outcome.success and outcome.result]

    workflows = WorkflowBreakdown()
    stats = AggregatedStats(
        total_instances=len(outcomes),
        scanned_instances=len(results),
        failed_instances=len(outcomes) - len(results),
    )
    findings = []
    findings_by_type: Counter = Counter()
    last_scan_date = None

    for result in results:
        workflows.total += result.stats.workflows.total
        workflows.active += result.stats.workflows.active
        workflows.inactive += result.stats.workflows.inactive
        workflows.archived += result.stats.workflows.archived

        stats.total_credentials += result.stats.total_credentials
        stats.active_findings += result.stats.active_findings
        stats.critical_findings += result.stats.critical_findings
        stats.high_findings += result.stats.high_findings
        stats.medium_findings += result.stats.medium_findings
        stats.low_findings += result.stats.low_findings

        findings.extend(result.findings)
        findings_by_type.update(finding.type.value for finding in result.findings)
        if last_scan_date is None or result.scan_date > last_scan_date:
            last_scan_date = result.scan_date

    instances_with_workflows = sum(1 for result in results if result.stats.workflows.total > 0)
    stats.workflows = workflows
    stats.instances_with_workflows = instances_with_workflows
    stats.average_workflows_per_instance = (
        workflows.total / instances_with_workflows if instances_with_workflows else 0.0
    )
    stats.total_findings = len(findings)
    stats.findings_by_type = dict(findings_by_type)
    stats.last_scan_date = last_scan_date
    return AggregatedScanResult(stats=stats, findings=findings, instances=outcomes)


class AggregationService:
    """Scans many instances concurrently and merges what succeeded"""

    def __init__(self, scan_service: Optional[ScanService] = None):
        self.scan_service = scan_service or ScanService()
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def _outcome(self, instance: InstanceConnection, result) -> InstanceScanOutcome:
        if isinstance(result, ScanResult):
            return InstanceScanOutcome(
                instance_id=instance.id,
                instance_name=instance.name,
                success=True,
                result=result,
            )

        outcome = InstanceScanOutcome.failure(instance.id, instance.name, result)
        if not isinstance(result, N8NClientError):
            outcome.error_type = "unexpected"
        self.logger.warning(
            f"scan_instances: Instance failed - instance: {instance.id}, error_type: {outcome.error_type}, {result}"
        )
        return outcome

    async def scan_instances(
        self,
        instances: list[InstanceConnection],
        refresh: bool = False,
        user_id: Optional[str] = None,
        failed: Optional[list[InstanceScanOutcome]] = None,
    ) -> AggregatedScanResult:
        """
        Scan every instance as its own task. One instance failing never
        cancels or hides the others: it becomes an error outcome.
        `failed` carries instances that could not even be prepared for a scan
        (e.g. an unreadable stored key); they are reported ahead of the scanned ones.
        """
        failed = list(failed or [])
        self.logger.info(
            f"scan_instances: Entry - instances: {len(instances)}, failed before scan: {len(failed)}, refresh: {refresh}"
        )

        results = await asyncio.gather(
            *(self.scan_service.scan_instance(instance, refresh=refresh, user_id=user_id) for instance in instances),
            return_exceptions=True,
        )
        for result in results:
            # Cancellation and interpreter exits are not per-instance failures
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        outcomes = failed + [self._outcome(instance, result) for instance, result in zip(instances, results)]
        aggregated = merge_results(outcomes)

        await asyncio.to_thread(
            self.analytics.log_success,
            action='scan_instances',
            user_id=user_id,
            parameters={
                'instances': aggregated.stats.total_instances,
                'failed': aggregated.stats.failed_instances,
                'findings': aggregated.stats.total_findings,
            },
        )
        self.logger.info(
            f"scan_instances: Success - scanned: {aggregated.stats.scanned_instances}, "
            f"failed: {aggregated.stats.failed_instances}, findings: {aggregated.stats.total_findings}"
        )
        return aggregated
