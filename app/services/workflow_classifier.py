"""
Workflow lifecycle classification.

Workflows whose name starts with "(" are tracked: their status follows the n8n
active switch. Every other workflow is archived, whatever its active flag.
"""

from typing import Iterable

from app.schemas.workflow import Workflow, WorkflowBreakdown, WorkflowStatus

TRACKED_PREFIX = "("


def is_trackable(workflow: Workflow) -> bool:
    name = workflow.name or ""
    return name.startswith(TRACKED_PREFIX)


def classify(workflow: Workflow) -> WorkflowStatus:
    if not is_trackable(workflow):
        return WorkflowStatus.ARCHIVED
    return WorkflowStatus.ACTIVE if workflow.is_active else WorkflowStatus.INACTIVE


def partition_workflows(workflows: Iterable[Workflow]) -> dict[WorkflowStatus, list[Workflow]]:
    """Group workflows by status, preserving input order within each group"""
    partitions: dict[WorkflowStatus, list[Workflow]] = {status: [] for status in WorkflowStatus}
    for workflow in workflows:
        partitions[classify(workflow)].append(workflow)
    return partitions


def workflow_breakdown(workflows: Iterable[Workflow]) -> WorkflowBreakdown:
    partitions = partition_workflows(workflows)
    return WorkflowBreakdown(
        total=sum(len(group) for group in partitions.values()),
        active=len(partitions[WorkflowStatus.ACTIVE]),
        inactive=len(partitions[WorkflowStatus.INACTIVE]),
        archived=len(partitions[WorkflowStatus.ARCHIVED]),
    )
