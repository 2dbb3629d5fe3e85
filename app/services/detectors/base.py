"""Shared helpers for the finding detectors."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterator

from app.schemas.finding import FindingType, SecurityFinding, Severity
from app.schemas.workflow import Workflow, WorkflowNode

logger = logging.getLogger(__name__)


def serialize_parameters(parameters: Any) -> str:
    """
    Stable text form of a node's parameters for pattern matching.
    Sorted keys and compact separators so identical parameters always give identical text.
    """
    return json.dumps(
        parameters or {},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def iter_node_texts(workflow: Workflow) -> Iterator[tuple[WorkflowNode, str]]:
    """Yield (node, serialized parameters); a node that cannot be serialized is skipped"""
    for node in workflow.nodes or []:
        try:
            text = serialize_parameters(node.parameters)
        except (TypeError, ValueError) as e:
            logger.warning(
                f"iter_node_texts: Skipping node {node.id} in workflow {workflow.id} - {e}"
            )
            continue
        yield node, text


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_finding(
    finding_id: str,
    finding_type: FindingType,
    severity: Severity,
    title: str,
    description: str,
    instance_id: str,
    detected_at: datetime | None = None,
    workflow: Workflow | None = None,
    node: WorkflowNode | None = None,
    credential_id: str | None = None,
    suggestion: str | None = None,
    metadata: dict | None = None,
) -> SecurityFinding:
    timestamp = detected_at or utcnow()
    return SecurityFinding(
        id=finding_id,
        type=finding_type,
        severity=severity,
        title=title,
        description=description,
        instance_id=instance_id,
        workflow_id=workflow.id if workflow else None,
        workflow_name=workflow.name if workflow else None,
        node_id=node.id if node else None,
        credential_id=credential_id,
        is_resolved=False,
        suggestion=suggestion,
        metadata=metadata,
        created_at=timestamp,
        updated_at=timestamp,
    )
