"""
Unused and over-shared credential detection.

A credential is used by a workflow when any node of that workflow references
it by remote id, local id or, as a best-effort fallback, by name. Node
references are not guaranteed to use one canonical key, so all three are
tried.
"""

from datetime import datetime
from typing import Iterable

from app.schemas.credential import Credential
from app.schemas.finding import FindingType, SecurityFinding, Severity
from app.schemas.workflow import Workflow
from app.services.detectors.base import build_finding

# More workflows than this sharing one credential is a broad blast radius
SHARED_CREDENTIAL_THRESHOLD = 3


def workflow_references(workflow: Workflow) -> set[str]:
    """All credential references made by the nodes of a workflow"""
    references = set()
    for node in workflow.nodes or []:
        references.update(node.credentials or [])
    return references


def workflows_using(credential: Credential, workflows: Iterable[Workflow]) -> list[str]:
    """Distinct ids of the workflows referencing the credential, in input order"""
    keys = credential.match_keys()
    used_by = []
    for workflow in workflows:
        workflow_key = workflow.id or workflow.name
        if workflow_key in used_by:
            continue
        if keys & workflow_references(workflow):
            used_by.append(workflow_key)
    return used_by


def usage_by_credential(
    credentials: Iterable[Credential], workflows: Iterable[Workflow]
) -> dict[str, list[str]]:
    workflows = list(workflows)
    return {credential.id: workflows_using(credential, workflows) for credential in credentials}


def detect_credential_usage(
    credentials: Iterable[Credential],
    workflows: Iterable[Workflow],
    instance_id: str = "",
    detected_at: datetime | None = None,
) -> list[SecurityFinding]:
    workflows = list(workflows)
    findings = []

    for credential in credentials:
        usage_count = len(workflows_using(credential, workflows))
        credential_instance = credential.instance_id or instance_id

        if usage_count == 0:
            findings.append(build_finding(
                finding_id=f"unused-credential-{credential.id}",
                finding_type=FindingType.UNUSED,
                severity=Severity.MEDIUM,
                title="Unused Credential",
                description=f'Credential "{credential.name}" is not used by any active workflows',
                instance_id=credential_instance,
                detected_at=detected_at,
                credential_id=credential.id,
                suggestion="Delete the credential or rotate it if it is no longer needed",
                metadata={"credentialType": credential.type, "usageCount": 0},
            ))
        elif usage_count > SHARED_CREDENTIAL_THRESHOLD:
            findings.append(build_finding(
                finding_id=f"shared-credential-{credential.id}",
                finding_type=FindingType.SHARED_KEY,
                severity=Severity.HIGH,
                title="Shared Credential",
                description=f'Credential "{credential.name}" is used by {usage_count} workflows',
                instance_id=credential_instance,
                detected_at=detected_at,
                credential_id=credential.id,
                suggestion="Issue a separate credential per workflow to limit the blast radius of a leak",
                metadata={
                    "credentialType": credential.type,
                    "usageCount": usage_count,
                    "threshold": SHARED_CREDENTIAL_THRESHOLD,
                },
            ))

    return findings
