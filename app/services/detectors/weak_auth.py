import re
from datetime import datetime

from app.schemas.finding import FindingType, SecurityFinding, Severity
from app.schemas.workflow import Workflow
from app.services.detectors.base import build_finding, iter_node_texts

WEAK_AUTH_PATTERNS = {
    "http_scheme": (
        re.compile(r"http://", re.IGNORECASE),
        "sends requests over plain HTTP instead of HTTPS",
    ),
    "basic_auth": (
        re.compile(r"basic\s+auth", re.IGNORECASE),
        "uses HTTP basic authentication",
    ),
    "bearer_token": (
        re.compile(r"bearer\s+token", re.IGNORECASE),
        "embeds a bearer token in its parameters instead of a credential reference",
    ),
}


def detect_weak_auth(workflow: Workflow, detected_at: datetime | None = None) -> list[SecurityFinding]:
    findings = []
    for node, text in iter_node_texts(workflow):
        for pattern_name, (pattern, explanation) in WEAK_AUTH_PATTERNS.items():
            if not pattern.search(text):
                continue
            findings.append(build_finding(
                finding_id=f"weak-auth-{workflow.id}-{node.id}-{pattern_name}",
                finding_type=FindingType.WEAK_AUTH,
                severity=Severity.MEDIUM,
                title="Weak Authentication Detected",
                description=f'Node "{node.name}" {explanation}',
                instance_id=workflow.instance_id,
                detected_at=detected_at,
                workflow=workflow,
                node=node,
                metadata={"nodeType": node.type, "pattern": pattern_name},
            ))
    return findings
