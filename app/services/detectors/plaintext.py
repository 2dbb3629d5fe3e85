import re
from datetime import datetime

from app.schemas.finding import FindingType, SecurityFinding, Severity
from app.schemas.workflow import Workflow
from app.services.detectors.base import build_finding, iter_node_texts

# Inline secret assignment: key, ":" or "=", then a bare or quoted value
PLAINTEXT_PATTERNS = {
    "password": re.compile(r"password\s*[:=]\s*[\"']?[^\"'\s]+[\"']?", re.IGNORECASE),
    "api_key": re.compile(r"api[_-]?key\s*[:=]\s*[\"']?[^\"'\s]+[\"']?", re.IGNORECASE),
    "secret": re.compile(r"secret\s*[:=]\s*[\"']?[^\"'\s]+[\"']?", re.IGNORECASE),
    "token": re.compile(r"token\s*[:=]\s*[\"']?[^\"'\s]+[\"']?", re.IGNORECASE),
}


def detect_plaintext(workflow: Workflow, detected_at: datetime | None = None) -> list[SecurityFinding]:
    """One high-severity finding per (node, matching pattern). The matched value is never copied."""
    findings = []
    for node, text in iter_node_texts(workflow):
        for pattern_name, pattern in PLAINTEXT_PATTERNS.items():
            if not pattern.search(text):
                continue
            findings.append(build_finding(
                finding_id=f"plaintext-{workflow.id}-{node.id}-{pattern_name}",
                finding_type=FindingType.PLAINTEXT,
                severity=Severity.HIGH,
                title="Plaintext Credential Detected",
                description=f'Node "{node.name}" contains what appears to be a plaintext credential',
                instance_id=workflow.instance_id,
                detected_at=detected_at,
                workflow=workflow,
                node=node,
                suggestion="Move the value into an n8n credential and reference it from the node",
                metadata={
                    "nodeType": node.type,
                    "nodeName": node.name,
                    "pattern": pattern_name,
                },
            ))
    return findings
