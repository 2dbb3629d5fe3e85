from datetime import datetime

from app.schemas.finding import FindingType, SecurityFinding, Severity
from app.schemas.workflow import Workflow
from app.services.detectors.base import build_finding

# Node type -> recommended replacement and justification
DEPRECATED_NODES: dict[str, dict[str, str]] = {
    'n8n-nodes-base.httpRequest': {
        'replacement': 'HTTP Request (n8n-nodes-base.httpRequestV2)',
        'reason': 'The new HTTP Request node offers improved security, better error handling, '
                  'and more authentication options including OAuth 2.0 support.',
    },
    'n8n-nodes-base.ftp': {
        'replacement': 'SFTP or Cloud Storage nodes (Google Drive, Dropbox, etc.)',
        'reason': 'FTP transmits data in plaintext. Use SFTP for encrypted file transfers '
                  'or modern cloud storage solutions for better security.',
    },
    'n8n-nodes-base.sftp': {
        'replacement': 'SSH File Transfer (n8n-nodes-base.ssh) or Cloud Storage nodes',
        'reason': 'The SSH node provides better security controls and the cloud storage nodes '
                  'offer modern authentication methods like OAuth 2.0.',
    },
    'n8n-nodes-base.executeCommand': {
        'replacement': 'Code node with strict input validation',
        'reason': 'Direct command execution poses an injection risk. Use the Code node with '
                  'proper input sanitisation and validation instead.',
    },
    'n8n-nodes-base.function': {
        'replacement': 'Code node (n8n-nodes-base.code)',
        'reason': 'The Code node provides better security controls, sandboxed execution, '
                  'and supports both JavaScript and Python.',
    },
    'n8n-nodes-base.functionItem': {
        'replacement': 'Code node (n8n-nodes-base.code) in "Run Once for Each Item" mode',
        'reason': 'Function Item has been superseded by the sandboxed Code node.',
    },
}


def detect_deprecated(workflow: Workflow, detected_at: datetime | None = None) -> list[SecurityFinding]:
    findings = []
    for node in workflow.nodes or []:
        deprecated_info = DEPRECATED_NODES.get(node.type)
        if not deprecated_info:
            continue
        findings.append(build_finding(
            finding_id=f"deprecated-{workflow.id}-{node.id}",
            finding_type=FindingType.DEPRECATED,
            severity=Severity.MEDIUM,
            title="Deprecated Node Detected",
            description=f'Node "{node.name}" uses deprecated node type "{node.type}"',
            instance_id=workflow.instance_id,
            detected_at=detected_at,
            workflow=workflow,
            node=node,
            suggestion=deprecated_info['replacement'],
            metadata={
                'deprecatedNodeType': node.type,
                'recommendedReplacement': deprecated_info['replacement'],
                'reason': deprecated_info['reason'],
                'source': 'static',
            },
        ))
    return findings
