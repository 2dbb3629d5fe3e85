from app.schemas.workflow import (
    WorkflowStatus,
    NodePosition,
    WorkflowNode,
    WorkflowConnection,
    Workflow,
    WorkflowBreakdown,
    WorkflowSummary,
)
from app.schemas.credential import CredentialSource, CredentialMetadata, Credential, CredentialSummary
from app.schemas.finding import FindingType, Severity, SecurityFinding
from app.schemas.instance import InstanceResponse
from app.schemas.scan import (
    ScanState,
    InstanceConnection,
    ScanStats,
    ScanResult,
    InstanceScanOutcome,
    AggregatedStats,
    AggregatedScanResult,
    InstanceStats,
    ConnectionTestResult,
)

__all__ = [
    "WorkflowStatus", "NodePosition", "WorkflowNode", "WorkflowConnection", "Workflow",
    "WorkflowBreakdown", "WorkflowSummary",
    "CredentialSource", "CredentialMetadata", "Credential", "CredentialSummary",
    "FindingType", "Severity", "SecurityFinding",
    "ScanState", "InstanceConnection", "ScanStats", "ScanResult", "InstanceScanOutcome",
    "AggregatedStats", "AggregatedScanResult", "InstanceStats", "ConnectionTestResult",
    "InstanceResponse",
]
