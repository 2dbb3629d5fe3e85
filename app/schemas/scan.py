from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from app.schemas.base import CamelModel
from app.schemas.credential import CredentialSummary
from app.schemas.finding import SecurityFinding
from app.schemas.workflow import WorkflowBreakdown, WorkflowSummary


class ScanState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"


class InstanceConnection(CamelModel):
    """What the scan engine needs to reach an instance (decrypted API key)"""

    id: str
    name: str
    url: str
    api_key: str = Field(..., repr=False, exclude=True)
    environment: str = "production"


class ScanStats(CamelModel):
    workflows: WorkflowBreakdown = Field(default_factory=WorkflowBreakdown)
    total_credentials: int = 0
    unique_credentials: int = 0
    active_findings: int = 0
    critical_findings: int = 0
    high_findings: int = 0
    medium_findings: int = 0
    low_findings: int = 0


class ScanResult(CamelModel):
    instance_id: str
    state: ScanState = ScanState.DONE
    stats: ScanStats = Field(default_factory=ScanStats)
    findings: List[SecurityFinding] = Field(default_factory=list)
    workflows: List[WorkflowSummary] = Field(default_factory=list)
    all_workflows: List[WorkflowSummary] = Field(default_factory=list)
    credentials: List[CredentialSummary] = Field(default_factory=list)
    credentials_available: bool = True
    scan_date: datetime


class InstanceScanOutcome(CamelModel):
    """Per-instance entry of an aggregated scan: either a result or an error state"""

    instance_id: str
    instance_name: str
    success: bool
    result: Optional[ScanResult] = None
    error_type: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, instance_id: str, instance_name: str, error: Exception) -> "InstanceScanOutcome":
        return cls(
            instance_id=instance_id,
            instance_name=instance_name,
            success=False,
            error_type=getattr(error, "error_type", "unexpected"),
            error=str(error) or type(error).__name__,
        )


class AggregatedStats(CamelModel):
    total_instances: int = 0
    scanned_instances: int = 0
    failed_instances: int = 0
    workflows: WorkflowBreakdown = Field(default_factory=WorkflowBreakdown)
    instances_with_workflows: int = 0
    average_workflows_per_instance: float = 0.0
    total_credentials: int = 0
    total_findings: int = 0
    active_findings: int = 0
    critical_findings: int = 0
    high_findings: int = 0
    medium_findings: int = 0
    low_findings: int = 0
    findings_by_type: Dict[str, int] = Field(default_factory=dict)
    last_scan_date: Optional[datetime] = None


class AggregatedScanResult(CamelModel):
    stats: AggregatedStats = Field(default_factory=AggregatedStats)
    findings: List[SecurityFinding] = Field(default_factory=list)
    instances: List[InstanceScanOutcome] = Field(default_factory=list)


class InstanceStats(CamelModel):
    total_instances: int = 0
    active_instances: int = 0
    inactive_instances: int = 0
    environments: Dict[str, int] = Field(default_factory=dict)


class ConnectionTestResult(CamelModel):
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    version: Optional[str] = None
