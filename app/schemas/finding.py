from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from app.schemas.base import CamelModel


class FindingType(str, Enum):
    PLAINTEXT = "plaintext"
    SHARED_KEY = "shared_key"
    DEPRECATED = "deprecated"
    UNUSED = "unused"
    WEAK_AUTH = "weak_auth"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityFinding(CamelModel):
    """A detected security concern. Recomputed on every scan, never persisted."""

    id: str
    type: FindingType
    severity: Severity
    title: str
    description: str
    instance_id: str
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    node_id: Optional[str] = None
    credential_id: Optional[str] = None
    is_resolved: bool = False
    suggestion: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
