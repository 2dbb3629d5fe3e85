from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.schemas.base import CamelModel


class WorkflowStatus(str, Enum):
    """Lifecycle status derived from the workflow name and active flag"""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class NodePosition(CamelModel):
    x: float = 0
    y: float = 0


class WorkflowNode(CamelModel):
    id: str
    name: str = ""
    type: str = ""
    type_version: Optional[float] = None
    position: NodePosition = Field(default_factory=NodePosition)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    # Flat credential references (remote id, or name when the id is missing)
    credentials: List[str] = Field(default_factory=list)


class WorkflowConnection(CamelModel):
    from_node: str = Field(..., alias="from")
    to_node: str = Field(..., alias="to")
    from_output: str = "main"
    to_input: str = "main"


class Workflow(CamelModel):
    id: str
    n8n_id: str
    name: str = ""
    description: Optional[str] = None
    is_active: bool = False
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: List[WorkflowConnection] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    owner: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    instance_id: str = ""


class WorkflowBreakdown(CamelModel):
    total: int = 0
    active: int = 0
    inactive: int = 0
    archived: int = 0


class WorkflowSummary(CamelModel):
    id: str
    name: str
    is_active: bool
    status: WorkflowStatus
    node_count: int
