from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from app.schemas.base import CamelModel


class CredentialSource(str, Enum):
    REMOTE = "remote"  # listed by the /credentials endpoint
    WORKFLOW = "workflow"  # inferred from node references only


class CredentialMetadata(CamelModel):
    description: Optional[str] = None
    owner: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    last_used: Optional[datetime] = None
    risk_level: str = "low"


class Credential(CamelModel):
    id: str
    n8n_id: str
    name: str = ""
    type: str = "unknown"
    instance_id: str = ""
    is_active: bool = True
    used_by: List[str] = Field(default_factory=list)  # Workflow IDs
    source: CredentialSource = CredentialSource.REMOTE
    metadata: CredentialMetadata = Field(default_factory=CredentialMetadata)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def match_keys(self) -> set:
        """Identifiers a node reference may use for this credential"""
        return {key for key in (self.n8n_id, self.id, self.name) if key}


class CredentialSummary(CamelModel):
    id: str
    name: str
    type: str
    source: CredentialSource
    is_active: bool
    used_by: int
