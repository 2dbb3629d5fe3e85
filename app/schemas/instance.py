from datetime import datetime
from typing import Optional

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

from app.schemas.base import CamelModel


class InstanceResponse(CamelModel):
    """Public view of a registered instance. The API key is never part of it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    url: str
    environment: str = "production"
    is_active: bool = True
    version: Optional[str] = None
    last_scanned_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class N8NRelease(CamelModel):
    """Latest n8n release published on npm"""

    version: str
    published_at: Optional[str] = None
