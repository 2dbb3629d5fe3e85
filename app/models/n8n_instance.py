from sqlalchemy import Column, String, DateTime, Boolean, Text
from app.core.database import Base
from datetime import datetime
import enum


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class N8NInstance(Base):
    """A registered n8n server. Findings are never stored here: scans recompute them."""

    __tablename__ = "n8n_instances"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)  # Firebase uid
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    api_key_encrypted = Column(Text, nullable=False)  # Fernet ciphertext
    environment = Column(String, nullable=False, default=Environment.PRODUCTION.value)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(String, nullable=True)  # Last detected n8n version
    last_scanned_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
