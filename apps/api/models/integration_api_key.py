"""IntegrationApiKey model for the external-facing handler API."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class IntegrationApiKey(Base):
    """API key issued to an integrator; scopes the UIDs it may touch."""

    __tablename__ = "integration_api_keys"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    key_hash = Column(String, unique=True, nullable=False, index=True)  # sha256 hex of the raw key
    key_prefix = Column(String, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    is_paused = Column(Boolean, nullable=False, default=False)
    uid_limit = Column(Integer, nullable=True)
    allowed_plans = Column(JSON, nullable=True)  # list of plan ids, empty/None means all
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="api_keys")
    uids = relationship("UidRecord", back_populates="api_key")
