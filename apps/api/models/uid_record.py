"""UidRecord model for externally provisioned bypass credentials."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class UidRecord(Base):
    """Local mirror of one UID provisioned on the bypass provider."""

    __tablename__ = "uids"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    api_key_id = Column(String, ForeignKey("integration_api_keys.id", ondelete="SET NULL"), nullable=True, index=True)
    uid_value = Column(String, nullable=False, index=True)
    player_name = Column(String, nullable=True)
    region = Column(String, nullable=False, default="PK")
    plan_id = Column(Integer, nullable=True)
    duration = Column(Integer, nullable=False)  # hours
    cost = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String, nullable=False, default="active")  # active, expired, deleted
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship("User", back_populates="uids")
    api_key = relationship("IntegrationApiKey", back_populates="uids")
