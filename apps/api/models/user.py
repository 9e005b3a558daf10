"""User model."""

from sqlalchemy import Boolean, Column, DateTime, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class User(Base):
    """Dashboard account holding a credit balance."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    is_owner = Column(Boolean, nullable=False, default=False)
    credits = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_active = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    uids = relationship("UidRecord", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    activity_logs = relationship("ActivityLog", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    api_keys = relationship("IntegrationApiKey", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
