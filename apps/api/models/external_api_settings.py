"""Single-row configuration for the external bypass provider."""

import uuid

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from database import Base


class ExternalApiSettings(Base):
    __tablename__ = "external_api_settings"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    base_url = Column(String, nullable=True)
    api_key_encrypted = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
