"""User model - owner of alerts and holder of per-user credentials."""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime
from sqlalchemy.orm import relationship

from ..database import Base


class User(Base):
    """Alert owner. Credentials are stored encrypted by the secret store."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    browser_api_key = Column(String, nullable=True)  # encrypted

    # Gmail OAuth (tokens encrypted)
    gmail_connected = Column(Boolean, default=False, nullable=False)
    gmail_email = Column(String, nullable=True)
    gmail_access_token = Column(String, nullable=True)
    gmail_refresh_token = Column(String, nullable=True)
    gmail_token_expiry = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    alerts = relationship("Alert", back_populates="user", cascade="all, delete-orphan")
