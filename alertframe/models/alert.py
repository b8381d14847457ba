"""Alert model - a monitoring directive for one URL + element selector."""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base

STATUS_ACTIVE = "active"
STATUS_PAUSED = "paused"
STATUS_ERROR = "error"


class Alert(Base):
    """A monitored page element and its check schedule."""

    __tablename__ = "alerts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=True)
    url = Column(String, nullable=False)
    css_selector = Column(String, nullable=False)
    element_type = Column(String, default="single")  # single, list

    # Schedule
    frequency_minutes = Column(Integer, nullable=True)
    frequency_label = Column(String, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)
    next_check_at = Column(DateTime, nullable=True, index=True)

    status = Column(String, default=STATUS_ACTIVE, nullable=False, index=True)  # active, paused, error
    error_message = Column(String, nullable=True)
    consecutive_failures = Column(Integer, default=0, nullable=False)

    # Notification preferences
    notify_email = Column(Boolean, default=True, nullable=False)
    slack_webhook = Column(String, nullable=True)
    discord_webhook = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="alerts")
    snapshots = relationship(
        "Snapshot", back_populates="alert", cascade="all, delete-orphan", passive_deletes=True
    )
    changes = relationship(
        "Change", back_populates="alert", cascade="all, delete-orphan", passive_deletes=True
    )
