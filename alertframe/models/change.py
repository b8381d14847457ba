"""Change model - a detected difference between consecutive snapshots."""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from ..database import Base


class Change(Base):
    """Record of a change, plus its notification state."""

    __tablename__ = "changes"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    alert_id = Column(String, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    change_type = Column(String, nullable=False)  # added, removed, modified
    summary = Column(String, nullable=False)
    diff_data = Column(JSON, nullable=True)  # {"type": "itemCount"|"text", ...}
    detected_at = Column(DateTime, default=datetime.utcnow, index=True)
    notified = Column(Boolean, default=False, nullable=False)
    notified_at = Column(DateTime, nullable=True)

    # Relationship
    alert = relationship("Alert", back_populates="changes")
