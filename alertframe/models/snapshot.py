"""Snapshot model - immutable capture of a monitored element."""
import uuid
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base


class Snapshot(Base):
    """Element content captured by one check. Never updated after insert."""

    __tablename__ = "snapshots"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    alert_id = Column(String, ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True)
    html_content = Column(Text, nullable=False, default="")
    text_content = Column(Text, nullable=True)
    item_count = Column(Integer, nullable=True)  # NULL = not a list
    captured_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationship
    alert = relationship("Alert", back_populates="snapshots")
