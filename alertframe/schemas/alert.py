"""Alert schemas for API."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

URL_PATTERN = r"^https?://\S+$"
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


class AlertCreate(BaseModel):
    """Schema for creating a new alert."""
    url: str = Field(..., pattern=URL_PATTERN)
    css_selector: str = Field(..., min_length=1)
    element_type: str = Field(default="single", pattern="^(single|list)$")
    title: Optional[str] = Field(None, max_length=255)
    # Values below 1 are clamped, not rejected
    frequency_minutes: int = 60
    frequency_label: Optional[str] = Field(None, max_length=100)
    notify_email: bool = True
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    slack_webhook: Optional[str] = Field(None, pattern=URL_PATTERN)
    discord_webhook: Optional[str] = Field(None, pattern=URL_PATTERN)


class AlertUpdate(BaseModel):
    """Partial update of an alert. Omitted fields are left unchanged."""
    status: Optional[str] = Field(None, pattern="^(active|paused)$")
    frequency_minutes: Optional[int] = None
    frequency_label: Optional[str] = Field(None, max_length=100)
    title: Optional[str] = Field(None, max_length=255)
    notify_email: Optional[bool] = None
    # Empty string clears the channel
    slack_webhook: Optional[str] = None
    discord_webhook: Optional[str] = None


class AlertResponse(BaseModel):
    """Schema for alert in API responses."""
    id: str
    user_id: str
    title: Optional[str] = None
    url: str
    css_selector: str
    element_type: str
    frequency_minutes: Optional[int] = None
    frequency_label: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    consecutive_failures: int = 0
    last_checked_at: Optional[datetime] = None
    next_check_at: Optional[datetime] = None
    notify_email: bool
    slack_webhook: Optional[str] = None
    discord_webhook: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AlertWithCounts(AlertResponse):
    """Alert with the number of recorded changes and snapshots."""
    change_count: int = 0
    snapshot_count: Optional[int] = None


class SnapshotResponse(BaseModel):
    """A captured element."""
    id: str
    html_content: str
    text_content: Optional[str] = None
    item_count: Optional[int] = None
    captured_at: datetime

    class Config:
        from_attributes = True


class ChangeResponse(BaseModel):
    """A detected change, with its diff rendered as HTML."""
    id: str
    change_type: str
    summary: str
    diff_data: Optional[dict] = None
    diff_html: str
    detected_at: datetime
    notified: bool
    notified_at: Optional[datetime] = None
