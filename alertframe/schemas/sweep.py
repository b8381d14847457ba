"""Sweep trigger response schemas."""
from typing import List, Optional
from pydantic import BaseModel, Field


class SweepSummary(BaseModel):
    alerts_checked: int = Field(alias="alertsChecked")
    changes_detected: int = Field(alias="changesDetected")
    errors: int

    class Config:
        populate_by_name = True


class SweepDetail(BaseModel):
    alert_id: str = Field(alias="alertId")
    title: Optional[str] = None
    change_detected: Optional[bool] = Field(None, alias="changeDetected")
    error: Optional[str] = None

    class Config:
        populate_by_name = True


class SweepResponse(BaseModel):
    """Result of one sweep, returned by the cron endpoint."""
    success: bool = True
    timestamp: str
    summary: SweepSummary
    details: List[SweepDetail]
    duration: int  # milliseconds
