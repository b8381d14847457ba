"""Pydantic schemas for API request/response models."""
from .alert import (
    AlertCreate,
    AlertUpdate,
    AlertResponse,
    AlertWithCounts,
    SnapshotResponse,
    ChangeResponse,
)
from .sweep import (
    SweepSummary,
    SweepDetail,
    SweepResponse,
)

__all__ = [
    "AlertCreate",
    "AlertUpdate",
    "AlertResponse",
    "AlertWithCounts",
    "SnapshotResponse",
    "ChangeResponse",
    "SweepSummary",
    "SweepDetail",
    "SweepResponse",
]
