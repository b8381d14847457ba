"""Database models."""
from .user import User
from .alert import Alert
from .snapshot import Snapshot
from .change import Change

__all__ = ["User", "Alert", "Snapshot", "Change"]
