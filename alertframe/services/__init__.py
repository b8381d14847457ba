"""Services for extraction, change detection, scheduling, and notification."""
from .extraction import ExtractionService
from .notifier import NotificationService
from .scheduler import SchedulerService
from .secret_store import SecretStore

__all__ = ["ExtractionService", "NotificationService", "SchedulerService", "SecretStore"]
