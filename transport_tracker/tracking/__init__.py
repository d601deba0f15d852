"""Balance engine, forms, reports and application state."""

from .errors import FormValidationError, NotFoundError, PermissionDeniedError, TrackerError
from .store import ConnectionStatus, DashboardStore
from .sync import SingleFlight, SyncLoop

__all__ = [
    "ConnectionStatus",
    "DashboardStore",
    "FormValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "SingleFlight",
    "SyncLoop",
    "TrackerError",
]
