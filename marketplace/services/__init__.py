from marketplace.services.audit import audit_event
from marketplace.services.notifications import emit_lifecycle_notification, register_sink

__all__ = [
    "audit_event",
    "emit_lifecycle_notification",
    "register_sink",
]
