import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger("marketplace.audit")


def audit_event(
    action: str,
    actor_id: Optional[str],
    payload: Dict[str, Any],
    *,
    db: Session | None = None,
    idempotency_key: str | None = None,
    request_id: str | None = None,
) -> Optional[int]:
    """
    Record an audit event.

    With `db`, the row joins the caller's transaction (flushed, not committed)
    and failures propagate so the caller's change is rolled back with it.
    Without `db`, a short-lived session is used and a failed write falls back
    to the log.

    Returns the audit log id when available.
    """
    from marketplace import models

    if db is not None:
        if idempotency_key:
            existing = (
                db.query(models.AuditLog)
                .filter(models.AuditLog.idempotency_key == idempotency_key)
                .first()
            )
            if existing is not None:
                return existing.id

        log = models.AuditLog(
            action=action,
            actor_id=actor_id,
            payload_json=json.dumps(payload or {}, default=str),
            idempotency_key=idempotency_key,
            request_id=request_id,
        )
        db.add(log)
        db.flush()
        return log.id

    from marketplace.database import SessionLocal

    event = {
        "action": action,
        "actor_id": actor_id,
        "payload": payload,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    session = SessionLocal()
    try:
        audit_id = audit_event(
            action,
            actor_id,
            payload,
            db=session,
            idempotency_key=idempotency_key,
            request_id=request_id,
        )
        session.commit()
        return audit_id
    except SQLAlchemyError:
        session.rollback()
        logger.exception("audit_write_failed", extra={"audit_event": event})
        return None
    finally:
        session.close()
