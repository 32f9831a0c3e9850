"""Audit trail written inside the caller's transaction.

``AuditLog.record`` only adds the entry to the session. The service that
performs the state change commits both together, so an audit entry exists
if and only if the change it describes was committed.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.orm import Session

from coursemedia.modules.audit.models import AuditLogEntry


class AuditLog:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        actor_id: Optional[str],
        action: str,
        entity_type: str,
        entity_id: Any,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        notes: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            from_state=from_state,
            to_state=to_state,
            notes=notes,
            details=details or {},
        )
        self.db.add(entry)
        return entry

    def for_entity(self, entity_type: str, entity_id: Any) -> list[AuditLogEntry]:
        """Entries for one entity, oldest first."""
        return (
            self.db.query(AuditLogEntry)
            .filter(
                AuditLogEntry.entity_type == entity_type,
                AuditLogEntry.entity_id == str(entity_id),
            )
            .order_by(AuditLogEntry.created_at.asc(), AuditLogEntry.sequence.asc())
            .all()
        )
