"""
Audit logging.

Entries are added to the caller's session so they commit atomically with the
state change they describe. Each entry is also emitted on the `docsign.audit`
logger for external sinks.
"""

import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from docsign.modules.documents.models.audit_entry import AuditAction, AuditEntry

audit_logger = logging.getLogger("docsign.audit")


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(v) for v in value]
    if hasattr(value, "value") and not isinstance(value, (str, int, float, bool)):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class AuditLogger:
    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        action: AuditAction,
        document_id: Optional[str],
        actor_identity: Optional[str],
        details: Optional[dict] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            document_id=document_id,
            actor_identity=actor_identity or "anonymous",
            action=action,
            details=_json_safe(details or {}),
        )
        self.session.add(entry)
        audit_logger.info(
            "%s %s",
            action.value,
            document_id or "-",
            extra={
                "audit_action": action.value,
                "document_id": document_id,
                "actor": entry.actor_identity,
            },
        )
        return entry

    def history(self, document_id: str) -> List[AuditEntry]:
        return (
            self.session.query(AuditEntry)
            .filter(AuditEntry.document_id == document_id)
            .order_by(AuditEntry.timestamp.asc(), AuditEntry.id.asc())
            .all()
        )
