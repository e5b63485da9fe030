import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from api.models import AuditLog


def record_audit(
    session: AsyncSession,
    actor_id: uuid.UUID | None,
    action: str,
    entity: str,
    entity_id: uuid.UUID | None,
    payload: dict[str, Any] | None = None,
) -> AuditLog:
    """Adds an audit row to the caller's transaction; committed together with the change it describes."""
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        payload_json=payload,
    )
    session.add(audit_log)
    return audit_log
