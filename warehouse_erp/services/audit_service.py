from __future__ import annotations

from typing import Any

from flask import has_request_context, request
from sqlalchemy import select

from warehouse_erp.extensions import db
from warehouse_erp.models import AuditLog


def client_ip() -> str | None:
    if not has_request_context():
        return None
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()[:64]
    return request.headers.get("X-Real-IP") or request.remote_addr


def record_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    actor_user_id: int | None = None,
) -> AuditLog:
    """Stage an audit row in the current session; the caller's commit persists it."""
    entry = AuditLog(
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        before_json=before,
        after_json=after,
        ip_address=client_ip(),
    )
    db.session.add(entry)
    return entry


def entity_history(entity_type: str, *entity_ids: str) -> list[AuditLog]:
    """Audit rows for the given entities, oldest first."""
    if not entity_ids:
        return []
    return list(
        db.session.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id.in_(entity_ids))
            .order_by(AuditLog.id)
        ).scalars()
    )
