from __future__ import annotations

import json
from datetime import datetime

from marketescrow.extensions import db
from marketescrow.models import AuditLog

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


def _parse_actor(actor) -> tuple[str, int | None]:
    if isinstance(actor, dict):
        actor_type = str(actor.get("type") or "system")
        actor_id_raw = actor.get("id")
        try:
            actor_id = int(actor_id_raw) if actor_id_raw is not None else None
        except (TypeError, ValueError):
            actor_id = None
        return actor_type, actor_id
    return "system", None


def record_audit(
    action: str,
    *,
    entity_type: str,
    entity_id,
    actor=None,
    payload: dict | None = None,
) -> AuditLog:
    """Add an audit row to the current transaction. The caller commits."""
    actor_type, actor_id = _parse_actor(actor)
    row = AuditLog(
        actor_id=actor_id,
        actor_type=actor_type[:16],
        action=(action or "").strip()[:64],
        entity_type=(entity_type or "")[:64],
        entity_id=str(entity_id)[:64],
        payload_json=json.dumps(payload or {}, default=str, sort_keys=True),
        created_at=datetime.utcnow(),
    )
    db.session.add(row)
    return row


def list_audit_events(*, order_id: str | None = None, limit=None) -> list[AuditLog]:
    try:
        n = int(limit) if limit not in (None, "") else DEFAULT_LIST_LIMIT
    except (TypeError, ValueError):
        n = DEFAULT_LIST_LIMIT
    n = max(1, min(n, MAX_LIST_LIMIT))
    q = AuditLog.query
    if order_id:
        q = q.filter(AuditLog.entity_id == str(order_id))
    return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(n).all()
