import json
from datetime import datetime

from sqlalchemy import event

from marketescrow.extensions import db


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    actor_id = db.Column(db.Integer, nullable=True)
    actor_type = db.Column(db.String(16), nullable=False, default="system")  # user/admin/system
    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False, index=True)
    payload_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def payload(self) -> dict:
        try:
            value = json.loads(self.payload_json or "{}")
        except Exception:
            return {}
        return value if isinstance(value, dict) else {}

    def to_dict(self):
        return {
            "id": int(self.id),
            "actor_id": int(self.actor_id) if self.actor_id is not None else None,
            "actor_type": self.actor_type or "system",
            "action": self.action,
            "entity_type": self.entity_type or "",
            "entity_id": self.entity_id or "",
            "payload": self.payload(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(AuditLog, "before_update")
def _audit_rows_are_append_only(mapper, connection, target):
    raise RuntimeError("audit_logs rows are append-only")
