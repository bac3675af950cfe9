from sqlalchemy import event

from cms_core.extensions import db
from cms_core.domain.enums import AuditCategory
from cms_core.utils.hashing import checksum
from cms_core.utils.time import isoformat
from .base import BaseModel
from .site_mixin import OptionalSiteMixin
from .types import JSONText, UTCDateTime, enum_type


class AuditLog(BaseModel, OptionalSiteMixin):
    __tablename__ = "audit_logs"

    __table_args__ = (
        db.Index("ix_audit_cursor", "site_id", "created_at", "id"),
        db.Index("ix_audit_actor_action", "site_id", "actor_id", "action"),
        db.Index("ix_audit_resource", "resource_type", "resource_id"),
    )

    occurred_at = db.Column(UTCDateTime, nullable=False, index=True)

    action = db.Column(db.String(50), nullable=False, index=True)
    action_category = db.Column(enum_type(AuditCategory), nullable=False)

    actor_id = db.Column(db.String(255), nullable=False, index=True)
    actor_email = db.Column(db.String(255), nullable=True)
    actor_name = db.Column(db.String(255), nullable=True)

    resource_type = db.Column(db.String(50), nullable=False)
    resource_id = db.Column(db.String(36), nullable=True)
    resource_title = db.Column(db.String(500), nullable=True)

    change_summary = db.Column(db.Text, nullable=True)
    payload = db.Column(JSONText(dict), nullable=False, default=dict)

    checksum = db.Column(db.String(64), nullable=True)

    def checksum_fields(self):
        return {
            "id": self.id,
            "site_id": self.site_id,
            "occurred_at": isoformat(self.occurred_at),
            "action": self.action,
            "action_category": self.action_category.value if self.action_category else None,
            "actor_id": self.actor_id,
            "actor_email": self.actor_email,
            "actor_name": self.actor_name,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "resource_title": self.resource_title,
            "change_summary": self.change_summary,
            "payload": self.payload or {},
        }

    def compute_checksum(self) -> str:
        return checksum(self.checksum_fields())


@event.listens_for(AuditLog, 'before_update')
@event.listens_for(AuditLog, 'before_delete')
def prevent_audit_mutation(mapper, connection, target):
    raise RuntimeError("Audit logs are immutable")
