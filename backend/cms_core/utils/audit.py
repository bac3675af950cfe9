from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from flask import current_app
from sqlalchemy import select

from cms_core.extensions import db
from cms_core.domain.enums import AuditCategory
from cms_core.domain.exceptions import ValidationError
from cms_core.domain.records import Actor
from cms_core.models.audit_log import AuditLog
from cms_core.models.base import new_id
from cms_core.utils.pagination import CursorMeta, apply_cursor, paginate_cursor
from cms_core.utils.time import Clock, utcnow


class AuditSink(Protocol):
    """Append-only receiver of structured audit entries."""

    def log_entry(
        self,
        *,
        action: str,
        category: AuditCategory,
        actor: Actor,
        resource_type: str,
        resource_id: Optional[str],
        site_id: Optional[str] = None,
        resource_title: Optional[str] = None,
        change_summary: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> Any:
        ...


@dataclass
class IntegrityReport:
    checked: int = 0
    valid: int = 0
    unsigned: int = 0
    tampered: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.tampered


class DatabaseAuditSink:
    """
    Writes audit entries into the `audit_logs` table.

    Entries are added to the caller's session, so they commit or roll back
    together with the change they describe.
    """

    def __init__(self, session=None, clock: Clock = utcnow):
        self.session = session or db.session
        self.clock = clock

    def log_entry(
        self,
        *,
        action: str,
        category: AuditCategory,
        actor: Actor,
        resource_type: str,
        resource_id: Optional[str],
        site_id: Optional[str] = None,
        resource_title: Optional[str] = None,
        change_summary: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditLog:
        log = AuditLog()
        log.id = new_id()
        log.site_id = site_id
        log.occurred_at = timestamp or self.clock()
        log.created_at = log.occurred_at
        log.action = action
        log.action_category = AuditCategory(category)
        log.actor_id = actor.id
        log.actor_email = actor.email
        log.actor_name = actor.name
        log.resource_type = resource_type
        log.resource_id = resource_id
        log.resource_title = resource_title
        log.change_summary = change_summary
        log.payload = metadata or {}
        log.checksum = log.compute_checksum()

        self.session.add(log)
        return log

    def resource_history(self, resource_type: str, resource_id: str, *, site_id: Optional[str]) -> List[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(
                AuditLog.resource_type == resource_type,
                AuditLog.resource_id == resource_id,
                AuditLog.site_id == site_id,
            )
            .order_by(AuditLog.occurred_at.desc(), AuditLog.id.desc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def search(
        self,
        *,
        site_id: str,
        action: Optional[str] = None,
        category: Optional[str] = None,
        actor_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        cursor: Optional[str] = None,
        limit: int = 20,
    ) -> tuple[list[AuditLog], CursorMeta]:
        query = AuditLog.query.filter(AuditLog.site_id == site_id)

        if action:
            query = query.filter(AuditLog.action == action)
        if category:
            try:
                query = query.filter(AuditLog.action_category == AuditCategory(category))
            except ValueError:
                raise ValidationError(f"Invalid audit category: {category}")
        if actor_id:
            query = query.filter(AuditLog.actor_id == actor_id)
        if resource_type:
            query = query.filter(AuditLog.resource_type == resource_type)
        if resource_id:
            query = query.filter(AuditLog.resource_id == resource_id)
        if since:
            query = query.filter(AuditLog.created_at >= since)
        if until:
            query = query.filter(AuditLog.created_at <= until)

        query = apply_cursor(query, model=AuditLog, cursor=cursor)
        return paginate_cursor(query, model=AuditLog, limit=limit)

    def verify_integrity(
        self,
        *,
        site_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> IntegrityReport:
        """
        Recompute every checksum in range and report rows that no longer match.
        Rows written without a checksum are counted as unsigned, not tampered.
        """
        stmt = select(AuditLog).order_by(AuditLog.occurred_at.asc())
        if site_id is not None:
            stmt = stmt.where(AuditLog.site_id == site_id)
        if since is not None:
            stmt = stmt.where(AuditLog.occurred_at >= since)
        if until is not None:
            stmt = stmt.where(AuditLog.occurred_at <= until)

        report = IntegrityReport()
        for log in self.session.execute(stmt).scalars():
            report.checked += 1
            if not log.checksum:
                report.unsigned += 1
                continue
            if log.compute_checksum() == log.checksum:
                report.valid += 1
            else:
                report.tampered.append(log.id)
                current_app.logger.warning("Audit log %s failed integrity check", log.id)

        return report
