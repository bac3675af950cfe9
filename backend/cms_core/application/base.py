from typing import Any, Dict, Optional

from cms_core.domain.enums import AuditCategory
from cms_core.domain.records import Actor
from cms_core.utils.audit import AuditSink
from cms_core.utils.site_scope import SiteContext
from cms_core.utils.time import Clock, utcnow


class ScopedService:
    """
    Base for the domain services: one instance per request (or per
    scheduler job), bound to a SiteContext and its collaborators.
    """

    def __init__(
        self,
        ctx: SiteContext,
        *,
        audit: Optional[AuditSink] = None,
        clock: Clock = utcnow,
    ):
        self.ctx = ctx
        self.session = ctx.session
        self.audit = audit
        self.clock = clock

    def _log(
        self,
        actor: Actor,
        action: str,
        category: AuditCategory,
        resource_type: str,
        resource_id: Optional[str],
        *,
        site_id: Optional[str] = None,
        title: Optional[str] = None,
        summary: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        if self.audit is None:
            return
        self.audit.log_entry(
            action=action,
            category=category,
            actor=actor,
            resource_type=resource_type,
            resource_id=resource_id,
            site_id=site_id if site_id is not None else self.ctx.site_id,
            resource_title=title,
            change_summary=summary,
            metadata=metadata or {},
            timestamp=self.clock(),
        )
