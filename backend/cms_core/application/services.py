"""
Builds the per-request set of domain services.

Collaborators (notifier, indexer, assist client) are created once by the app
factory and kept in `app.extensions`; everything else is bound to the
request's SiteContext.
"""
from dataclasses import dataclass
from typing import Optional

from flask import current_app, g

from cms_core.extensions import db
from cms_core.utils.audit import DatabaseAuditSink
from cms_core.utils.site_scope import SiteContext
from cms_core.utils.time import utcnow
from .assist import AssistService
from .documents import DocumentService
from .previews import PreviewService
from .scheduler import Scheduler
from .versions import VersionStore
from .workflow import WorkflowEngine

NOTIFIER_KEY = "cms_notifier"
INDEXER_KEY = "cms_indexer"
ASSIST_CLIENT_KEY = "cms_assist_client"
CLOCK_KEY = "cms_clock"


@dataclass
class Services:
    ctx: SiteContext
    audit: DatabaseAuditSink
    documents: DocumentService
    versions: VersionStore
    workflow: WorkflowEngine
    scheduler: Scheduler
    previews: PreviewService
    assist: AssistService


def build_services(ctx: SiteContext, app=None) -> Services:
    app = app or current_app
    config = app.config
    notifier = app.extensions.get(NOTIFIER_KEY)
    indexer = app.extensions.get(INDEXER_KEY)
    clock = app.extensions.get(CLOCK_KEY) or utcnow

    audit = DatabaseAuditSink(ctx.session, clock=clock)
    versions = VersionStore(ctx, audit=audit, indexer=indexer, clock=clock)

    return Services(
        ctx=ctx,
        audit=audit,
        documents=DocumentService(
            ctx, audit=audit, versions=versions, notifier=notifier, indexer=indexer, clock=clock
        ),
        versions=versions,
        workflow=WorkflowEngine(
            ctx, audit=audit, versions=versions, notifier=notifier, indexer=indexer, clock=clock
        ),
        scheduler=Scheduler(
            ctx,
            audit=audit,
            notifier=notifier,
            indexer=indexer,
            clock=clock,
            batch_size=config["SCHEDULER_BATCH_SIZE"],
            max_retries=config["SCHEDULER_MAX_RETRIES"],
        ),
        previews=PreviewService(
            ctx,
            audit=audit,
            notifier=notifier,
            clock=clock,
            token_bytes=config["PREVIEW_TOKEN_BYTES"],
            default_expiry=config["PREVIEW_DEFAULT_EXPIRY"],
        ),
        assist=AssistService(ctx, client=app.extensions.get(ASSIST_CLIENT_KEY), audit=audit, clock=clock),
    )


def request_services(site_id: Optional[str] = None) -> Services:
    """Services for the current request, bound to the resolved site."""
    if site_id is None:
        ctx = getattr(g, "site_context", None) or SiteContext(db.session, None)
    else:
        ctx = SiteContext(db.session, site_id)
    return build_services(ctx)
