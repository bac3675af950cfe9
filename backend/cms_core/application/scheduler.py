from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dateutil import tz
from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cms_core.domain.enums import AuditCategory, DocumentStatus, JobAction, JobStatus
from cms_core.domain.exceptions import (
    CMSError,
    ConcurrencyConflictError,
    EmbargoViolation,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from cms_core.domain.records import SYSTEM_ACTOR, Actor, EmbargoStatus, ProcessResult
from cms_core.models.base import new_id
from cms_core.models.scheduled_job import ScheduledJob
from cms_core.utils.site_scope import SiteContext, site_all, site_first, unscoped_all, unscoped_run
from cms_core.utils.time import coerce_datetime, isoformat, utcnow
from cms_core.utils.transaction import transactional
from .base import ScopedService
from .documents import DocumentService
from .loaders import load_document
from .workflow import WorkflowEngine

DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_RETRIES = 3


@dataclass
class RunReport:
    """Outcome of one poll-and-process pass."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    results: List[ProcessResult] = field(default_factory=list)


class Scheduler(ScopedService):
    """
    Time-triggered publish / unpublish / archive.

    `schedule`, `cancel` and the read helpers act on the bound site. The
    polling side (`get_due_jobs`, `process_job`, `run_due`) crosses sites and
    rebinds a SiteContext to each job's site before doing any work.
    """

    def __init__(
        self,
        ctx: SiteContext,
        *,
        audit=None,
        notifier=None,
        indexer=None,
        clock=utcnow,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        super().__init__(ctx, audit=audit, clock=clock)
        self.notifier = notifier
        self.indexer = indexer
        self.batch_size = batch_size
        self.max_retries = max_retries

    # ------------------------
    # Scheduling
    # ------------------------

    def schedule(
        self,
        document_id: str,
        action,
        scheduled_at,
        *,
        actor: Actor,
        timezone: Optional[str] = None,
        is_embargo: bool = False,
        notes: Optional[str] = None,
    ) -> ScheduledJob:
        try:
            action = JobAction(action)
        except ValueError:
            raise ValidationError(f"Invalid scheduled action: {action}")

        try:
            when = coerce_datetime(scheduled_at)
        except (TypeError, ValueError, OverflowError):
            raise ValidationError("Invalid scheduled time")

        zone = timezone or "UTC"
        if tz.gettz(zone) is None:
            raise ValidationError(f"Unknown timezone: {zone}")

        now = self.clock()
        if when <= now:
            raise ValidationError("Scheduled time must be in the future")

        # Embargo only means something for publishing
        is_embargo = bool(is_embargo) and action == JobAction.PUBLISH

        try:
            with transactional(self.session):
                document = load_document(self.ctx, document_id, lock=True)

                if (
                    action == JobAction.PUBLISH
                    and document.embargo_until is not None
                    and when < document.embargo_until
                ):
                    raise EmbargoViolation(
                        document.embargo_until,
                        f"Cannot schedule before embargo lifts at {isoformat(document.embargo_until)}",
                    )

                replaced = self._pending(document.id, action)
                if replaced is not None:
                    self._mark_cancelled(replaced, actor, now)
                    if replaced.is_embargo and not is_embargo:
                        document.embargo_until = None
                    # Free the one-pending slot before the insert
                    self.session.flush()

                job = ScheduledJob()
                job.id = new_id()
                job.site_id = document.site_id
                job.document_id = document.id
                job.action = action
                job.scheduled_at = when
                job.timezone = zone
                job.status = JobStatus.PENDING
                job.retry_count = 0
                job.is_embargo = is_embargo
                job.notes = notes
                job.created_by = actor.email
                job.created_at = now
                self.session.add(job)

                if is_embargo:
                    document.embargo_until = when

                self.session.flush()

                self._log(
                    actor, "schedule.create", AuditCategory.WORKFLOW, "scheduled_job", job.id,
                    title=document.title,
                    metadata={
                        "document_id": document.id,
                        "action": action.value,
                        "scheduled_at": isoformat(when),
                        "timezone": zone,
                        "is_embargo": is_embargo,
                        "replaced_job_id": replaced.id if replaced else None,
                    },
                )
        except IntegrityError as exc:
            raise ConcurrencyConflictError(
                f"Another {action.value} job for this document was scheduled concurrently"
            ) from exc

        return job

    def cancel(self, job_id: str, *, actor: Actor, reason: Optional[str] = None) -> ScheduledJob:
        with transactional(self.session):
            job = self.get(job_id, lock=True)
            if job.status != JobStatus.PENDING:
                raise StateConflictError(f"Only pending jobs can be cancelled (job is {job.status.value})")

            now = self.clock()
            self._mark_cancelled(job, actor, now)

            if job.is_embargo:
                document = load_document(self.ctx, job.document_id, lock=True)
                document.embargo_until = None

            self._log(
                actor, "schedule.cancel", AuditCategory.WORKFLOW, "scheduled_job", job.id,
                summary=reason,
                metadata={"document_id": job.document_id, "action": job.action.value},
            )

        return job

    # ------------------------
    # Embargo
    # ------------------------

    def is_under_embargo(self, document_id: str) -> EmbargoStatus:
        document = load_document(self.ctx, document_id)
        until = document.embargo_until
        return EmbargoStatus(embargoed=until is not None and self.clock() < until, until=until)

    def clear_embargo(self, document_id: str, *, actor: Actor):
        """Lift the embargo. A pending embargo publish stays scheduled as a plain publish."""
        with transactional(self.session):
            document = load_document(self.ctx, document_id, lock=True)
            previous = document.embargo_until
            document.embargo_until = None

            now = self.clock()
            pending = self._pending(document.id, JobAction.PUBLISH)
            if pending is not None and pending.is_embargo:
                pending.is_embargo = False

            self._log(
                actor, "embargo.clear", AuditCategory.WORKFLOW, "document", document.id,
                title=document.title,
                metadata={"previous_until": isoformat(previous), "cleared_at": isoformat(now)},
            )

        return document

    # ------------------------
    # Polling
    # ------------------------

    def get_due_jobs(self, limit: Optional[int] = None) -> List[ScheduledJob]:
        # Cross-site by nature: the poller serves every site
        stmt = (
            select(ScheduledJob)
            .where(
                ScheduledJob.status == JobStatus.PENDING,
                ScheduledJob.scheduled_at <= self.clock(),
            )
            .order_by(ScheduledJob.scheduled_at.asc(), ScheduledJob.id.asc())
            .limit(limit or self.batch_size)
        )
        return unscoped_all(self.session, stmt)

    def process_job(self, job_id: str) -> ProcessResult:
        """
        Claim the job (pending → processing, committed before any work),
        run it for its own site, then record the outcome.
        """
        if not self._claim(job_id):
            return ProcessResult(success=False, error="Job is not pending", job_id=job_id, status=None)

        job = unscoped_all(self.session, select(ScheduledJob).where(ScheduledJob.id == job_id))[0]
        site_ctx = self.ctx.for_site(job.site_id)

        try:
            self._dispatch(site_ctx, job)
        except (CMSError, SQLAlchemyError) as exc:
            return self._record_failure(job_id, str(exc))
        except Exception as exc:
            # A claimed job must end up pending or failed, never stuck in processing
            current_app.logger.exception("Scheduled job %s raised an unexpected error", job_id)
            return self._record_failure(job_id, str(exc) or exc.__class__.__name__)

        with transactional(self.session):
            job.status = JobStatus.COMPLETED
            job.processed_at = self.clock()
            job.error_message = None

        current_app.logger.info("Scheduled %s of document %s completed", job.action.value, job.document_id)
        return ProcessResult(success=True, job_id=job.id, status=JobStatus.COMPLETED.value)

    def run_due(self) -> RunReport:
        report = RunReport()
        due = self.get_due_jobs()
        current_app.logger.info("Scheduler pass started: %d due job(s)", len(due))

        for job_id in [job.id for job in due]:
            result = self.process_job(job_id)
            report.processed += 1
            report.results.append(result)
            if result.success:
                report.succeeded += 1
            else:
                report.failed += 1

        current_app.logger.info(
            "Scheduler pass finished: %d succeeded, %d failed", report.succeeded, report.failed
        )
        return report

    # ------------------------
    # Reads
    # ------------------------

    def get(self, job_id: str, *, lock: bool = False) -> ScheduledJob:
        stmt = select(ScheduledJob).where(ScheduledJob.id == job_id)
        if lock:
            stmt = stmt.with_for_update()
        job = site_first(self.ctx, stmt)
        if job is None:
            raise NotFoundError(f"Scheduled job not found: {job_id}")
        return job

    def list_for_document(self, document_id: str) -> List[ScheduledJob]:
        stmt = (
            select(ScheduledJob)
            .where(ScheduledJob.document_id == document_id)
            .order_by(ScheduledJob.scheduled_at.desc(), ScheduledJob.id.desc())
        )
        return site_all(self.ctx, stmt)

    def get_pending_for_document(self, document_id: str) -> List[ScheduledJob]:
        stmt = (
            select(ScheduledJob)
            .where(
                ScheduledJob.document_id == document_id,
                ScheduledJob.status == JobStatus.PENDING,
            )
            .order_by(ScheduledJob.scheduled_at.asc())
        )
        return site_all(self.ctx, stmt)

    def get_upcoming(self, limit: int = 20, *, include_all: bool = False) -> List[ScheduledJob]:
        """Pending jobs in execution order; future ones only unless `include_all`."""
        stmt = select(ScheduledJob).where(ScheduledJob.status == JobStatus.PENDING)
        if not include_all:
            stmt = stmt.where(ScheduledJob.scheduled_at > self.clock())
        stmt = stmt.order_by(ScheduledJob.scheduled_at.asc()).limit(limit)
        return site_all(self.ctx, stmt)

    def get_recent(self, limit: int = 20, *, status: Optional[str] = None) -> List[ScheduledJob]:
        stmt = select(ScheduledJob)
        if status:
            try:
                stmt = stmt.where(ScheduledJob.status == JobStatus(status))
            except ValueError:
                raise ValidationError(f"Invalid job status: {status}")
        else:
            stmt = stmt.where(ScheduledJob.status.in_(
                [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED]
            ))
        stmt = stmt.order_by(ScheduledJob.updated_at.desc(), ScheduledJob.id.desc()).limit(limit)
        return site_all(self.ctx, stmt)

    def counts(self) -> Dict[str, int]:
        stmt = (
            select(ScheduledJob.status, func.count(ScheduledJob.id))
            .where(ScheduledJob.site_id == self.ctx.require_site())
            .group_by(ScheduledJob.status)
        )
        totals = {status.value: 0 for status in JobStatus}
        for status, count in self.session.execute(stmt).all():
            totals[JobStatus(status).value] = count
        return totals

    # ------------------------
    # Helpers
    # ------------------------

    def _pending(self, document_id: str, action: JobAction) -> Optional[ScheduledJob]:
        stmt = select(ScheduledJob).where(
            ScheduledJob.document_id == document_id,
            ScheduledJob.action == action,
            ScheduledJob.status == JobStatus.PENDING,
        ).with_for_update()
        return site_first(self.ctx, stmt)

    def _mark_cancelled(self, job: ScheduledJob, actor: Actor, now):
        job.status = JobStatus.CANCELLED
        job.cancelled_by = actor.email
        job.cancelled_at = now

    def _claim(self, job_id: str) -> bool:
        """Conditional pending → processing; only one poller can win."""
        with transactional(self.session):
            result = unscoped_run(
                self.session,
                update(ScheduledJob)
                .where(ScheduledJob.id == job_id, ScheduledJob.status == JobStatus.PENDING)
                .values(status=JobStatus.PROCESSING, updated_at=self.clock())
                .execution_options(synchronize_session="fetch"),
            )
        return result.rowcount == 1

    def _dispatch(self, site_ctx: SiteContext, job: ScheduledJob):
        documents = DocumentService(
            site_ctx, audit=self.audit, notifier=self.notifier, indexer=self.indexer, clock=self.clock
        )

        if job.action == JobAction.PUBLISH:
            if documents.has_workflow(job.document_id):
                engine = WorkflowEngine(
                    site_ctx,
                    audit=self.audit,
                    versions=documents.versions,
                    notifier=self.notifier,
                    indexer=self.indexer,
                    clock=self.clock,
                )
                result = engine.publish_scheduled(job.document_id, actor=SYSTEM_ACTOR)
                if not result.success:
                    raise StateConflictError(result.error)
            else:
                documents.publish(job.document_id, actor=SYSTEM_ACTOR, reason="Scheduled publish")
            return

        if job.action == JobAction.UNPUBLISH:
            document = documents.get(job.document_id)
            if document.status != DocumentStatus.PUBLISHED:
                raise StateConflictError("Document is not published")
            documents.unpublish(job.document_id, actor=SYSTEM_ACTOR, reason="Scheduled unpublish")
            return

        if job.action == JobAction.ARCHIVE:
            documents.archive(job.document_id, actor=SYSTEM_ACTOR, reason="Scheduled archive")
            return

        raise ValidationError(f"Unhandled scheduled action: {job.action}")

    def _record_failure(self, job_id: str, message: str) -> ProcessResult:
        job = unscoped_all(self.session, select(ScheduledJob).where(ScheduledJob.id == job_id))[0]

        with transactional(self.session):
            job.retry_count = (job.retry_count or 0) + 1
            job.error_message = message
            job.processed_at = self.clock()
            if job.retry_count >= self.max_retries:
                job.status = JobStatus.FAILED
            else:
                job.status = JobStatus.PENDING

        current_app.logger.warning(
            "Scheduled %s of document %s failed (attempt %d/%d): %s",
            job.action.value, job.document_id, job.retry_count, self.max_retries, message,
        )
        return ProcessResult(success=False, error=message, job_id=job.id, status=job.status.value)
