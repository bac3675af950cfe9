"""
Tests for scheduled publishing, embargoes and the job poller.
"""
from datetime import timedelta

import pytest

from cms_core.application.documents import DocumentService
from cms_core.domain.enums import DocumentStatus, JobStatus
from cms_core.domain.exceptions import EmbargoViolation, StateConflictError, ValidationError


class TestSchedule:
    def test_job_is_created_pending(self, services, document, editor, clock):
        job = services.scheduler.schedule(
            document.id, "publish", clock.now + timedelta(hours=1), actor=editor, timezone="Europe/Berlin"
        )

        assert job.status == JobStatus.PENDING
        assert job.retry_count == 0
        assert job.timezone == "Europe/Berlin"

    def test_past_time_is_rejected(self, services, document, editor, clock):
        with pytest.raises(ValidationError):
            services.scheduler.schedule(document.id, "publish", clock.now - timedelta(minutes=1), actor=editor)

    def test_now_is_rejected(self, services, document, editor, clock):
        with pytest.raises(ValidationError):
            services.scheduler.schedule(document.id, "publish", clock.now, actor=editor)

    def test_unknown_action_is_rejected(self, services, document, editor, clock):
        with pytest.raises(ValidationError):
            services.scheduler.schedule(document.id, "delete", clock.now + timedelta(hours=1), actor=editor)

    def test_unknown_timezone_is_rejected(self, services, document, editor, clock):
        with pytest.raises(ValidationError):
            services.scheduler.schedule(
                document.id, "publish", clock.now + timedelta(hours=1), actor=editor, timezone="Mars/Olympus"
            )

    def test_iso_string_is_accepted(self, services, document, editor):
        job = services.scheduler.schedule(document.id, "archive", "2026-03-05T10:00:00+01:00", actor=editor)

        assert job.scheduled_at.isoformat() == "2026-03-05T09:00:00+00:00"

    def test_rescheduling_replaces_pending_job(self, services, document, editor, clock):
        first = services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)
        second = services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=2), actor=editor)

        pending = services.scheduler.get_pending_for_document(document.id)

        assert [j.id for j in pending] == [second.id]
        assert services.scheduler.get(first.id).status == JobStatus.CANCELLED

    def test_different_actions_can_both_be_pending(self, services, document, editor, clock):
        services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)
        services.scheduler.schedule(document.id, "unpublish", clock.now + timedelta(hours=5), actor=editor)

        assert len(services.scheduler.get_pending_for_document(document.id)) == 2


class TestCancel:
    def test_cancel_pending_job(self, services, document, editor, clock):
        job = services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)

        cancelled = services.scheduler.cancel(job.id, actor=editor, reason="Postponed")

        assert cancelled.status == JobStatus.CANCELLED
        assert cancelled.cancelled_by == editor.email

    def test_cancel_twice_conflicts(self, services, document, editor, clock):
        job = services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)
        services.scheduler.cancel(job.id, actor=editor)

        with pytest.raises(StateConflictError):
            services.scheduler.cancel(job.id, actor=editor)


class TestEmbargo:
    """An embargo blocks every publish path until it lifts."""

    @pytest.fixture
    def embargoed(self, services, document, editor, clock):
        lift = clock.now + timedelta(hours=2)
        job = services.scheduler.schedule(document.id, "publish", lift, actor=editor, is_embargo=True)
        return job, lift

    def test_embargo_is_reported(self, services, document, embargoed):
        _, lift = embargoed

        status = services.scheduler.is_under_embargo(document.id)

        assert status.embargoed is True
        assert status.until == lift

    def test_direct_publish_is_blocked(self, services, document, editor, embargoed):
        with pytest.raises(EmbargoViolation):
            services.documents.publish(document.id, actor=editor)

    def test_earlier_publish_cannot_be_scheduled(self, services, document, editor, clock, embargoed):
        with pytest.raises(EmbargoViolation):
            services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)

    def test_cancelling_embargo_job_lifts_embargo(self, services, document, editor, embargoed):
        job, _ = embargoed

        services.scheduler.cancel(job.id, actor=editor)

        assert services.scheduler.is_under_embargo(document.id).embargoed is False

    def test_clear_embargo_keeps_publish_scheduled(self, services, document, editor, embargoed):
        job, _ = embargoed

        services.scheduler.clear_embargo(document.id, actor=editor)

        assert services.scheduler.is_under_embargo(document.id).embargoed is False
        kept = services.scheduler.get(job.id)
        assert kept.status == JobStatus.PENDING
        assert kept.is_embargo is False

    def test_embargo_flag_is_ignored_for_unpublish(self, services, document, editor, clock):
        job = services.scheduler.schedule(
            document.id, "unpublish", clock.now + timedelta(hours=1), actor=editor, is_embargo=True
        )

        assert job.is_embargo is False
        assert services.scheduler.is_under_embargo(document.id).embargoed is False

    def test_embargo_publish_runs_when_due(self, services, document, clock, embargoed):
        clock.advance(hours=2)

        report = services.scheduler.run_due()

        assert report.succeeded == 1
        assert services.documents.get(document.id).status == DocumentStatus.PUBLISHED


class TestProcessing:
    def test_nothing_due_before_time(self, services, document, editor, clock):
        services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)

        assert services.scheduler.get_due_jobs() == []

    def test_due_jobs_are_ordered_and_capped(self, services, editor, clock):
        docs = [services.documents.create(actor=editor, title=f"Doc {i}") for i in range(3)]
        for offset, doc in zip((3, 1, 2), docs):
            services.scheduler.schedule(doc.id, "publish", clock.now + timedelta(hours=offset), actor=editor)
        clock.advance(hours=4)

        due = services.scheduler.get_due_jobs(limit=2)

        assert [j.document_id for j in due] == [docs[1].id, docs[2].id]

    def test_publish_job_completes(self, services, document, editor, clock, notifier):
        job = services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)
        clock.advance(hours=1)

        result = services.scheduler.process_job(job.id)

        assert result.success is True
        assert result.status == "completed"
        assert services.scheduler.get(job.id).status == JobStatus.COMPLETED
        refreshed = services.documents.get(document.id)
        assert refreshed.status == DocumentStatus.PUBLISHED
        assert services.versions.get_latest(document.id).created_by_email == "scheduler@cms.internal"
        assert "document.published" in notifier.names()

    def test_completed_job_is_not_processed_twice(self, services, document, editor, clock):
        job = services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)
        clock.advance(hours=1)
        services.scheduler.process_job(job.id)

        again = services.scheduler.process_job(job.id)

        assert again.success is False
        assert services.versions.count(document.id) == 1

    def test_failures_retry_then_fail(self, services, document, editor, clock):
        job = services.scheduler.schedule(document.id, "unpublish", clock.now + timedelta(hours=1), actor=editor)
        clock.advance(hours=1)

        first = services.scheduler.process_job(job.id)
        assert first.success is False
        assert first.status == "pending"
        assert services.scheduler.get(job.id).retry_count == 1

        services.scheduler.process_job(job.id)
        last = services.scheduler.process_job(job.id)

        failed = services.scheduler.get(job.id)
        assert last.status == "failed"
        assert failed.status == JobStatus.FAILED
        assert failed.retry_count == 3
        assert failed.error_message == "Document is not published"
        assert services.scheduler.get_due_jobs() == []

    def test_run_due_serves_every_site(self, services, other_services, document, editor, clock):
        foreign = other_services.documents.create(actor=editor, title="Elsewhere")
        services.scheduler.schedule(document.id, "publish", clock.now + timedelta(minutes=10), actor=editor)
        other_services.scheduler.schedule(foreign.id, "publish", clock.now + timedelta(minutes=20), actor=editor)
        clock.advance(hours=1)

        report = services.scheduler.run_due()

        assert report.processed == 2
        assert report.succeeded == 2
        assert other_services.documents.get(foreign.id).status == DocumentStatus.PUBLISHED

    def test_archive_job(self, services, document, editor, clock):
        job = services.scheduler.schedule(document.id, "archive", clock.now + timedelta(days=1), actor=editor)
        clock.advance(days=1)

        assert services.scheduler.process_job(job.id).success is True
        assert services.documents.get(document.id).status == DocumentStatus.ARCHIVED

    def test_counts(self, services, document, editor, clock):
        job = services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)
        services.scheduler.schedule(document.id, "archive", clock.now + timedelta(hours=2), actor=editor)
        services.scheduler.cancel(job.id, actor=editor)

        counts = services.scheduler.counts()

        assert counts["pending"] == 1
        assert counts["cancelled"] == 1
        assert counts["completed"] == 0


class TestWorkflowDocuments:
    """Scheduled publishing never skips a review stage."""

    def test_draft_stage_is_review_pending(self, services, document, simple_workflow, editor, clock):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)
        job = services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)
        clock.advance(hours=1)

        result = services.scheduler.process_job(job.id)

        assert result.success is False
        assert "publishing requires" in result.error
        assert services.documents.get(document.id).status == DocumentStatus.DRAFT

    def test_review_stage_without_quorum_is_review_pending(self, services, document, simple_workflow, editor,
                                                           clock):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)
        services.workflow.submit(document.id, actor=editor)
        job = services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)
        clock.advance(hours=1)

        result = services.scheduler.process_job(job.id)

        assert result.success is False
        assert "awaiting approvals" in result.error
        assert services.documents.get(document.id).status == DocumentStatus.DRAFT
        assert services.workflow.get_state(document.id, editor).current_stage.name == "Review"

    def test_approval_under_embargo_publishes_when_due(self, services, document, simple_workflow, editor,
                                                       alice, clock):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)
        services.workflow.submit(document.id, actor=editor)
        job = services.scheduler.schedule(
            document.id, "publish", clock.now + timedelta(days=1), actor=editor, is_embargo=True
        )
        held = services.workflow.approve(document.id, actor=alice)
        assert held.error_code == "embargoed"
        clock.advance(days=1)

        result = services.scheduler.process_job(job.id)

        assert result.success is True
        assert services.documents.get(document.id).status == DocumentStatus.PUBLISHED
        history = services.workflow.get_history(document.id)
        assert history[0].actor_id == "system"
        assert history[0].comment == "Scheduled publish"

    def test_unpublish_returns_workflow_to_draft(self, services, document, simple_workflow, editor, alice,
                                                 clock):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)
        services.workflow.submit(document.id, actor=editor)
        services.workflow.approve(document.id, actor=alice)
        job = services.scheduler.schedule(document.id, "unpublish", clock.now + timedelta(hours=1), actor=editor)
        clock.advance(hours=1)

        assert services.scheduler.process_job(job.id).success is True

        state = services.workflow.get_state(document.id, editor)
        assert state.current_stage.name == "Draft"
        assert services.documents.get(document.id).status == DocumentStatus.DRAFT
        assert services.workflow.get_history(document.id)[0].comment == "Scheduled unpublish"

    def test_unpublished_document_goes_back_through_review(self, services, document, simple_workflow, editor,
                                                           alice, clock):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)
        services.workflow.submit(document.id, actor=editor)
        services.workflow.approve(document.id, actor=alice)
        unpublish = services.scheduler.schedule(
            document.id, "unpublish", clock.now + timedelta(hours=1), actor=editor
        )
        clock.advance(hours=1)
        services.scheduler.process_job(unpublish.id)

        publish = services.scheduler.schedule(document.id, "publish", clock.now + timedelta(hours=1), actor=editor)
        clock.advance(hours=1)
        refused = services.scheduler.process_job(publish.id)

        assert refused.success is False
        assert "publishing requires" in refused.error

        services.workflow.submit(document.id, actor=editor)
        again = services.workflow.approve(document.id, actor=alice)

        assert again.advanced is True
        assert services.documents.get(document.id).status == DocumentStatus.PUBLISHED


class TestUnexpectedErrors:
    def test_unexpected_error_is_retried(self, services, document, editor, clock, monkeypatch):
        def explode(self, document_id, **kwargs):
            raise RuntimeError("search backend unavailable")

        monkeypatch.setattr(DocumentService, "archive", explode)
        job = services.scheduler.schedule(document.id, "archive", clock.now + timedelta(hours=1), actor=editor)
        clock.advance(hours=1)

        result = services.scheduler.process_job(job.id)

        assert result.success is False
        assert result.status == "pending"
        stored = services.scheduler.get(job.id)
        assert stored.retry_count == 1
        assert stored.error_message == "search backend unavailable"
        assert [j.id for j in services.scheduler.get_due_jobs()] == [job.id]

    def test_unexpected_errors_end_in_failed(self, services, document, editor, clock, monkeypatch):
        def explode(self, document_id, **kwargs):
            raise RuntimeError("search backend unavailable")

        monkeypatch.setattr(DocumentService, "archive", explode)
        job = services.scheduler.schedule(document.id, "archive", clock.now + timedelta(hours=1), actor=editor)
        clock.advance(hours=1)

        for _ in range(3):
            services.scheduler.process_job(job.id)

        assert services.scheduler.get(job.id).status == JobStatus.FAILED
        assert services.scheduler.get_due_jobs() == []
