"""
Tests for the workflow engine: definitions, approvals, rejections and
the publish side effects of entering a published stage.
"""
from datetime import timedelta

import pytest

from cms_core.domain.enums import DocumentStatus
from cms_core.domain.exceptions import NotFoundError, StateConflictError, ValidationError
from cms_core.domain.invariants.exceptions import InvariantViolation
from cms_core.models.document import Document
from cms_core.models.workflow import WorkflowHistory


def stage_name(services, document_id, actor):
    return services.workflow.get_state(document_id, actor).current_stage.name


@pytest.fixture
def in_review(services, document, simple_workflow, editor):
    services.workflow.initialize(document.id, simple_workflow.id, actor=editor)
    result = services.workflow.submit(document.id, actor=editor)
    assert result.success and result.advanced
    return document


class TestDefinitions:
    """Workflow definitions are validated before anything is stored."""

    def test_create_workflow_orders_stages(self, simple_workflow):
        assert [s.stage_order for s in simple_workflow.stages] == [1, 2, 3]
        assert len(simple_workflow.transitions) == 4

    def test_empty_workflow_is_rejected(self, services, admin):
        with pytest.raises(InvariantViolation):
            services.workflow.create_workflow("Empty", [], [], actor=admin)

    def test_first_stage_must_be_order_one(self, services, admin):
        stages = [
            {"name": "Draft", "order": 2, "type": "draft"},
            {"name": "Live", "order": 3, "type": "published"},
        ]
        with pytest.raises(InvariantViolation):
            services.workflow.create_workflow("Bad", stages, [{"from": 2, "to": 3}], actor=admin)

    def test_dead_end_stage_is_rejected(self, services, admin):
        stages = [
            {"name": "Draft", "order": 1, "type": "draft"},
            {"name": "Review", "order": 2, "type": "review"},
            {"name": "Live", "order": 3, "type": "published"},
        ]
        with pytest.raises(InvariantViolation):
            services.workflow.create_workflow("Bad", stages, [{"from": 1, "to": 2}], actor=admin)

    def test_all_approval_needs_named_approvers(self, services, admin):
        stages = [
            {"name": "Draft", "order": 1, "type": "draft"},
            {"name": "Review", "order": 2, "type": "review", "approval_type": "all"},
            {"name": "Live", "order": 3, "type": "published"},
        ]
        transitions = [{"from": 1, "to": 2}, {"from": 2, "to": 3}]
        with pytest.raises(InvariantViolation):
            services.workflow.create_workflow("Bad", stages, transitions, actor=admin)

    def test_malformed_stage_is_a_validation_error(self, services, admin):
        with pytest.raises(ValidationError):
            services.workflow.create_workflow("Bad", [{"order": 1}], [], actor=admin)

    def test_default_workflow_is_picked_up(self, services, document, editor, admin):
        workflow = services.workflow.seed_default_workflow(actor=admin)

        state = services.workflow.initialize(document.id, actor=editor)

        assert state.workflow_id == workflow.id

    def test_new_default_replaces_old_default(self, services, admin):
        first = services.workflow.seed_default_workflow(actor=admin)
        second = services.workflow.seed_default_workflow(actor=admin)

        assert services.workflow.get_default_workflow().id == second.id
        assert services.workflow.get_workflow(first.id).is_default is False

    def test_initialize_without_any_workflow_raises(self, services, document, editor):
        with pytest.raises(NotFoundError):
            services.workflow.initialize(document.id, actor=editor)


class TestReviewFlow:
    """Draft, submit, approve, published."""

    def test_initialize_starts_at_first_stage(self, services, document, simple_workflow, editor):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)

        state = services.workflow.get_state(document.id, editor)

        assert state.current_stage.name == "Draft"
        assert state.approvals == []
        assert state.progress == {"current": 1, "total": 3, "percentage": 33}

    def test_initialize_twice_conflicts(self, services, document, simple_workflow, editor):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)

        with pytest.raises(StateConflictError):
            services.workflow.initialize(document.id, simple_workflow.id, actor=editor)

    def test_submit_moves_to_review(self, services, in_review, editor):
        assert stage_name(services, in_review.id, editor) == "Review"

    def test_approval_publishes_document(self, services, in_review, alice, notifier, indexer):
        result = services.workflow.approve(in_review.id, actor=alice, comment="Looks good")

        assert result.success is True
        assert result.advanced is True
        assert result.new_stage.name == "Published"

        document = services.documents.get(in_review.id)
        assert document.status == DocumentStatus.PUBLISHED
        assert document.published_at is not None

        versions = services.versions.list_versions(in_review.id)
        assert versions[0].version_type == "publish"
        assert versions[0].version_label == "Published"

        assert "document.published" in notifier.names()
        assert [d["id"] for d in indexer.indexed] == [in_review.id]

    def test_reviewer_can_approve_but_editor_cannot(self, services, in_review, alice, editor):
        assert services.workflow.get_state(in_review.id, alice).can_current_user_approve is True
        assert services.workflow.get_state(in_review.id, editor).can_current_user_approve is False

        result = services.workflow.approve(in_review.id, actor=editor)

        assert result.success is False
        assert result.error_code == "not_eligible"

    def test_draft_stage_takes_no_approvals(self, services, document, simple_workflow, editor, alice):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)

        result = services.workflow.approve(document.id, actor=alice)

        assert result.error_code == "not_approvable"

    def test_direct_publish_is_refused_under_workflow(self, services, in_review, editor):
        with pytest.raises(StateConflictError):
            services.documents.publish(in_review.id, actor=editor)

    def test_transition_role_check(self, services, in_review, simple_workflow, editor):
        review = next(s for s in simple_workflow.stages if s.name == "Review")
        advance = next(
            t for t in simple_workflow.transitions_from(review.id)
            if t.transition_type.value == "advance"
        )

        result = services.workflow.execute_transition(in_review.id, advance.id, actor=editor)

        assert result.success is False
        assert result.error_code == "not_allowed"

    def test_transition_from_wrong_stage_is_invalid(self, services, document, simple_workflow, editor):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)
        review_to_published = next(
            t for t in simple_workflow.transitions
            if simple_workflow.stage_by_id(t.from_stage_id).stage_order == 2
            and t.transition_type.value == "advance"
        )

        result = services.workflow.execute_transition(document.id, review_to_published.id, actor=editor)

        assert result.error_code == "invalid_transition"


class TestQuorum:
    @pytest.fixture
    def all_workflow(self, services, admin):
        stages = [
            {"name": "Draft", "order": 1, "type": "draft"},
            {
                "name": "Sign-off",
                "order": 2,
                "type": "approval",
                "approval_type": "all",
                "required_approvers": ["alice", "bob@example.com"],
            },
            {"name": "Live", "order": 3, "type": "published"},
        ]
        transitions = [
            {"from": 1, "to": 2, "type": "advance"},
            {"from": 2, "to": 3, "type": "advance"},
            {"from": 2, "to": 1, "type": "reject"},
        ]
        return services.workflow.create_workflow("Two keys", stages, transitions, actor=admin)

    def test_all_requires_every_named_approver(self, services, document, all_workflow, editor, alice, bob):
        services.workflow.initialize(document.id, all_workflow.id, actor=editor)
        services.workflow.submit(document.id, actor=editor)

        first = services.workflow.approve(document.id, actor=alice)
        assert first.success is True
        assert first.advanced is False
        assert stage_name(services, document.id, editor) == "Sign-off"

        second = services.workflow.approve(document.id, actor=bob)
        assert second.advanced is True
        assert stage_name(services, document.id, editor) == "Live"

    def test_same_approver_counts_once(self, services, document, all_workflow, editor, alice):
        services.workflow.initialize(document.id, all_workflow.id, actor=editor)
        services.workflow.submit(document.id, actor=editor)
        services.workflow.approve(document.id, actor=alice)

        result = services.workflow.approve(document.id, actor=alice)

        assert result.success is False
        assert result.error_code == "already_approved"
        assert len(services.workflow.get_state(document.id, alice).approvals) == 1

    def test_min_approvals(self, services, document, editor, admin, alice, bob):
        stages = [
            {"name": "Draft", "order": 1, "type": "draft"},
            {"name": "Review", "order": 2, "type": "review", "min_approvals": 2},
            {"name": "Live", "order": 3, "type": "published"},
        ]
        transitions = [{"from": 1, "to": 2}, {"from": 2, "to": 3}]
        workflow = services.workflow.create_workflow("Two of many", stages, transitions, actor=admin)
        services.workflow.initialize(document.id, workflow.id, actor=editor)
        services.workflow.submit(document.id, actor=editor)

        assert services.workflow.approve(document.id, actor=alice).advanced is False
        assert services.workflow.approve(document.id, actor=bob).advanced is True


class TestRejection:
    def test_reject_requires_comment(self, services, in_review, alice):
        with pytest.raises(ValidationError):
            services.workflow.reject(in_review.id, "   ", actor=alice)

    def test_reject_returns_to_draft_and_clears_approvals(self, services, in_review, alice, editor):
        result = services.workflow.reject(in_review.id, "Needs sources", actor=alice)

        assert result.success is True
        state = services.workflow.get_state(in_review.id, editor)
        assert state.current_stage.name == "Draft"
        assert state.approvals == []
        assert [r.comment for r in state.rejections] == ["Needs sources"]

    def test_approvals_reset_on_stage_reentry(self, services, document, editor, admin, alice, bob):
        stages = [
            {"name": "Draft", "order": 1, "type": "draft"},
            {"name": "Review", "order": 2, "type": "review", "min_approvals": 2},
            {"name": "Live", "order": 3, "type": "published"},
        ]
        transitions = [{"from": 1, "to": 2}, {"from": 2, "to": 3}, {"from": 2, "to": 1, "type": "reject"}]
        workflow = services.workflow.create_workflow("Two", stages, transitions, actor=admin)
        services.workflow.initialize(document.id, workflow.id, actor=editor)
        services.workflow.submit(document.id, actor=editor)
        services.workflow.approve(document.id, actor=alice)
        services.workflow.reject(document.id, "Rework", actor=bob)
        services.workflow.submit(document.id, actor=editor)

        result = services.workflow.approve(document.id, actor=bob)

        assert result.advanced is False
        assert len(services.workflow.get_state(document.id, bob).approvals) == 1

    def test_no_rejection_path_from_draft(self, services, document, simple_workflow, editor):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)

        result = services.workflow.reject(document.id, "Nope", actor=editor)

        assert result.success is False
        assert result.error_code == "no_rejection_path"

    def test_leaving_published_unpublishes(self, services, in_review, alice, editor, indexer):
        services.workflow.approve(in_review.id, actor=alice)

        result = services.workflow.reject(in_review.id, "Pull it", actor=editor)

        assert result.success is True
        assert services.documents.get(in_review.id).status == DocumentStatus.DRAFT
        assert in_review.id in indexer.removed

    def test_comment_required_transition(self, services, document, editor, admin):
        stages = [
            {"name": "Draft", "order": 1, "type": "draft"},
            {"name": "Live", "order": 2, "type": "published"},
        ]
        transitions = [{"from": 1, "to": 2, "requires_comment": True}]
        workflow = services.workflow.create_workflow("Quick", stages, transitions, actor=admin)
        services.workflow.initialize(document.id, workflow.id, actor=editor)

        with pytest.raises(ValidationError):
            services.workflow.submit(document.id, actor=editor)

        assert services.workflow.submit(document.id, actor=editor, comment="Ship it").advanced is True


class TestEmbargo:
    def test_quorum_under_embargo_records_approval_only(self, db, services, in_review, alice, clock):
        document = db.session.get(Document, in_review.id)
        document.embargo_until = clock.now + timedelta(days=1)
        db.session.commit()

        result = services.workflow.approve(in_review.id, actor=alice)

        assert result.success is True
        assert result.advanced is False
        assert result.error_code == "embargoed"
        assert services.documents.get(in_review.id).status == DocumentStatus.DRAFT
        assert len(services.workflow.get_state(in_review.id, alice).approvals) == 1


class TestHistory:
    def test_history_is_newest_first(self, services, document, simple_workflow, editor, alice, clock):
        services.workflow.initialize(document.id, simple_workflow.id, actor=editor)
        clock.advance(minutes=5)
        services.workflow.submit(document.id, actor=editor)
        clock.advance(minutes=5)
        services.workflow.approve(document.id, actor=alice, comment="OK")

        history = services.workflow.get_history(document.id)

        assert [(h.from_stage_name, h.to_stage_name) for h in history] == [
            ("Review", "Published"),
            ("Draft", "Review"),
        ]
        assert history[0].actor_email == alice.email
        assert history[0].comment == "OK"

    def test_history_rows_are_append_only(self, db, services, in_review):
        row = db.session.query(WorkflowHistory).first()

        row.comment = "edited"
        with pytest.raises(RuntimeError):
            db.session.flush()
        db.session.rollback()
