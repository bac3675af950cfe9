"""
Tests for shareable previews: snapshots, access gates, view counting
and feedback threads.
"""
from datetime import timedelta

import pytest

from cms_core.domain.enums import PreviewStatus
from cms_core.domain.exceptions import StateConflictError, ValidationError
from cms_core.domain.invariants.exceptions import InvariantViolation
from cms_core.models.audit_log import AuditLog
from cms_core.models.preview import Preview


class TestCreate:
    def test_token_is_long_and_unique(self, services, document, editor):
        first = services.previews.create(document.id, actor=editor)
        second = services.previews.create(document.id, actor=editor)

        assert len(first.access_token) >= 43
        assert first.access_token != second.access_token

    def test_default_expiry(self, services, document, editor, clock):
        preview = services.previews.create(document.id, actor=editor)

        assert preview.expires_at == clock.now + timedelta(days=7)

    def test_password_is_hashed(self, services, document, editor):
        preview = services.previews.create(document.id, actor=editor, password="s3cret")

        assert preview.password_hash
        assert "s3cret" not in preview.password_hash
        assert preview.requires_password is True

    def test_allowed_emails_are_normalized(self, services, document, editor):
        preview = services.previews.create(
            document.id, actor=editor, allowed_emails=[" Reviewer@Example.com", "reviewer@example.com"]
        )

        assert preview.allowed_emails == ["reviewer@example.com"]

    @pytest.mark.parametrize("kwargs", [
        {"expires_in": "soon"},
        {"max_views": 0},
        {"max_views": "many"},
        {"password": "   "},
    ])
    def test_invalid_options(self, services, document, editor, kwargs):
        with pytest.raises(ValidationError):
            services.previews.create(document.id, actor=editor, **kwargs)


class TestSnapshot:
    """A preview shows the content as it was when the link was made."""

    def test_content_is_frozen(self, services, document, editor):
        preview = services.previews.create(document.id, actor=editor)
        services.documents.update(document.id, {"body": "<p>rewritten</p>"}, actor=editor)

        result = services.previews.validate_access(preview.access_token)

        assert result.valid is True
        assert result.content == "<p>first draft</p>"

    def test_snapshot_fields_cannot_change(self, db, services, document, editor):
        preview = services.previews.create(document.id, actor=editor)
        row = db.session.get(Preview, preview.id)

        row.content_snapshot = "tampered"
        with pytest.raises(InvariantViolation):
            db.session.flush()
        db.session.rollback()


class TestAccessGates:
    def test_unknown_token(self, services):
        result = services.previews.validate_access("no-such-token")

        assert result.valid is False
        assert result.error == "not_found"

    def test_expired(self, services, document, editor, clock):
        preview = services.previews.create(document.id, actor=editor, expires_in="1h")
        clock.advance(hours=1)

        assert services.previews.validate_access(preview.access_token).error == "expired"

    def test_password_gate(self, services, document, editor):
        token = services.previews.create(document.id, actor=editor, password="s3cret").access_token

        assert services.previews.validate_access(token).error == "password_required"
        assert services.previews.validate_access(token, password="wrong").error == "invalid_password"
        assert services.previews.validate_access(token, password="s3cret").valid is True

    def test_email_gate_is_case_insensitive(self, services, document, editor):
        token = services.previews.create(
            document.id, actor=editor, allowed_emails=["reviewer@example.com"]
        ).access_token

        assert services.previews.validate_access(token).error == "email_required"
        assert services.previews.validate_access(token, email="x@example.com").error == "email_not_allowed"
        assert services.previews.validate_access(token, email="REVIEWER@example.com ").valid is True

    def test_password_is_checked_before_email(self, services, document, editor):
        token = services.previews.create(
            document.id, actor=editor, password="pw", allowed_emails=["a@example.com"]
        ).access_token

        assert services.previews.validate_access(token, email="a@example.com").error == "password_required"

    def test_validation_does_not_count_views(self, services, document, editor):
        preview = services.previews.create(document.id, actor=editor, max_views=1)

        for _ in range(3):
            assert services.previews.validate_access(preview.access_token).valid is True

        assert services.previews.get(preview.id).view_count == 0


class TestViewLimit:
    def test_views_are_counted_up_to_the_limit(self, services, document, editor):
        preview = services.previews.create(document.id, actor=editor, max_views=2)

        assert services.previews.access(preview.access_token).valid is True
        assert services.previews.access(preview.access_token).valid is True
        third = services.previews.access(preview.access_token)

        assert third.valid is False
        assert third.error == "max_views_exceeded"
        assert services.previews.get(preview.id).view_count == 2

    def test_record_view_refuses_past_limit(self, services, document, editor):
        preview = services.previews.create(document.id, actor=editor, max_views=1)

        assert services.previews.record_view(preview.id) is True
        assert services.previews.record_view(preview.id) is False

    def test_views_are_audited_on_the_preview_site(self, db, services, document, editor, site):
        preview = services.previews.create(document.id, actor=editor)

        services.previews.access(preview.access_token, email="Guest@Example.com")

        entry = db.session.query(AuditLog).filter_by(action="preview.view").one()
        assert entry.site_id == site.id
        assert entry.actor_email == "guest@example.com"


class TestRevoke:
    def test_revoked_preview_is_denied(self, services, document, editor):
        preview = services.previews.create(document.id, actor=editor)

        services.previews.revoke(preview.id, actor=editor)

        assert services.previews.validate_access(preview.access_token).error == "revoked"
        assert services.previews.list_active() == []

    def test_revoke_twice_conflicts(self, services, document, editor):
        preview = services.previews.create(document.id, actor=editor)
        services.previews.revoke(preview.id, actor=editor)

        with pytest.raises(StateConflictError):
            services.previews.revoke(preview.id, actor=editor)

    def test_revoked_preview_cannot_be_reactivated(self, db, services, document, editor):
        preview = services.previews.create(document.id, actor=editor)
        services.previews.revoke(preview.id, actor=editor)
        row = db.session.get(Preview, preview.id)

        row.status = PreviewStatus.ACTIVE
        with pytest.raises(InvariantViolation):
            db.session.flush()
        db.session.rollback()


class TestFeedback:
    def test_threaded_feedback(self, services, document, editor, clock):
        preview = services.previews.create(document.id, actor=editor)
        root = services.previews.add_feedback(
            preview, content="Typo in the headline", author_email="Guest@Example.com", feedback_type="issue"
        )
        clock.advance(minutes=1)
        reply = services.previews.add_feedback(
            preview, content="Fixed", author_email="edith@example.com", parent_id=root.id
        )

        thread = services.previews.list_feedback(preview)

        assert [f.id for f in thread] == [root.id, reply.id]
        assert reply.parent_id == root.id
        assert root.author_email == "guest@example.com"

    def test_parent_from_other_preview_is_rejected(self, services, document, editor):
        first = services.previews.create(document.id, actor=editor)
        second = services.previews.create(document.id, actor=editor)
        foreign = services.previews.add_feedback(first, content="Hi", author_email="a@example.com")

        with pytest.raises(ValidationError):
            services.previews.add_feedback(
                second, content="Reply", author_email="a@example.com", parent_id=foreign.id
            )

    def test_empty_feedback_is_rejected(self, services, document, editor):
        preview = services.previews.create(document.id, actor=editor)

        with pytest.raises(ValidationError):
            services.previews.add_feedback(preview, content=" ", author_email="a@example.com")

    def test_status_update_and_filter(self, services, document, editor):
        preview = services.previews.create(document.id, actor=editor)
        item = services.previews.add_feedback(preview, content="Hi", author_email="a@example.com")

        services.previews.update_feedback_status(item.id, "resolved", actor=editor)

        assert [f.id for f in services.previews.list_feedback(preview, status="resolved")] == [item.id]
        assert services.previews.list_feedback(preview, status="open") == []
