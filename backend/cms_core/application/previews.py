import secrets
from typing import Iterable, List, Optional

from sqlalchemy import or_, select, update
from werkzeug.security import check_password_hash, generate_password_hash

from cms_core.domain.enums import AuditCategory, FeedbackStatus, FeedbackType, PreviewStatus
from cms_core.domain.exceptions import NotFoundError, StateConflictError, ValidationError
from cms_core.domain.records import AccessResult, Actor
from cms_core.models.base import new_id
from cms_core.models.preview import Preview, PreviewFeedback
from cms_core.utils.site_scope import site_all, site_first, unscoped_first, unscoped_run
from cms_core.utils.time import isoformat, parse_duration, utcnow
from cms_core.utils.transaction import transactional
from .base import ScopedService
from .collaborators import notify_after_commit
from .loaders import load_document

MIN_TOKEN_BYTES = 16


def normalize_emails(emails: Optional[Iterable[str]]) -> List[str]:
    cleaned = []
    for email in emails or []:
        value = (email or "").strip().lower()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def anonymous_actor(email: Optional[str]) -> Actor:
    email = (email or "").strip().lower()
    return Actor(id=email or "anonymous", email=email or "anonymous")


class PreviewService(ScopedService):
    """
    Shareable, token-gated snapshots of a document.

    The token is the only credential; lookups by token therefore cross
    sites and every follow-up call is rebound to the preview's own site.
    """

    def __init__(
        self,
        ctx,
        *,
        audit=None,
        notifier=None,
        clock=utcnow,
        token_bytes: int = 32,
        default_expiry: str = "7d",
    ):
        super().__init__(ctx, audit=audit, clock=clock)
        self.notifier = notifier
        self.token_bytes = max(token_bytes, MIN_TOKEN_BYTES)
        self.default_expiry = default_expiry

    # ------------------------
    # Lifecycle
    # ------------------------

    def create(
        self,
        document_id: str,
        *,
        actor: Actor,
        name: Optional[str] = None,
        expires_in=None,
        password: Optional[str] = None,
        allowed_emails: Optional[Iterable[str]] = None,
        max_views: Optional[int] = None,
    ) -> Preview:
        try:
            lifetime = parse_duration(expires_in or self.default_expiry)
        except (TypeError, ValueError) as exc:
            raise ValidationError(str(exc))

        if max_views is not None:
            try:
                max_views = int(max_views)
            except (TypeError, ValueError):
                raise ValidationError("max_views must be an integer")
            if max_views <= 0:
                raise ValidationError("max_views must be greater than zero")

        if password is not None and not password.strip():
            raise ValidationError("Password cannot be blank")

        with transactional(self.session):
            document = load_document(self.ctx, document_id)
            now = self.clock()

            preview = Preview()
            preview.id = new_id()
            preview.site_id = document.site_id
            preview.document_id = document.id
            preview.name = name
            preview.content_snapshot = document.body or ""
            preview.snapshot_title = document.title
            preview.snapshot_format = document.content_format
            preview.access_token = secrets.token_urlsafe(self.token_bytes)
            preview.password_hash = generate_password_hash(password) if password else None
            preview.allowed_emails = normalize_emails(allowed_emails)
            preview.max_views = max_views
            preview.view_count = 0
            preview.expires_at = now + lifetime
            preview.status = PreviewStatus.ACTIVE
            preview.created_by = actor.email
            preview.created_at = now
            self.session.add(preview)
            self.session.flush()

            self._log(
                actor, "preview.create", AuditCategory.ACCESS, "preview", preview.id,
                title=name or document.title,
                metadata={
                    "document_id": document.id,
                    "expires_at": isoformat(preview.expires_at),
                    "max_views": max_views,
                    "password_protected": preview.requires_password,
                    "allowed_emails": len(preview.allowed_emails),
                },
            )
            notify_after_commit(
                self.session, self.notifier, "preview.created",
                {"preview_id": preview.id, "document_id": document.id, "site_id": document.site_id},
            )

        return preview

    def revoke(self, preview_id: str, *, actor: Actor, reason: Optional[str] = None) -> Preview:
        """Revocation is final; there is no way back to active."""
        with transactional(self.session):
            preview = self.get(preview_id, lock=True)
            if preview.status == PreviewStatus.REVOKED:
                raise StateConflictError("Preview is already revoked")

            preview.status = PreviewStatus.REVOKED
            preview.revoked_by = actor.email
            preview.revoked_at = self.clock()

            self._log(
                actor, "preview.revoke", AuditCategory.ACCESS, "preview", preview.id,
                title=preview.name,
                summary=reason,
                metadata={"document_id": preview.document_id, "view_count": preview.view_count},
            )

        return preview

    # ------------------------
    # Access
    # ------------------------

    def validate_access(
        self,
        token: str,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> AccessResult:
        """
        Check every gate in turn and fail closed. Only a valid result
        carries the frozen snapshot.
        """
        preview = self.get_by_token(token)
        if preview is None:
            return AccessResult.deny("not_found", "Preview not found")

        if preview.status == PreviewStatus.REVOKED:
            return AccessResult.deny("revoked", "This preview has been revoked")

        if self.clock() >= preview.expires_at:
            return AccessResult.deny("expired", "This preview has expired")

        if preview.max_views is not None and preview.view_count >= preview.max_views:
            return AccessResult.deny("max_views_exceeded", "This preview has reached its view limit")

        if preview.requires_password:
            if not password:
                return AccessResult.deny("password_required", "A password is required")
            if not check_password_hash(preview.password_hash, password):
                return AccessResult.deny("invalid_password", "Invalid password")

        if preview.allowed_emails:
            if not email or not email.strip():
                return AccessResult.deny("email_required", "An email address is required")
            if email.strip().lower() not in preview.allowed_emails:
                return AccessResult.deny("email_not_allowed", "This email address is not allowed")

        return AccessResult(valid=True, preview=preview, content=preview.content_snapshot)

    def record_view(self, preview_id: str) -> bool:
        """
        Add exactly one view. The guarded UPDATE refuses to go past
        `max_views` even when two viewers race for the last one.
        """
        with transactional(self.session):
            # Preview id comes from a validated token
            result = unscoped_run(
                self.session,
                update(Preview)
                .where(
                    Preview.id == preview_id,
                    Preview.status == PreviewStatus.ACTIVE,
                    or_(Preview.max_views.is_(None), Preview.view_count < Preview.max_views),
                )
                .values(view_count=Preview.view_count + 1)
                .execution_options(synchronize_session="fetch"),
            )
        return result.rowcount == 1

    def access(
        self,
        token: str,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> AccessResult:
        """Validate and count one genuine view."""
        result = self.validate_access(token, email=email, password=password)
        if not result.valid:
            return result

        preview = result.preview
        if not self.record_view(preview.id):
            return AccessResult.deny("max_views_exceeded", "This preview has reached its view limit")

        with transactional(self.session):
            self._log(
                anonymous_actor(email), "preview.view", AuditCategory.ACCESS, "preview", preview.id,
                site_id=preview.site_id,
                title=preview.name,
                metadata={"view_count": preview.view_count},
            )

        return result

    # ------------------------
    # Reads
    # ------------------------

    def get(self, preview_id: str, *, lock: bool = False) -> Preview:
        stmt = select(Preview).where(Preview.id == preview_id)
        if lock:
            stmt = stmt.with_for_update()
        preview = site_first(self.ctx, stmt)
        if preview is None:
            raise NotFoundError(f"Preview not found: {preview_id}")
        return preview

    def get_by_token(self, token: str) -> Optional[Preview]:
        if not token:
            return None
        # The token is a bearer credential valid regardless of site context
        return unscoped_first(self.session, select(Preview).where(Preview.access_token == token))

    def list_for_document(self, document_id: str) -> List[Preview]:
        stmt = (
            select(Preview)
            .where(Preview.document_id == document_id)
            .order_by(Preview.created_at.desc(), Preview.id.desc())
        )
        return site_all(self.ctx, stmt)

    def list_active(self) -> List[Preview]:
        stmt = (
            select(Preview)
            .where(Preview.status == PreviewStatus.ACTIVE, Preview.expires_at > self.clock())
            .order_by(Preview.expires_at.asc())
        )
        return site_all(self.ctx, stmt)

    # ------------------------
    # Feedback
    # ------------------------

    def add_feedback(
        self,
        preview: Preview,
        *,
        content: str,
        author_email: str,
        feedback_type=FeedbackType.COMMENT,
        page_path: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> PreviewFeedback:
        if not content or not content.strip():
            raise ValidationError("Feedback content is required")
        if not author_email or not author_email.strip():
            raise ValidationError("Author email is required")
        try:
            feedback_type = FeedbackType(feedback_type)
        except ValueError:
            raise ValidationError(f"Invalid feedback type: {feedback_type}")

        site_ctx = self.ctx.for_site(preview.site_id)

        with transactional(self.session):
            if parent_id:
                parent = site_first(site_ctx, select(PreviewFeedback).where(PreviewFeedback.id == parent_id))
                if parent is None or parent.preview_id != preview.id:
                    raise ValidationError("Parent feedback does not belong to this preview")

            feedback = PreviewFeedback()
            feedback.id = new_id()
            feedback.site_id = preview.site_id
            feedback.preview_id = preview.id
            feedback.parent_id = parent_id
            feedback.page_path = page_path
            feedback.feedback_type = feedback_type
            feedback.content = content.strip()
            feedback.author_email = author_email.strip().lower()
            feedback.status = FeedbackStatus.OPEN
            feedback.created_at = self.clock()
            self.session.add(feedback)
            self.session.flush()

            notify_after_commit(
                self.session, self.notifier, "preview.feedback",
                {"preview_id": preview.id, "feedback_id": feedback.id, "type": feedback_type.value},
            )

        return feedback

    def list_feedback(self, preview: Preview, *, status: Optional[str] = None) -> List[PreviewFeedback]:
        stmt = (
            select(PreviewFeedback)
            .where(PreviewFeedback.preview_id == preview.id)
            .order_by(PreviewFeedback.created_at.asc(), PreviewFeedback.id.asc())
        )
        if status:
            try:
                stmt = stmt.where(PreviewFeedback.status == FeedbackStatus(status))
            except ValueError:
                raise ValidationError(f"Invalid feedback status: {status}")
        return site_all(self.ctx.for_site(preview.site_id), stmt)

    def update_feedback_status(self, feedback_id: str, status, *, actor: Actor) -> PreviewFeedback:
        try:
            status = FeedbackStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid feedback status: {status}")

        with transactional(self.session):
            feedback = site_first(self.ctx, select(PreviewFeedback).where(PreviewFeedback.id == feedback_id))
            if feedback is None:
                raise NotFoundError(f"Feedback not found: {feedback_id}")

            feedback.status = status
            feedback.status_changed_by = actor.email

            self._log(
                actor, "preview.feedback_status", AuditCategory.ACCESS, "preview_feedback", feedback.id,
                metadata={"preview_id": feedback.preview_id, "status": status.value},
            )

        return feedback
