import time
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from flask import current_app
from sqlalchemy import case, func, select

from cms_core.domain.enums import AssistAction
from cms_core.domain.exceptions import AssistError, ValidationError
from cms_core.domain.records import Actor, AssistResponse
from cms_core.models.ai_usage import AIUsage
from cms_core.models.base import new_id
from cms_core.utils.transaction import transactional
from .base import ScopedService

MAX_INPUT_CHARS = 50_000


class AssistClient(Protocol):
    """Black-box writing / translation / QC model."""

    def complete(self, text: str, action: AssistAction, locale: Optional[str]) -> AssistResponse:
        ...


class AssistService(ScopedService):
    """
    Runs assist calls and records one AIUsage row per call, success or
    failure. Usage rows are committed on their own so a failed call is
    still accounted for.
    """

    def __init__(self, ctx, *, client: Optional[AssistClient] = None, **kwargs):
        super().__init__(ctx, **kwargs)
        self.client = client

    def run(
        self,
        text: str,
        action,
        *,
        actor: Actor,
        locale: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> AssistResponse:
        try:
            action = AssistAction(action)
        except ValueError:
            raise ValidationError(f"Invalid assist action: {action}")

        if not text or not text.strip():
            raise ValidationError("Text is required")
        if len(text) > MAX_INPUT_CHARS:
            raise ValidationError(f"Text exceeds {MAX_INPUT_CHARS} characters")
        if action == AssistAction.TRANSLATE and not locale:
            raise ValidationError("A target locale is required for translation")

        site_id = self.ctx.require_site()
        if self.client is None:
            raise AssistError("AI assist is not configured")

        started = time.monotonic()
        try:
            response = self.client.complete(text, action, locale)
        except Exception as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            self._record(site_id, actor, action, locale, document_id, None, duration_ms, error=str(exc))
            current_app.logger.warning("Assist %s failed for %s: %s", action.value, actor.email, exc)
            raise AssistError(f"AI assist failed: {exc}") from exc

        duration_ms = int((time.monotonic() - started) * 1000)
        self._record(site_id, actor, action, locale, document_id, response, duration_ms)
        current_app.logger.info(
            "Assist %s for %s: %d in / %d out tokens in %d ms",
            action.value, actor.email, response.input_tokens, response.output_tokens, duration_ms,
        )
        return response

    def usage_summary(
        self,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        actor_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        stmt = (
            select(
                AIUsage.action,
                func.count(AIUsage.id),
                func.coalesce(func.sum(AIUsage.input_tokens), 0),
                func.coalesce(func.sum(AIUsage.output_tokens), 0),
                func.coalesce(func.sum(case((AIUsage.success.is_(True), 1), else_=0)), 0),
            )
            .where(AIUsage.site_id == self.ctx.require_site())
            .group_by(AIUsage.action)
        )
        if since is not None:
            stmt = stmt.where(AIUsage.created_at >= since)
        if until is not None:
            stmt = stmt.where(AIUsage.created_at <= until)
        if actor_email:
            stmt = stmt.where(AIUsage.actor_email == actor_email)

        summary = {
            "total_requests": 0,
            "total_input_tokens": 0,
            "total_output_tokens": 0,
            "by_action": {},
            "success_rate": 1.0,
        }
        successes = 0
        for action, count, tokens_in, tokens_out, ok in self.session.execute(stmt).all():
            summary["total_requests"] += count
            summary["total_input_tokens"] += int(tokens_in)
            summary["total_output_tokens"] += int(tokens_out)
            summary["by_action"][AssistAction(action).value] = count
            successes += int(ok)

        if summary["total_requests"]:
            summary["success_rate"] = successes / summary["total_requests"]
        return summary

    def _record(self, site_id, actor, action, locale, document_id, response, duration_ms, *, error=None):
        with transactional(self.session):
            usage = AIUsage()
            usage.id = new_id()
            usage.site_id = site_id
            usage.actor_id = actor.id
            usage.actor_email = actor.email
            usage.document_id = document_id
            usage.action = action
            usage.locale = locale
            usage.model = response.model if response else None
            usage.input_tokens = response.input_tokens if response else 0
            usage.output_tokens = response.output_tokens if response else 0
            usage.duration_ms = duration_ms
            usage.success = error is None
            usage.error_message = error
            usage.created_at = self.clock()
            self.session.add(usage)
