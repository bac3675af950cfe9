"""
Site-scoped query helpers.

Every query either goes through the scoped helpers (`site_first`,
`site_all`, `site_or_global_all`), which append the tenant predicate for
the caller, or through the `unscoped_*` helpers. The unscoped helpers take a
bare session rather than a SiteContext, so cross-site access is visible at
the call site and in review.
"""
from dataclasses import dataclass, replace
from typing import Any, List, Optional

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from cms_core.domain.exceptions import TenantContextError


@dataclass(frozen=True)
class SiteContext:
    session: Session
    site_id: Optional[str]

    def require_site(self) -> str:
        if self.site_id is None:
            raise TenantContextError("A site context is required for this operation")
        return self.site_id

    def for_site(self, site_id: Optional[str]) -> "SiteContext":
        return replace(self, site_id=site_id)


def _site_column(stmt: Select, model, caller: str):
    if model is None:
        descriptions = stmt.column_descriptions
        model = descriptions[0].get("entity") if descriptions else None

    column = getattr(model, "site_id", None)
    if column is None:
        raise TenantContextError(f"{caller}() needs a site-owned entity, got {model!r}")
    return column


def _require_site(ctx: SiteContext, caller: str) -> str:
    if ctx.site_id is None:
        message = f"{caller}() requires a site context (site_id must not be None)"
        current_app.logger.error(message)
        raise TenantContextError(message)
    return ctx.site_id


def _scoped(ctx: SiteContext, stmt: Select, model, caller: str) -> Select:
    site_id = _require_site(ctx, caller)
    return stmt.where(_site_column(stmt, model, caller) == site_id)


def site_first(ctx: SiteContext, stmt: Select, *, model=None) -> Optional[Any]:
    """First row of `stmt` restricted to the current site."""
    scoped = _scoped(ctx, stmt, model, "site_first")
    return ctx.session.execute(scoped.limit(1)).scalars().first()


def site_all(ctx: SiteContext, stmt: Select, *, model=None) -> List[Any]:
    """All rows of `stmt` restricted to the current site."""
    scoped = _scoped(ctx, stmt, model, "site_all")
    return list(ctx.session.execute(scoped).scalars().all())


def site_or_global_all(ctx: SiteContext, stmt: Select, *, model=None) -> List[Any]:
    """Rows owned by the current site plus global rows (site_id IS NULL)."""
    site_id = _require_site(ctx, "site_or_global_all")
    column = _site_column(stmt, model, "site_or_global_all")
    scoped = stmt.where(or_(column == site_id, column.is_(None)))
    return list(ctx.session.execute(scoped).scalars().all())


def unscoped_first(session: Session, stmt: Select) -> Optional[Any]:
    """UNSCOPED: crosses site boundaries. Justify every call."""
    return session.execute(stmt.limit(1)).scalars().first()


def unscoped_all(session: Session, stmt: Select) -> List[Any]:
    """UNSCOPED: crosses site boundaries. Justify every call."""
    return list(session.execute(stmt).scalars().all())


def unscoped_run(session: Session, stmt):
    """UNSCOPED write (UPDATE/DELETE/INSERT). Returns the cursor result."""
    return session.execute(stmt)
