"""
Tests for site-scoped query helpers.
"""
import pytest
from sqlalchemy import select

from cms_core.domain.exceptions import NotFoundError, TenantContextError
from cms_core.models.document import Document
from cms_core.models.workflow import WorkflowDefinition
from cms_core.utils.site_scope import (
    SiteContext,
    site_all,
    site_first,
    site_or_global_all,
    unscoped_all,
)


class TestSiteIsolation:
    """Rows of one site never show up in another site's queries."""

    def test_site_all_only_returns_own_rows(self, services, other_services, editor):
        services.documents.create(actor=editor, title="Main doc")
        other_services.documents.create(actor=editor, title="Other doc")

        titles = [d.title for d in site_all(services.ctx, select(Document))]

        assert titles == ["Main doc"]

    def test_site_first_does_not_cross_sites(self, services, other_services, editor):
        foreign = other_services.documents.create(actor=editor, title="Other doc")

        found = site_first(services.ctx, select(Document).where(Document.id == foreign.id))

        assert found is None

    def test_lookup_by_foreign_id_is_not_found(self, services, other_services, editor):
        foreign = other_services.documents.create(actor=editor, title="Other doc")

        with pytest.raises(NotFoundError):
            services.documents.get(foreign.id)

    def test_unscoped_all_sees_every_site(self, db, services, other_services, editor):
        services.documents.create(actor=editor, title="Main doc")
        other_services.documents.create(actor=editor, title="Other doc")

        rows = unscoped_all(db.session, select(Document))

        assert len(rows) == 2


class TestMissingSite:
    """A query without a site fails loudly instead of returning everything."""

    def test_site_all_without_site_raises(self, db):
        ctx = SiteContext(db.session, None)

        with pytest.raises(TenantContextError):
            site_all(ctx, select(Document))

    def test_site_first_without_site_raises(self, db):
        ctx = SiteContext(db.session, None)

        with pytest.raises(TenantContextError):
            site_first(ctx, select(Document))

    def test_service_write_without_site_raises(self, app, db, editor):
        from cms_core.application.services import build_services

        services = build_services(SiteContext(db.session, None), app)

        with pytest.raises(TenantContextError):
            services.documents.create(actor=editor, title="Nowhere")


class TestGlobalRows:
    def test_global_workflows_are_shared(self, services, other_services, admin, workflow_definition):
        stages, transitions = workflow_definition
        services.workflow.create_workflow(
            "Shared", stages, transitions, actor=admin, global_=True
        )
        services.workflow.create_workflow(
            "Main only", stages, transitions, actor=admin
        )

        main = {w.name for w in site_or_global_all(services.ctx, select(WorkflowDefinition))}
        other = {w.name for w in site_or_global_all(other_services.ctx, select(WorkflowDefinition))}

        assert main == {"Shared", "Main only"}
        assert other == {"Shared"}
