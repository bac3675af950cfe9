"""
Pytest configuration and fixtures for the CMS core tests.
"""
from datetime import datetime, timedelta, timezone

import pytest
from flask_jwt_extended import create_access_token

from cms_core import create_app
from cms_core.application.services import (
    ASSIST_CLIENT_KEY,
    CLOCK_KEY,
    INDEXER_KEY,
    NOTIFIER_KEY,
    build_services,
)
from cms_core.domain.records import Actor, AssistResponse
from cms_core.extensions import db as _db
from cms_core.models.site import Site
from cms_core.utils.site_scope import SiteContext

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def send(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [event for event, _ in self.events]


class RecordingIndexer:
    def __init__(self):
        self.indexed = []
        self.removed = []

    def index(self, document):
        self.indexed.append(document)

    def remove(self, document_id):
        self.removed.append(document_id)


class FakeAssistClient:
    def __init__(self):
        self.fail_with = None
        self.calls = []

    def complete(self, text, action, locale):
        self.calls.append((text, action, locale))
        if self.fail_with is not None:
            raise self.fail_with
        return AssistResponse(
            text=f"[{action.value}] {text}",
            input_tokens=len(text.split()),
            output_tokens=7,
            model="fake-model",
        )


@pytest.fixture(scope="function")
def app():
    """Create a fresh app and database for each test."""
    app = create_app("testing")
    app.extensions[NOTIFIER_KEY] = RecordingNotifier()
    app.extensions[INDEXER_KEY] = RecordingIndexer()
    app.extensions[ASSIST_CLIENT_KEY] = FakeAssistClient()
    app.extensions[CLOCK_KEY] = FakeClock()

    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def clock(app):
    return app.extensions[CLOCK_KEY]


@pytest.fixture
def notifier(app):
    return app.extensions[NOTIFIER_KEY]


@pytest.fixture
def indexer(app):
    return app.extensions[INDEXER_KEY]


@pytest.fixture
def assist_client(app):
    return app.extensions[ASSIST_CLIENT_KEY]


@pytest.fixture
def client(app):
    return app.test_client()


def make_site(name, slug, **kwargs):
    site = Site(name=name, slug=slug, is_active=True, **kwargs)
    _db.session.add(site)
    _db.session.commit()
    return site


@pytest.fixture
def site(db):
    return make_site("Main Site", "main")


@pytest.fixture
def other_site(db):
    return make_site("Other Site", "other")


@pytest.fixture
def ctx(db, site):
    return SiteContext(db.session, site.id)


@pytest.fixture
def services(app, ctx):
    return build_services(ctx, app)


@pytest.fixture
def other_services(app, db, other_site):
    return build_services(SiteContext(db.session, other_site.id), app)


# ------------------------
# Actors
# ------------------------


@pytest.fixture
def editor():
    return Actor(id="edith", email="edith@example.com", name="Edith", roles=frozenset({"editor"}))


@pytest.fixture
def admin():
    return Actor(id="ada", email="ada@example.com", name="Ada", roles=frozenset({"admin"}))


@pytest.fixture
def alice():
    return Actor(id="alice", email="alice@example.com", name="Alice", roles=frozenset({"reviewer"}))


@pytest.fixture
def bob():
    return Actor(id="bob", email="bob@example.com", name="Bob", roles=frozenset({"reviewer"}))


@pytest.fixture
def outsider():
    return Actor(id="olga", email="olga@example.com", name="Olga", roles=frozenset({"viewer"}))


# ------------------------
# Content
# ------------------------


@pytest.fixture
def document(services, editor):
    return services.documents.create(
        actor=editor,
        title="Launch announcement",
        body="<p>first draft</p>",
        meta={"lang": "en"},
        slug="launch",
    )


SIMPLE_STAGES = [
    {"name": "Draft", "order": 1, "type": "draft"},
    {
        "name": "Review",
        "order": 2,
        "type": "review",
        "approval_type": "any",
        "required_approvers": ["reviewer"],
        "min_approvals": 1,
    },
    {"name": "Published", "order": 3, "type": "published"},
]

SIMPLE_TRANSITIONS = [
    {"from": 1, "to": 2, "type": "advance"},
    {"from": 2, "to": 3, "type": "advance", "allowed_roles": ["reviewer"]},
    {"from": 2, "to": 1, "type": "reject"},
    {"from": 3, "to": 1, "type": "reject", "allowed_roles": ["editor", "admin"]},
]


@pytest.fixture
def workflow_definition():
    return [dict(s) for s in SIMPLE_STAGES], [dict(t) for t in SIMPLE_TRANSITIONS]


@pytest.fixture
def simple_workflow(services, admin):
    return services.workflow.create_workflow(
        "Simple Review", SIMPLE_STAGES, SIMPLE_TRANSITIONS, actor=admin
    )


# ------------------------
# HTTP helpers
# ------------------------


@pytest.fixture
def auth_headers(app):
    def build(actor, site):
        token = create_access_token(
            identity=actor.id,
            additional_claims={
                "email": actor.email,
                "name": actor.name,
                "roles": sorted(actor.roles),
                "site_id": site.id,
            },
        )
        return {"Authorization": f"Bearer {token}", "X-Site-ID": site.id}
    return build
