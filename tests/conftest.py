import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql import operators

from db.models import Automation, Contact, Profile
from services.messaging import MockMessagingProvider

COMPARATORS = {
    operators.eq: lambda a, b: a is not None and b is not None and str(a) == str(b),
    operators.ne: lambda a, b: str(a) != str(b),
    operators.lt: lambda a, b: a is not None and a < b,
    operators.le: lambda a, b: a is not None and a <= b,
    operators.gt: lambda a, b: a is not None and a > b,
    operators.ge: lambda a, b: a is not None and a >= b,
}


class FakeQuery:
    def __init__(self, db, model):
        self.db = db
        self.model = model
        self.criteria = []
        self._limit = None

    def filter(self, *criteria):
        self.criteria.extend(criteria)
        return self

    def order_by(self, *args):
        return self

    def limit(self, value):
        self._limit = value
        return self

    def _matches(self, obj):
        for crit in self.criteria:
            compare = COMPARATORS[crit.operator]
            if not compare(getattr(obj, crit.left.key), crit.right.value):
                return False
        return True

    def all(self):
        rows = [obj for obj in self.db.rows(self.model) if self._matches(obj)]
        return rows[: self._limit] if self._limit is not None else rows

    def first(self):
        rows = self.all()
        return rows[0] if rows else None

    def delete(self, synchronize_session=None):
        rows = self.all()
        for row in rows:
            self.db.objects.remove(row)
        return len(rows)


class FakeDB:
    """In-memory stand-in for a Session, evaluating simple column comparisons."""

    def __init__(self):
        self.objects = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_commits = 0

    def rows(self, model):
        return [obj for obj in self.objects if isinstance(obj, model)]

    def query(self, model):
        return FakeQuery(self, model)

    def add(self, obj):
        if hasattr(type(obj), "id") and getattr(obj, "id", None) is None:
            obj.id = uuid.uuid4()
        if getattr(obj, "created_at", None) is None:
            obj.created_at = datetime.now(timezone.utc)
        if not any(existing is obj for existing in self.objects):
            self.objects.append(obj)

    def delete(self, obj):
        self.objects = [existing for existing in self.objects if existing is not obj]

    def commit(self):
        if self.fail_commits:
            self.fail_commits -= 1
            raise OperationalError("INSERT", {}, Exception("database unavailable"))
        self.commits += 1

    def refresh(self, obj):
        return None

    def rollback(self):
        self.rollbacks += 1

    def flush(self):
        return None

    def close(self):
        return None


def make_node(node_id, kind, node_type="action", label=None, **config):
    return {
        "id": node_id,
        "type": "custom",
        "data": {"nodeType": node_type, "type": kind, "label": label or node_id, "config": config},
    }


def make_edge(source, target, source_handle=None):
    edge = {"id": f"{source}-{target}", "source": source, "target": target}
    if source_handle is not None:
        edge["sourceHandle"] = source_handle
    return edge


@pytest.fixture
def db():
    return FakeDB()


@pytest.fixture
def profile(db):
    profile = Profile(
        id=uuid.uuid4(),
        name="Owner",
        email="owner@example.com",
        password_hash="x",
        company_name="Acme",
        meta_access_token="token",
        meta_waba_id="waba-1",
        meta_phone_number_id="phone-1",
        webhook_path_prefix="a1b2c3",
    )
    db.add(profile)
    return profile


@pytest.fixture
def make_contact(db, profile):
    def _make(name="Ana", phone="5511987654321", tags=None, custom_fields=None):
        contact = Contact(
            id=uuid.uuid4(),
            user_id=profile.id,
            name=name,
            phone=phone,
            tags=list(tags or []),
            custom_fields=dict(custom_fields or {}),
        )
        db.add(contact)
        return contact

    return _make


@pytest.fixture
def make_automation(db, profile):
    def _make(nodes, edges=(), status="active", name="Flow"):
        automation = Automation(
            id=uuid.uuid4(),
            user_id=profile.id,
            name=name,
            status=status,
            nodes=list(nodes),
            edges=list(edges),
        )
        db.add(automation)
        return automation

    return _make


@pytest.fixture
def provider(monkeypatch):
    provider = MockMessagingProvider()
    monkeypatch.setattr("services.automation.engine.get_messaging_provider", lambda profile, cache=None: provider)
    return provider


@pytest.fixture
def node():
    return make_node


@pytest.fixture
def edge():
    return make_edge
