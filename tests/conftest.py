"""
Pytest configuration and shared fixtures for the Portfolio API tests.

The durable stores are replaced by in-memory doubles with the same interface
as ``database.PortfolioStore`` / ``database.UserStore``.
"""
import copy
import uuid
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from broadcaster import EventBroadcaster
from config import Settings
from errors import UpstreamFailure, ValidationError
from main import create_app
from mirror import ShadowMirror
from seed import seed_portfolio
from service import PortfolioService
from sync import SyncCoordinator
from uploads import FileStore

ADMIN_ID = "admin@test.com"
CUSTOMER_ID = "cust@test.com"


class InMemoryPortfolioStore:
    def __init__(self):
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.fail = False
        self.update_calls: List[tuple] = []

    def _check(self):
        if self.fail:
            raise UpstreamFailure("Database not available: simulated outage")

    def ensure_indexes(self) -> None:
        self._check()

    def create(self, document: Dict[str, Any]) -> Dict[str, Any]:
        self._check()
        if document["ownerId"] in self.documents:
            raise ValidationError("Portfolio already exists")
        self.documents[document["ownerId"]] = copy.deepcopy(document)
        return dict(document)

    def list_all(self) -> List[Dict[str, Any]]:
        self._check()
        return [copy.deepcopy(d) for d in self.documents.values()]

    def update(self, owner_id: str, fields: Dict[str, Any]) -> None:
        self._check()
        self.update_calls.append((owner_id, copy.deepcopy(fields)))
        doc = self.documents.setdefault(owner_id, {"ownerId": owner_id})
        doc.update({k: copy.deepcopy(v) for k, v in fields.items() if k != "ownerId"})

    def delete(self, owner_id: str) -> bool:
        self._check()
        return self.documents.pop(owner_id, None) is not None


class InMemoryUserStore:
    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}

    def ensure_indexes(self) -> None:
        pass

    def count(self) -> int:
        return len(self.users)

    def create(self, user: Dict[str, Any]) -> Dict[str, Any]:
        if user["email"] in self.users:
            raise ValidationError("User already exists")
        stored = {**user, "id": uuid.uuid4().hex}
        self.users[user["email"]] = stored
        return dict(stored)

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        user = self.users.get(email.lower())
        return dict(user) if user else None

    def find_by_email_or_username(self, email: str, username: str) -> Optional[Dict[str, Any]]:
        for user in self.users.values():
            if user["email"] == email.lower() or user["username"] == username:
                return dict(user)
        return None


@pytest.fixture
def settings(tmp_path):
    """Test settings configuration."""
    return Settings(
        environment="testing",
        jwt_secret="test-secret",
        admin_id=ADMIN_ID,
        customer_id=CUSTOMER_ID,
        uploads_dir=str(tmp_path / "uploads"),
    )


@pytest.fixture
def portfolio_store():
    return InMemoryPortfolioStore()


@pytest.fixture
def user_store():
    return InMemoryUserStore()


@pytest.fixture
def mirror(portfolio_store):
    """Mirror holding the admin and customer seed portfolios."""
    m = ShadowMirror()
    for owner_id in (ADMIN_ID, CUSTOMER_ID):
        doc = seed_portfolio(owner_id)
        m.insert(doc)
        portfolio_store.documents[owner_id] = copy.deepcopy(doc)
    return m


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def service(settings, portfolio_store, mirror, broadcaster):
    sync = SyncCoordinator(mirror, settings.projection_targets())
    file_store = FileStore(settings.uploads_dir)
    return PortfolioService(portfolio_store, mirror, sync, broadcaster, file_store, settings)


@pytest.fixture
def subscribe(broadcaster):
    """Register a live subscriber in the given rooms, with join acks drained."""
    def _subscribe(*rooms):
        subscriber = broadcaster.register()
        for room in rooms:
            broadcaster.join(subscriber.sid, room)
        subscriber.pending()
        return subscriber
    return _subscribe


@pytest.fixture
def app(settings, portfolio_store, user_store):
    return create_app(settings, portfolio_store=portfolio_store, user_store=user_store)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def _bearer(client, email, password):
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def admin_headers(client, settings):
    return _bearer(client, settings.admin_id, settings.admin_password)


@pytest.fixture
def customer_headers(client, settings):
    return _bearer(client, settings.customer_id, settings.customer_password)
