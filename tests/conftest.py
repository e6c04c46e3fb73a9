
# tests/conftest.py

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest
from fastapi.testclient import TestClient

from app.collaborators.mock import RecordingPayments, RecordingStorage
from app.purchases.effects import EffectDispatcher
from app.purchases.service import Actor, TransitionHandler
from app.purchases.store import InMemoryPurchaseStore
from main import create_app
from security import create_access_token


T0 = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


@dataclass
class AuthedUser:
    user_id: uuid.UUID
    token: str
    actor: Actor


# ---------------------------
# Core fixtures
# ---------------------------

@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def store() -> InMemoryPurchaseStore:
    return InMemoryPurchaseStore()


@pytest.fixture()
def payments() -> RecordingPayments:
    return RecordingPayments()


@pytest.fixture()
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture()
def dispatcher(payments, storage):
    d = EffectDispatcher(payments, storage, max_workers=1)
    yield d
    d.shutdown(wait=True)


@pytest.fixture()
def handler(store, clock) -> TransitionHandler:
    return TransitionHandler(store, clock=clock)


@pytest.fixture()
def buyer() -> Actor:
    return Actor(user_id=uuid.uuid4())


@pytest.fixture()
def other_buyer() -> Actor:
    return Actor(user_id=uuid.uuid4())


@pytest.fixture()
def admin() -> Actor:
    return Actor(user_id=uuid.uuid4(), is_admin=True)


def make_completed(handler: TransitionHandler, buyer: Actor, *, file_ref: Optional[str] = "products/demo/file.zip"):
    p = handler.create_order(buyer, product_id=uuid.uuid4(), price_cents=12900, product_file_ref=file_ref)
    return handler.record_payment(p.id, succeeded=True).purchase


def make_disputed(handler: TransitionHandler, buyer: Actor, *, reason: str = "The archive is corrupted and will not open"):
    p = make_completed(handler, buyer)
    return handler.open_dispute(p.id, buyer, reason).purchase


@pytest.fixture()
def completed(handler, buyer):
    return make_completed(handler, buyer)


@pytest.fixture()
def disputed(handler, buyer):
    return make_disputed(handler, buyer)


# ---------------------------
# API fixtures
# ---------------------------

@pytest.fixture()
def app(store, dispatcher, clock):
    return create_app(store=store, dispatcher=dispatcher, clock=clock, start_worker=False)


@pytest.fixture()
def client(app) -> TestClient:
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(app, raise_server_exceptions=False)


def _auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _user(role: Optional[str] = None) -> AuthedUser:
    user_id = uuid.uuid4()
    return AuthedUser(
        user_id=user_id,
        token=create_access_token(str(user_id), role=role),
        actor=Actor(user_id=user_id, is_admin=role == "admin"),
    )


@pytest.fixture()
def user1() -> AuthedUser:
    return _user()


@pytest.fixture()
def user2() -> AuthedUser:
    return _user()


@pytest.fixture()
def admin_user() -> AuthedUser:
    return _user("admin")


