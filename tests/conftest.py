"""Shared fixtures: app with an in-memory DB, a recording mail transport and the plant 3310 scenario."""

from __future__ import annotations

import re
from dataclasses import dataclass

import pytest

from config import TestConfig
from premium_freight import create_app
from premium_freight.errors import NotificationError
from premium_freight.extensions import MAIL_TRANSPORT_KEY, db
from premium_freight.models import Approver, User
from premium_freight.services import build_services

PASSWORD = "secret-pass"
PLANT = "3310"


class RecordingTransport:
    """MailTransport that keeps every message instead of delivering it."""

    def __init__(self) -> None:
        self.sent = []
        self.fail = False

    def send(self, message) -> None:
        if self.fail:
            raise NotificationError("SMTP unavailable")
        self.sent.append(message)

    def to(self, email: str) -> list:
        return [m for m in self.sent if m.to == email]


@dataclass
class People:
    requester: User
    a: User  # level 1, plant 3310
    b: User  # level 2, regional
    c: User  # level 3, plant 3310
    outsider: User  # no approver role


def make_user(email: str, name: str, plant: str | None = PLANT, is_admin: bool = False) -> User:
    user = User(email=email, name=name, plant=plant, is_admin=is_admin, is_active=True)
    user.set_password(PASSWORD)
    db.session.add(user)
    db.session.flush()
    return user


def add_role(user: User, level: int, plant: str | None) -> Approver:
    role = Approver(user_id=user.id, approval_level=level, plant=plant)
    db.session.add(role)
    db.session.flush()
    return role


def extract_token(body: str, action: str, path: str = "single") -> str:
    match = re.search(rf"/actions/{path}\?token=([0-9a-f]+)&action={action}(?!&order)", body)
    assert match, f"no {action} link in mail body"
    return match.group(1)


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    app.extensions[MAIL_TRANSPORT_KEY] = RecordingTransport()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def mailbox(app) -> RecordingTransport:
    return app.extensions[MAIL_TRANSPORT_KEY]


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def people(app) -> People:
    requester = make_user("requester@example.com", "Requester")
    a = make_user("a@example.com", "Approver A")
    b = make_user("b@example.com", "Approver B", plant=None)
    c = make_user("c@example.com", "Approver C")
    outsider = make_user("outsider@example.com", "Outsider", plant="9999")

    add_role(a, 1, PLANT)
    add_role(b, 2, None)
    add_role(c, 3, PLANT)
    db.session.commit()
    return People(requester=requester, a=a, b=b, c=c, outsider=outsider)


@pytest.fixture()
def services(app):
    return build_services()


@pytest.fixture()
def make_order(services, people):
    def _make(required_level: int = 3, plant: str | None = PLANT, cost="1200.00") -> int:
        result = services.machine.submit(
            creator_id=people.requester.id,
            cost_euros=cost,
            plant=plant,
            description="Express shipment",
            required_level=required_level,
        )
        return result.event.order_id

    return _make


@pytest.fixture()
def login(client):
    def _login(user: User):
        response = client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
        assert response.status_code == 200
        return response

    return _login
