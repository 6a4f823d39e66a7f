"""
premium_freight/seed.py

Seed demo users and approver roles.

Rules:
- Safe to run multiple times (idempotent): users are matched by e-mail,
  approver roles by (user, level, plant).
- Plant 3310 gets a full chain for levels 1..5; levels 6..8 are regional,
  so orders of every cost band have someone to route to.

NOTE:
- Orders are not seeded; create them through POST /orders.
"""

from __future__ import annotations

import structlog

from .extensions import db
from .models import Approver, User
from .utils import approval_charge_name

LOGGER = structlog.get_logger(__name__)

DEMO_PASSWORD = "changeme"
DEMO_PLANT = "3310"

# e-mail, name, plant, is_admin
DEMO_USERS = [
    ("admin@example.com", "Administrator", None, True),
    ("requester@example.com", "Requester 3310", DEMO_PLANT, False),
]

# level -> plant of the approver role (None = regional)
DEMO_CHAIN = {
    1: DEMO_PLANT,
    2: None,
    3: DEMO_PLANT,
    4: DEMO_PLANT,
    5: DEMO_PLANT,
    6: None,
    7: None,
    8: None,
}


def _get_or_create_user(email: str, name: str, plant: str | None, is_admin: bool = False) -> User:
    user = User.query.filter_by(email=email).first()
    if user:
        return user

    user = User(email=email, name=name, plant=plant, is_admin=is_admin, is_active=True)
    user.set_password(DEMO_PASSWORD)
    db.session.add(user)
    db.session.flush()
    return user


def seed_demo() -> None:
    for email, name, plant, is_admin in DEMO_USERS:
        _get_or_create_user(email, name, plant, is_admin)

    for level, plant in DEMO_CHAIN.items():
        suffix = plant or "regional"
        user = _get_or_create_user(
            f"approver{level}.{suffix}@example.com",
            f"{approval_charge_name(level)} ({suffix})",
            plant,
        )
        exists = Approver.query.filter_by(user_id=user.id, approval_level=level, plant=plant).first()
        if exists:
            continue
        db.session.add(Approver(user_id=user.id, approval_level=level, plant=plant))

    db.session.commit()
    LOGGER.info("demo_data_seeded", plant=DEMO_PLANT, levels=len(DEMO_CHAIN))
