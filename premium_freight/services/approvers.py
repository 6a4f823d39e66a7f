"""
premium_freight/services/approvers.py

Approver routing.

Rules:
- The next approver set of a pending order is every active user holding an
  Approver row for level act_approv + 1 at the order's plant OR with
  plant = NULL (regional). Both kinds are equally valid; any one may act.
- An empty set for a pending order is a configuration defect and raises
  NoApproverConfiguredError. Levels are never skipped.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import and_, or_

from ..domain import ApprovalSnapshot, REJECTED_LEVEL
from ..errors import NoApproverConfiguredError
from ..extensions import db
from ..models import ApprovalState, Approver, Order, User
from ..utils import approval_charge_name, approver_display_name
from .ledger import ApprovalLedger

LOGGER = structlog.get_logger(__name__)


def _plant_matches(plant: Optional[str]):
    """Approver row valid for ``plant``: same plant or regional."""
    if plant is None:
        return Approver.plant.is_(None)
    return or_(Approver.plant == plant, Approver.plant.is_(None))


class ApproverResolver:
    def __init__(self, session=None, ledger: ApprovalLedger | None = None):
        self.session = session if session is not None else db.session
        self.ledger = ledger or ApprovalLedger(self.session)

    # -----------------------------------------------------------------
    # Next approvers
    # -----------------------------------------------------------------
    def resolve_next_approvers(self, order_id: int) -> list[User]:
        """Users allowed to approve the order's next level (empty once terminal)."""
        snapshot = self.ledger.read(order_id)
        return self.next_approvers_for(snapshot)

    def next_approvers_for(self, snapshot: ApprovalSnapshot) -> list[User]:
        if snapshot.is_terminal:
            return []

        users = self.approvers_for_level(snapshot.next_level, snapshot.plant)
        if not users:
            LOGGER.error(
                "no_approver_configured",
                order_id=snapshot.order_id,
                level=snapshot.next_level,
                plant=snapshot.plant,
            )
            raise NoApproverConfiguredError(snapshot.order_id, snapshot.next_level, snapshot.plant)
        return users

    def approvers_for_level(self, level: int, plant: Optional[str]) -> list[User]:
        """
        Active users approving ``level`` for ``plant``.

        Plant-specific approvers are listed first, then regional ones, by name.
        A user holding both kinds of row appears once.
        """
        rows = (
            self.session.query(User, Approver.plant)
            .join(Approver, Approver.user_id == User.id)
            .filter(
                Approver.approval_level == level,
                _plant_matches(plant),
                User.is_active.is_(True),
            )
            .order_by(Approver.plant.is_(None).asc(), User.name.asc(), User.id.asc())
            .all()
        )

        seen: set[int] = set()
        users: list[User] = []
        for user, _row_plant in rows:
            if user.id in seen:
                continue
            seen.add(user.id)
            users.append(user)
        return users

    # -----------------------------------------------------------------
    # Authorization checks
    # -----------------------------------------------------------------
    def is_authorized_approver(self, user_id: int, order_id: int, target_level: int) -> bool:
        snapshot = self.ledger.read(order_id)
        return self.has_role(user_id, target_level, snapshot.plant)

    def has_role(self, user_id: int, level: int, plant: Optional[str]) -> bool:
        query = (
            self.session.query(Approver.id)
            .join(User, User.id == Approver.user_id)
            .filter(
                Approver.user_id == user_id,
                Approver.approval_level == level,
                _plant_matches(plant),
                User.is_active.is_(True),
            )
        )
        return self.session.query(query.exists()).scalar()

    def is_order_approver(self, user_id: int, snapshot: ApprovalSnapshot) -> bool:
        """
        True if the user approves ANY level of this order's chain at its plant.

        Rejection authority: not limited to the next level.
        """
        query = (
            self.session.query(Approver.id)
            .join(User, User.id == Approver.user_id)
            .filter(
                Approver.user_id == user_id,
                Approver.approval_level >= 1,
                Approver.approval_level <= snapshot.required_level,
                _plant_matches(snapshot.plant),
                User.is_active.is_(True),
            )
        )
        return self.session.query(query.exists()).scalar()

    # -----------------------------------------------------------------
    # Listings
    # -----------------------------------------------------------------
    def roles_for_user(self, user_id: int) -> list[dict]:
        roles = (
            self.session.query(Approver)
            .filter(Approver.user_id == user_id)
            .order_by(Approver.approval_level.asc(), Approver.plant.asc())
            .all()
        )
        return [
            {
                "id": role.id,
                "approval_level": role.approval_level,
                "plant": role.plant,
                "charge_name": approval_charge_name(role.approval_level),
                "display_name": approver_display_name(role.approval_level, role.plant),
            }
            for role in roles
        ]

    def pending_orders_for(self, user_id: int) -> list[Order]:
        """Pending orders whose next level and plant match one of the user's roles."""
        return (
            self.session.query(Order)
            .join(ApprovalState, ApprovalState.order_id == Order.id)
            .join(
                Approver,
                and_(
                    Approver.approval_level == ApprovalState.act_approv + 1,
                    or_(Approver.plant.is_(None), Approver.plant == Order.plant),
                ),
            )
            .filter(
                Approver.user_id == user_id,
                ApprovalState.act_approv != REJECTED_LEVEL,
                ApprovalState.act_approv < Order.required_auth_level,
            )
            .distinct()
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def pending_orders(self) -> list[Order]:
        """Every order still waiting for an approval level."""
        return (
            self.session.query(Order)
            .join(ApprovalState, ApprovalState.order_id == Order.id)
            .filter(
                ApprovalState.act_approv != REJECTED_LEVEL,
                ApprovalState.act_approv < Order.required_auth_level,
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )
