"""
premium_freight/services/ledger.py

Approval ledger: the current-state row per order plus the append-only history.

IMPORTANT:
- read() always goes to the database (column select, no identity-map reuse).
  act_approv must never be cached across requests.
- advance() is a compare-and-swap: the UPDATE is conditioned on the act_approv
  value read at validation time. Zero affected rows means another request won.
- Nothing here commits. The state machine owns the transaction boundary.
"""

from __future__ import annotations

from decimal import Decimal

import structlog
from sqlalchemy import func, select, update

from ..domain import ApprovalSnapshot, HistoryAction
from ..errors import ConcurrentModificationError, OrderNotFoundError
from ..extensions import db
from ..models import ApprovalHistory, ApprovalState, Order, utcnow

LOGGER = structlog.get_logger(__name__)


class ApprovalLedger:
    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------
    def read(self, order_id: int) -> ApprovalSnapshot:
        """Fresh snapshot of an order's approval state."""
        stmt = (
            select(
                Order.id,
                Order.creator_id,
                Order.plant,
                Order.required_auth_level,
                func.coalesce(ApprovalState.act_approv, 0),
            )
            .outerjoin(ApprovalState, ApprovalState.order_id == Order.id)
            .where(Order.id == order_id)
        )
        row = self.session.execute(stmt).one_or_none()
        if row is None:
            raise OrderNotFoundError(order_id)

        return ApprovalSnapshot(
            order_id=row[0],
            creator_id=row[1],
            plant=row[2],
            required_level=row[3],
            act_approv=row[4],
        )

    def history(self, order_id: int) -> list[ApprovalHistory]:
        return (
            self.session.query(ApprovalHistory)
            .filter(ApprovalHistory.order_id == order_id)
            .order_by(ApprovalHistory.id.asc())
            .all()
        )

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------
    def open_order(
        self,
        *,
        creator_id: int,
        plant: str | None,
        required_level: int,
        cost_euros: Decimal,
        description: str | None = None,
    ) -> Order:
        """Insert the order, its level-0 state row and the CREATED entry."""
        order = Order(
            creator_id=creator_id,
            plant=plant,
            required_auth_level=required_level,
            cost_euros=cost_euros,
            description=description,
        )
        self.session.add(order)
        self.session.flush()

        self.session.add(
            ApprovalState(order_id=order.id, act_approv=0, updated_by=creator_id, updated_at=utcnow())
        )
        self.append(order.id, creator_id, HistoryAction.CREATED, 0)
        return order

    def advance(
        self,
        snapshot: ApprovalSnapshot,
        new_level: int,
        actor_id: int,
        action: HistoryAction,
        comment: str | None = None,
    ) -> None:
        """Conditionally move act_approv from snapshot.act_approv to new_level and record it."""
        stmt = (
            update(ApprovalState)
            .where(
                ApprovalState.order_id == snapshot.order_id,
                ApprovalState.act_approv == snapshot.act_approv,
            )
            .values(act_approv=new_level, updated_by=actor_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            LOGGER.info(
                "approval_state_conflict",
                order_id=snapshot.order_id,
                expected_level=snapshot.act_approv,
                new_level=new_level,
            )
            raise ConcurrentModificationError(snapshot.order_id, snapshot.act_approv)

        self.append(snapshot.order_id, actor_id, action, new_level, comment)

    def append(
        self,
        order_id: int,
        actor_id: int | None,
        action: HistoryAction,
        level_reached: int,
        comment: str | None = None,
    ) -> ApprovalHistory:
        entry = ApprovalHistory(
            order_id=order_id,
            actor_id=actor_id,
            action=action.value,
            level_reached=level_reached,
            comment=comment,
            created_at=utcnow(),
        )
        self.session.add(entry)
        self.session.flush()
        return entry
