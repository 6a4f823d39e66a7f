"""
Premium Freight – Approval Domain Models

Tables:
- users                        login users (Flask-Login), plant-scoped
- premium_freight_orders       freight requests (required level fixed at creation)
- premium_freight_approvals    one row per order: current approval level (act_approv)
- approval_history             append-only audit trail of CREATED / APPROVED / REJECTED
- approvers                    (user, approval_level, plant-or-null) routing table
- email_action_tokens          single-use approve/reject links for one order
- email_bulk_action_tokens     one link acting on many orders (weekly digest)
- email_notifications          log of notifications handed to the mail transport

IMPORTANT:
- Order status is DERIVED from act_approv. There is no writable status column.
- act_approv is only written by services.ledger.ApprovalLedger (conditional update).
- approval_history rows are never updated or deleted (enforced below).
"""

from __future__ import annotations

from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy import event
from werkzeug.security import generate_password_hash, check_password_hash

from .domain import ApprovalSnapshot, OrderState, state_for
from .errors import HistoryImmutableError
from .extensions import db


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite/MySQL DATETIME friendly)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """System login user. ``plant`` is None for regional staff."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    plant = db.Column(db.String(20), nullable=True, index=True)

    is_admin = db.Column(db.Boolean, default=False, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    approver_roles = db.relationship(
        "Approver",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "plant": self.plant}

    def __repr__(self):
        return f"<User {self.email}>"


# ---------------------------------------------------------------------
# Orders & approval state
# ---------------------------------------------------------------------
class Order(db.Model):
    """Premium freight request."""

    __tablename__ = "premium_freight_orders"

    id = db.Column(db.Integer, primary_key=True)

    creator_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    plant = db.Column(db.String(20), nullable=True, index=True)

    description = db.Column(db.Text, nullable=True)
    cost_euros = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Fixed at creation; never updated afterwards
    required_auth_level = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    creator = db.relationship("User", foreign_keys=[creator_id])

    approval_state = db.relationship(
        "ApprovalState",
        back_populates="order",
        uselist=False,
        cascade="all, delete-orphan",
    )

    history = db.relationship(
        "ApprovalHistory",
        back_populates="order",
        order_by="ApprovalHistory.id",
        lazy=True,
    )

    @property
    def act_approv(self) -> int:
        if self.approval_state is None:
            return 0
        return self.approval_state.act_approv

    @property
    def state(self) -> OrderState:
        return state_for(self.act_approv, self.required_auth_level)

    def snapshot(self) -> ApprovalSnapshot:
        return ApprovalSnapshot(
            order_id=self.id,
            creator_id=self.creator_id,
            plant=self.plant,
            required_level=self.required_auth_level,
            act_approv=self.act_approv,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "creator_id": self.creator_id,
            "plant": self.plant,
            "description": self.description,
            "cost_euros": str(self.cost_euros) if self.cost_euros is not None else None,
            "required_auth_level": self.required_auth_level,
            "act_approv": self.act_approv,
            "state": self.state.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Order {self.id} plant={self.plant} level={self.act_approv}/{self.required_auth_level}>"


class ApprovalState(db.Model):
    """Current approval level of an order (1-1). act_approv = 99 means rejected."""

    __tablename__ = "premium_freight_approvals"

    order_id = db.Column(
        db.Integer,
        db.ForeignKey("premium_freight_orders.id", ondelete="CASCADE"),
        primary_key=True,
    )

    act_approv = db.Column(db.Integer, nullable=False, default=0, index=True)

    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_at = db.Column(db.DateTime, default=utcnow)

    order = db.relationship("Order", back_populates="approval_state")


class ApprovalHistory(db.Model):
    """Append-only approval audit trail."""

    __tablename__ = "approval_history"

    id = db.Column(db.Integer, primary_key=True)

    order_id = db.Column(
        db.Integer,
        db.ForeignKey("premium_freight_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # CREATED / APPROVED / REJECTED
    action = db.Column(db.String(20), nullable=False, index=True)
    level_reached = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    order = db.relationship("Order", back_populates="history")
    actor = db.relationship("User", foreign_keys=[actor_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "level_reached": self.level_reached,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(ApprovalHistory, "before_update")
def _history_is_append_only(mapper, connection, target):
    raise HistoryImmutableError(target.id)


@event.listens_for(ApprovalHistory, "before_delete")
def _history_is_not_deletable(mapper, connection, target):
    raise HistoryImmutableError(target.id)


# ---------------------------------------------------------------------
# Approver routing
# ---------------------------------------------------------------------
class Approver(db.Model):
    """
    Approval role of a user.

    plant = None marks a regional approver, valid for every plant.
    """

    __tablename__ = "approvers"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approval_level = db.Column(db.Integer, nullable=False, index=True)
    plant = db.Column(db.String(20), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship("User", back_populates="approver_roles")

    __table_args__ = (
        db.UniqueConstraint("user_id", "approval_level", "plant", name="uq_approver_user_level_plant"),
        db.CheckConstraint("approval_level >= 1", name="ck_approver_level_positive"),
    )

    def __repr__(self):
        return f"<Approver user={self.user_id} level={self.approval_level} plant={self.plant or 'regional'}>"


# ---------------------------------------------------------------------
# E-mail action tokens
# ---------------------------------------------------------------------
class ActionToken(db.Model):
    """Single-use approve/reject link bound to one order and one user."""

    __tablename__ = "email_action_tokens"

    id = db.Column(db.Integer, primary_key=True)

    token = db.Column(db.String(64), unique=True, nullable=False, index=True)

    order_id = db.Column(
        db.Integer,
        db.ForeignKey("premium_freight_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action = db.Column(db.String(10), nullable=False)

    is_used = db.Column(db.Boolean, default=False, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    used_at = db.Column(db.DateTime, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)


class BulkActionToken(db.Model):
    """
    One link acting on several orders.

    Never marked used as a whole: the orders it already moved to a terminal
    state are protected by the state machine itself.
    """

    __tablename__ = "email_bulk_action_tokens"

    id = db.Column(db.Integer, primary_key=True)

    token = db.Column(db.String(128), unique=True, nullable=False, index=True)

    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action = db.Column(db.String(10), nullable=False)
    order_ids = db.Column(db.JSON, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    last_used_at = db.Column(db.DateTime, nullable=True)
    use_count = db.Column(db.Integer, default=0, nullable=False)


class EmailNotification(db.Model):
    """Notification handed to the mail transport."""

    __tablename__ = "email_notifications"

    id = db.Column(db.Integer, primary_key=True)

    order_id = db.Column(db.Integer, db.ForeignKey("premium_freight_orders.id", ondelete="CASCADE"), index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), index=True)

    # approval_request / status_approved / status_rejected / weekly_summary
    type = db.Column(db.String(50), nullable=False, index=True)

    sent_at = db.Column(db.DateTime, default=utcnow, index=True)
