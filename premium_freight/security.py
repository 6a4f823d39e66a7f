"""
premium_freight/security.py

Access control helpers for the session (in-app) endpoints.

Key rules:
- UI is never trusted; all permission checks are server-side.
- Admin: may view every order.
- Creator: may view own orders.
- Approvers: may view orders of a plant they hold a role for. Regional
  approvers (plant = NULL) see every plant.

Approve/reject authority is NOT decided here: the state machine checks the
approver table for every transition, whatever the entry point.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Tuple

from flask import jsonify
from flask_login import current_user
from sqlalchemy import or_

from .extensions import db
from .models import Approver, Order


def _forbidden():
    """Consistent JSON 403."""
    return jsonify({"error": "FORBIDDEN", "message": "You do not have access to this order."}), 403


def _not_found(order_id: int) -> Tuple[Any, int]:
    return jsonify({"error": "ORDER_NOT_FOUND", "message": f"Order not found: {order_id}"}), 404


def can_view_order(user, order: Order) -> bool:
    if user is None or not user.is_authenticated:
        return False
    if getattr(user, "is_admin", False) or order.creator_id == user.id:
        return True

    plant_filter = Approver.plant.is_(None)
    if order.plant is not None:
        plant_filter = or_(Approver.plant == order.plant, Approver.plant.is_(None))

    query = db.session.query(Approver.id).filter(Approver.user_id == user.id, plant_filter)
    return bool(db.session.query(query.exists()).scalar())


def order_access_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator: VIEW permission for the order named by the ``order_id`` URL arg.

    Usage:
        @orders_bp.get("/<int:order_id>")
        @login_required
        @order_access_required
        def show(order_id): ...
    """

    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        order_id = kwargs.get("order_id")
        order = db.session.get(Order, order_id)
        if order is None:
            return _not_found(order_id)
        if not can_view_order(current_user, order):
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper
