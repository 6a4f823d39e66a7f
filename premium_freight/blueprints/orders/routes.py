"""
premium_freight/blueprints/orders/routes.py

In-app order routes (JSON, login required).

Includes:
- create/submit an order
- order detail + approval history (plant-scoped read access)
- pending orders and approver roles of the current user
- approve / reject / bulk actions

IMPORTANT:
- UI is never trusted. The actor is always current_user.id and the approval
  rules are enforced by the state machine, exactly as for e-mail links.
- Errors are specific here (not authorised vs. already processed): the
  caller is authenticated.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ...domain import build_action
from ...errors import (
    AlreadyTerminalError,
    InvalidActionError,
    InvalidActorError,
    InvalidOrderError,
    NoApproverConfiguredError,
    OrderNotFoundError,
    PremiumFreightError,
)
from ...extensions import db
from ...models import Order
from ...security import order_access_required
from ...services import build_services
from ...utils import parse_order_ids, status_text

orders_bp = Blueprint("orders", __name__, url_prefix="/orders")

ERROR_STATUS = {
    OrderNotFoundError: 404,
    InvalidOrderError: 400,
    InvalidActionError: 400,
    InvalidActorError: 403,
    AlreadyTerminalError: 409,
    NoApproverConfiguredError: 500,
}


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _payload() -> dict:
    """JSON body or form data."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _error(code: str, message: str, status: int):
    return jsonify({"error": code, "message": message}), status


@orders_bp.errorhandler(PremiumFreightError)
def _handle_core_error(exc: PremiumFreightError):
    status = 500
    for error_type, error_status in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status = error_status
            break
    if isinstance(exc, NoApproverConfiguredError):
        # configuration defect; not the actor's fault
        return _error(exc.code, "No approver is configured for the next level. Contact an administrator.", status)
    return _error(exc.code, str(exc), status)


def _parse_decimal(value) -> Decimal | None:
    """Parse decimal from user input (accepts comma or dot)."""
    if value is None:
        return None
    raw = str(value).strip().replace(",", ".")
    if raw == "":
        return None
    try:
        return Decimal(raw)
    except (InvalidOperation, ValueError):
        return None


def _parse_optional_int(value) -> int | None:
    if value is None:
        return None
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _order_payload(order: Order) -> dict:
    data = order.to_dict()
    data["status_text"] = status_text(order.snapshot())
    return data


# ---------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------
@orders_bp.route("", methods=["POST"])
@login_required
def create_order():
    data = _payload()

    raw_cost = data.get("cost_euros")
    if raw_cost is None or str(raw_cost).strip() == "":
        return _error("INVALID_ORDER", "cost_euros is required.", 400)
    cost = _parse_decimal(raw_cost)
    if cost is None:
        return _error("INVALID_ORDER", "cost_euros must be a decimal amount.", 400)

    required_level = None
    if data.get("required_auth_level") not in (None, ""):
        required_level = _parse_optional_int(data.get("required_auth_level"))
        if required_level is None:
            return _error("INVALID_ORDER", "required_auth_level must be an integer.", 400)

    # defaults to the creator's plant
    plant = current_user.plant
    if data.get("plant") is not None:
        plant = str(data.get("plant")).strip() or None

    description = data.get("description")
    if description is not None and not isinstance(description, str):
        return _error("INVALID_ORDER", "description must be text.", 400)

    services = build_services()
    result = services.machine.submit(
        creator_id=current_user.id,
        cost_euros=cost,
        plant=plant,
        description=(description or "").strip() or None,
        required_level=required_level,
    )

    order = db.session.get(Order, result.event.order_id)
    body = _order_payload(order)
    body["notified"] = result.notified
    return jsonify(body), 201


# ---------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------
@orders_bp.route("/pending", methods=["GET"])
@login_required
def pending_orders():
    """Orders waiting for one of the current user's approval levels."""
    orders = build_services().resolver.pending_orders_for(current_user.id)
    return jsonify({"orders": [_order_payload(o) for o in orders]})


@orders_bp.route("/roles", methods=["GET"])
@login_required
def my_roles():
    return jsonify({"roles": build_services().resolver.roles_for_user(current_user.id)})


@orders_bp.route("/<int:order_id>", methods=["GET"])
@login_required
@order_access_required
def show_order(order_id: int):
    order = db.session.get(Order, order_id)
    return jsonify(_order_payload(order))


@orders_bp.route("/<int:order_id>/history", methods=["GET"])
@login_required
@order_access_required
def order_history(order_id: int):
    entries = build_services().ledger.history(order_id)
    return jsonify({"order_id": order_id, "history": [e.to_dict() for e in entries]})


# ---------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------
@orders_bp.route("/<int:order_id>/approve", methods=["POST"])
@login_required
def approve_order(order_id: int):
    result = build_services().machine.approve(order_id, current_user.id)
    return jsonify(result.to_dict())


@orders_bp.route("/<int:order_id>/reject", methods=["POST"])
@login_required
def reject_order(order_id: int):
    reason = _payload().get("reason")
    result = build_services().machine.reject(order_id, current_user.id, reason or "")
    return jsonify(result.to_dict())


@orders_bp.route("/bulk", methods=["POST"])
@login_required
def bulk_action():
    data = _payload()
    try:
        order_ids = parse_order_ids(data.get("order_ids"))
    except (TypeError, ValueError):
        return _error("INVALID_ACTION", "order_ids must be a list of integers.", 400)
    if not order_ids:
        return _error("INVALID_ACTION", "order_ids is required.", 400)

    action = build_action(data.get("action") or "", data.get("reason"))
    result = build_services().bulk.apply_bulk_action(order_ids, current_user.id, action)
    return jsonify(result.to_dict())
