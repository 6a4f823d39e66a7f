"""
premium_freight/blueprints/actions/routes.py

E-mail link endpoints (GET, no login; the token is the credential).

- GET /actions/single?token=...&action=approve|reject
- GET /actions/bulk?token=...&action=approve|reject[&order=<id>][&reason=...]

IMPORTANT:
- Token problems and "already processed" render the same plain page:
  "This action is no longer available." The specific reason goes to the
  server log only.
- Configuration defects (no approver for the next level) render a generic
  system error; they are not the clicking user's fault.
"""

from __future__ import annotations

from flask import Blueprint, render_template, request
import structlog

from ...domain import BulkActionResult, OrderState
from ...errors import (
    AlreadyTerminalError,
    InvalidActionError,
    InvalidActorError,
    NoApproverConfiguredError,
    OrderNotFoundError,
    TokenInvalidError,
)
from ...services import build_services

LOGGER = structlog.get_logger(__name__)

actions_bp = Blueprint("actions", __name__, url_prefix="/actions")

UNAVAILABLE_MESSAGE = "This action is no longer available."
SYSTEM_ERROR_MESSAGE = "The request could not be completed because of a system configuration problem."

ERROR_LABELS = {
    "ALREADY_TERMINAL": "Already processed",
    "INVALID_ACTOR": "Not authorised",
    "ORDER_NOT_FOUND": "Not found",
    "NO_APPROVER_CONFIGURED": "System error",
}


# ---------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------
def _page(title: str, message: str, outcome: str, status: int = 200, results=None):
    return (
        render_template("actions/result.html", title=title, message=message, outcome=outcome, results=results),
        status,
    )


def _unavailable(status: int):
    return _page("Action unavailable", UNAVAILABLE_MESSAGE, "unavailable", status)


def _system_error():
    return _page("System error", SYSTEM_ERROR_MESSAGE, "error", 500)


def _client_ip() -> str | None:
    # X-Forwarded-For is only honoured through ProxyFix (see create_app)
    return request.remote_addr or None


def _bulk_rows(result: BulkActionResult, done_label: str) -> list[dict]:
    rows = [{"order_id": order_id, "label": done_label} for order_id in result.succeeded]
    rows.extend(
        {"order_id": failure.order_id, "label": ERROR_LABELS.get(failure.error_kind, "Failed")}
        for failure in result.failed
    )
    return sorted(rows, key=lambda row: row["order_id"])


# ---------------------------------------------------------------------
# Single order
# ---------------------------------------------------------------------
@actions_bp.route("/single", methods=["GET"])
def single_action():
    token = request.args.get("token", "")
    action_name = request.args.get("action", "")

    handler = build_services().email_actions
    try:
        result = handler.process_single(token, action_name, _client_ip())
    except (TokenInvalidError, OrderNotFoundError):
        return _unavailable(410)
    except InvalidActionError:
        return _unavailable(400)
    except InvalidActorError as exc:
        LOGGER.warning("email_action_unauthorised", order_id=exc.order_id, actor_id=exc.actor_id)
        return _unavailable(403)
    except AlreadyTerminalError:
        return _unavailable(200)
    except NoApproverConfiguredError:
        return _system_error()

    event = result.event
    if event.new_state is OrderState.REJECTED:
        title, message = "Order rejected", f"Order #{event.order_id} has been rejected."
    elif event.new_state is OrderState.APPROVED:
        title, message = "Order approved", f"Order #{event.order_id} is now fully approved."
    else:
        title = "Order approved"
        message = f"Order #{event.order_id} approved at level {event.act_approv}; it moves on to the next approver."
    return _page(title, message, "ok")


# ---------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------
@actions_bp.route("/bulk", methods=["GET"])
def bulk_action():
    token = request.args.get("token", "")
    action_name = request.args.get("action", "")
    reason = request.args.get("reason")

    specific_order_id = None
    raw_order = (request.args.get("order") or "").strip()
    if raw_order:
        try:
            specific_order_id = int(raw_order)
        except ValueError:
            return _unavailable(400)

    handler = build_services().email_actions
    try:
        result = handler.process_bulk(token, action_name, specific_order_id, reason)
    except TokenInvalidError:
        return _unavailable(410)
    except InvalidActionError:
        return _unavailable(400)

    done_label = "Rejected" if action_name.strip().lower() == "reject" else "Approved"
    if not result.succeeded:
        return _page("Action unavailable", UNAVAILABLE_MESSAGE, "unavailable", 200, _bulk_rows(result, done_label))

    message = f"{len(result.succeeded)} of {len(result.succeeded) + len(result.failed)} order(s) processed."
    return _page("Bulk action completed", message, "ok", 200, _bulk_rows(result, done_label))
