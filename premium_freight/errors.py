"""
premium_freight/errors.py

Typed exception hierarchy for the approval core.

Every exception carries a static ``code`` class attribute (machine readable,
safe to return from the API) and its context as attributes, never only as a
message string. Callers catch by type:

    PremiumFreightError
    |
    +-- OrderNotFoundError            ORDER_NOT_FOUND
    +-- InvalidOrderError             INVALID_ORDER
    +-- InvalidActionError            INVALID_ACTION
    +-- InvalidActorError             INVALID_ACTOR
    +-- AlreadyTerminalError          ALREADY_TERMINAL
    +-- ConcurrentModificationError   CONCURRENT_MODIFICATION
    +-- TokenInvalidError             TOKEN_INVALID
    +-- NoApproverConfiguredError     NO_APPROVER_CONFIGURED
    +-- NotificationError             NOTIFICATION_FAILED
    +-- HistoryImmutableError         HISTORY_IMMUTABLE

Handling rules:
- AlreadyTerminalError is benign: report "already processed".
- TokenInvalidError never tells the end user why; ``reason`` is for logs only.
- NoApproverConfiguredError is a configuration defect, not the actor's fault.
- ConcurrentModificationError is retried once by the state machine and then
  collapsed into AlreadyTerminalError.
"""

from __future__ import annotations


class PremiumFreightError(Exception):
    """Base exception for all approval-core errors."""

    code: str = "PREMIUM_FREIGHT_ERROR"


class OrderNotFoundError(PremiumFreightError):
    """Order with the given id does not exist."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidOrderError(PremiumFreightError):
    """Order attributes violate an invariant at creation time."""

    code: str = "INVALID_ORDER"

    def __init__(self, message: str):
        super().__init__(message)


class InvalidActionError(PremiumFreightError):
    """Unknown action name or malformed action payload."""

    code: str = "INVALID_ACTION"

    def __init__(self, message: str):
        super().__init__(message)


class InvalidActorError(PremiumFreightError):
    """Actor is not an authorized approver for the required level."""

    code: str = "INVALID_ACTOR"

    def __init__(self, order_id: int, actor_id: int, required_level: int | None = None):
        self.order_id = order_id
        self.actor_id = actor_id
        self.required_level = required_level
        if required_level is None:
            detail = "is not an approver for this order"
        else:
            detail = f"is not authorized for approval level {required_level}"
        super().__init__(f"User {actor_id} {detail} (order {order_id})")


class AlreadyTerminalError(PremiumFreightError):
    """Order is already approved or rejected."""

    code: str = "ALREADY_TERMINAL"

    def __init__(self, order_id: int, state: str):
        self.order_id = order_id
        self.state = state
        super().__init__(f"Order {order_id} was already processed ({state.lower()})")


class ConcurrentModificationError(PremiumFreightError):
    """The approval state changed between validation and write."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, order_id: int, expected_level: int):
        self.order_id = order_id
        self.expected_level = expected_level
        super().__init__(
            f"Approval state of order {order_id} was modified by another request "
            f"(expected act_approv={expected_level})"
        )


class TokenInvalidError(PremiumFreightError):
    """
    Token is unknown, used, expired or does not match the request.

    ``reason`` is internal detail for server logs. The message shown to users
    is always the same.
    """

    code: str = "TOKEN_INVALID"
    public_message: str = "Invalid or expired token"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(self.public_message)


class NoApproverConfiguredError(PremiumFreightError):
    """No approver exists for the next level at the order's plant."""

    code: str = "NO_APPROVER_CONFIGURED"

    def __init__(self, order_id: int, level: int, plant: str | None):
        self.order_id = order_id
        self.level = level
        self.plant = plant
        super().__init__(
            f"No approver configured for level {level} at plant {plant or 'regional'} (order {order_id})"
        )


class NotificationError(PremiumFreightError):
    """Mail transport failed to deliver a notification."""

    code: str = "NOTIFICATION_FAILED"

    def __init__(self, message: str):
        super().__init__(message)


class HistoryImmutableError(PremiumFreightError):
    """Attempt to update or delete a persisted approval history entry."""

    code: str = "HISTORY_IMMUTABLE"

    def __init__(self, entry_id: int):
        self.entry_id = entry_id
        super().__init__(f"Approval history entry {entry_id} is append-only")
