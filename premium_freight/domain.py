"""
premium_freight/domain.py

Typed records shared by the approval services.

- Action is a closed type: Approve() or Reject(reason). Invalid actions are
  rejected at construction, so services never branch on raw strings.
- ApprovalSnapshot is a fresh read of one order's approval state; its state
  is derived from act_approv and never stored separately.
- TransitionEvent is what the state machine hands to the notification side.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import ClassVar, Optional, Union

from .errors import InvalidActionError, InvalidOrderError

# act_approv sentinel for rejected orders
REJECTED_LEVEL = 99

# Cost bands (EUR, inclusive upper bound) -> required approval level
COST_LEVEL_BANDS = (
    (Decimal("1500"), 5),
    (Decimal("5000"), 6),
    (Decimal("10000"), 7),
)
TOP_COST_LEVEL = 8


class ActionKind(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class OrderState(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class HistoryAction(str, enum.Enum):
    CREATED = "CREATED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class Approve:
    kind: ClassVar[ActionKind] = ActionKind.APPROVE


@dataclass(frozen=True)
class Reject:
    reason: str
    kind: ClassVar[ActionKind] = ActionKind.REJECT

    def __post_init__(self):
        if self.reason is not None and not isinstance(self.reason, str):
            raise InvalidActionError("A rejection reason must be text.")
        reason = (self.reason or "").strip()
        if not reason:
            raise InvalidActionError("A rejection reason is required.")
        object.__setattr__(self, "reason", reason)


Action = Union[Approve, Reject]


def parse_action_kind(name: str | None) -> ActionKind:
    """Map 'approve' / 'reject' (any case) to ActionKind."""
    if name is not None and not isinstance(name, str):
        raise InvalidActionError(f"Unknown action: {name!r}")
    raw = (name or "").strip().lower()
    try:
        return ActionKind(raw)
    except ValueError:
        raise InvalidActionError(f"Unknown action: {name!r}") from None


def build_action(kind: ActionKind | str, reason: str | None = None) -> Action:
    """Build an Action from its kind. Reject requires a non-empty reason."""
    if not isinstance(kind, ActionKind):
        kind = parse_action_kind(kind)
    if kind is ActionKind.APPROVE:
        return Approve()
    return Reject(reason or "")


def state_for(act_approv: int, required_level: int) -> OrderState:
    if act_approv == REJECTED_LEVEL:
        return OrderState.REJECTED
    if act_approv >= required_level:
        return OrderState.APPROVED
    return OrderState.PENDING


def required_level_for_cost(cost_euros) -> int:
    """Approval level an order needs, derived from its cost in EUR."""
    cost = Decimal(str(cost_euros))
    for upper, level in COST_LEVEL_BANDS:
        if cost <= upper:
            return level
    return TOP_COST_LEVEL


@dataclass(frozen=True)
class ApprovalSnapshot:
    """Point-in-time view of an order's approval state."""

    order_id: int
    creator_id: int
    plant: Optional[str]
    required_level: int
    act_approv: int

    def __post_init__(self):
        if self.required_level < 1:
            raise InvalidOrderError(f"Order {self.order_id}: required level must be >= 1")
        if self.act_approv != REJECTED_LEVEL and not 0 <= self.act_approv <= self.required_level:
            raise InvalidOrderError(
                f"Order {self.order_id}: act_approv {self.act_approv} outside 0..{self.required_level}"
            )

    @property
    def state(self) -> OrderState:
        return state_for(self.act_approv, self.required_level)

    @property
    def is_terminal(self) -> bool:
        return self.state is not OrderState.PENDING

    @property
    def next_level(self) -> Optional[int]:
        """Level the next approval must reach, or None once terminal."""
        if self.is_terminal:
            return None
        return self.act_approv + 1


@dataclass(frozen=True)
class TransitionEvent:
    """Emitted after a committed transition (creation, approval or rejection)."""

    order_id: int
    actor_id: int
    new_state: OrderState
    act_approv: int
    action: HistoryAction
    reason: Optional[str] = None


@dataclass(frozen=True)
class TransitionResult:
    event: TransitionEvent
    notified: bool

    def to_dict(self) -> dict:
        return {
            "order_id": self.event.order_id,
            "state": self.event.new_state.value,
            "act_approv": self.event.act_approv,
            "actor_id": self.event.actor_id,
            "notified": self.notified,
        }


@dataclass(frozen=True)
class BulkFailure:
    order_id: int
    error_kind: str
    message: str = ""


@dataclass
class BulkActionResult:
    succeeded: list[int] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "succeeded": list(self.succeeded),
            "failed": [
                {"order_id": f.order_id, "error_kind": f.error_kind, "message": f.message}
                for f in self.failed
            ],
        }
