"""
premium_freight/services/workflow.py

Approval state machine.

States: PENDING(level) for level in [0, required_auth_level), APPROVED, REJECTED.
APPROVED and REJECTED are sinks.

One transition = read fresh state -> validate actor -> conditional write of
act_approv -> append history -> commit. The conditional write is the guard
against concurrent requests; a lost race is retried once from a fresh read
and then reported as "already processed".

Notifications run AFTER the commit. A delivery or bookkeeping failure never
undoes a transition; it is logged and reported as notified=False.

The actor is always an explicit argument. Nothing here reads the Flask
request or the logged-in user.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, InvalidOperation

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..domain import (
    Action,
    ApprovalSnapshot,
    Approve,
    HistoryAction,
    OrderState,
    REJECTED_LEVEL,
    Reject,
    TransitionEvent,
    TransitionResult,
    required_level_for_cost,
)
from ..errors import (
    AlreadyTerminalError,
    ConcurrentModificationError,
    InvalidActionError,
    InvalidActorError,
    InvalidOrderError,
    NotificationError,
    PremiumFreightError,
)
from ..extensions import db
from .approvers import ApproverResolver
from .ledger import ApprovalLedger

LOGGER = structlog.get_logger(__name__)

MAX_ATTEMPTS = 2


class ApprovalStateMachine:
    def __init__(
        self,
        session=None,
        ledger: ApprovalLedger | None = None,
        resolver: ApproverResolver | None = None,
        dispatcher=None,
        max_level: int = 8,
    ):
        self.session = session if session is not None else db.session
        self.ledger = ledger or ApprovalLedger(self.session)
        self.resolver = resolver or ApproverResolver(self.session, self.ledger)
        self.dispatcher = dispatcher
        self.max_level = max_level

    # -----------------------------------------------------------------
    # Creation
    # -----------------------------------------------------------------
    def submit(
        self,
        *,
        creator_id: int,
        cost_euros,
        plant: str | None = None,
        description: str | None = None,
        required_level: int | None = None,
    ) -> TransitionResult:
        """
        Create an order at level 0 and notify its first-level approvers.

        required_level defaults to the cost band of the order.
        """
        try:
            cost = Decimal(str(cost_euros))
        except (InvalidOperation, ValueError):
            raise InvalidOrderError(f"Invalid cost: {cost_euros!r}") from None
        if not cost.is_finite() or cost < 0:
            raise InvalidOrderError("Cost must be a non-negative amount.")

        level = required_level if required_level is not None else required_level_for_cost(cost)
        if not 1 <= int(level) <= self.max_level:
            raise InvalidOrderError(f"Required approval level must be between 1 and {self.max_level}.")

        try:
            order = self.ledger.open_order(
                creator_id=creator_id,
                plant=plant,
                required_level=int(level),
                cost_euros=cost,
                description=description,
            )
            snapshot = self.ledger.read(order.id)
            approvers = self.resolver.next_approvers_for(snapshot)
            self.session.commit()
        except (PremiumFreightError, SQLAlchemyError):
            self.session.rollback()
            raise

        LOGGER.info(
            "order_submitted",
            order_id=snapshot.order_id,
            creator_id=creator_id,
            plant=plant,
            required_level=snapshot.required_level,
        )
        event = TransitionEvent(
            order_id=snapshot.order_id,
            actor_id=creator_id,
            new_state=OrderState.PENDING,
            act_approv=0,
            action=HistoryAction.CREATED,
        )
        return TransitionResult(event=event, notified=self._dispatch(event, approvers))

    # -----------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------
    def approve(self, order_id: int, actor_id: int) -> TransitionResult:
        return self.apply(order_id, actor_id, Approve())

    def reject(self, order_id: int, actor_id: int, reason: str) -> TransitionResult:
        return self.apply(order_id, actor_id, Reject(reason))

    def apply(self, order_id: int, actor_id: int, action: Action) -> TransitionResult:
        if not isinstance(action, (Approve, Reject)):
            raise InvalidActionError(f"Unsupported action: {action!r}")

        conflict = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                event, approvers = self._transition(order_id, actor_id, action)
                break
            except ConcurrentModificationError as exc:
                self.session.rollback()
                conflict = exc
                LOGGER.info("transition_conflict", order_id=order_id, actor_id=actor_id, attempt=attempt)
            except (PremiumFreightError, SQLAlchemyError):
                self.session.rollback()
                raise
        else:
            snapshot = self.ledger.read(order_id)
            self.session.rollback()
            LOGGER.info("transition_gave_up", order_id=order_id, actor_id=actor_id, state=snapshot.state.value)
            raise AlreadyTerminalError(order_id, snapshot.state.value) from conflict

        LOGGER.info(
            "order_transition",
            order_id=event.order_id,
            actor_id=event.actor_id,
            action=event.action.value,
            act_approv=event.act_approv,
            state=event.new_state.value,
        )
        return TransitionResult(event=event, notified=self._dispatch(event, approvers))

    def _transition(self, order_id: int, actor_id: int, action: Action):
        snapshot = self.ledger.read(order_id)
        if snapshot.is_terminal:
            raise AlreadyTerminalError(order_id, snapshot.state.value)

        if isinstance(action, Approve):
            new_level = snapshot.next_level
            if not self.resolver.has_role(actor_id, new_level, snapshot.plant):
                raise InvalidActorError(order_id, actor_id, new_level)
            history_action = HistoryAction.APPROVED
            reason = None
        else:
            if not self.resolver.is_order_approver(actor_id, snapshot):
                raise InvalidActorError(order_id, actor_id)
            new_level = REJECTED_LEVEL
            history_action = HistoryAction.REJECTED
            reason = action.reason

        self.ledger.advance(snapshot, new_level, actor_id, history_action, reason)

        after: ApprovalSnapshot = replace(snapshot, act_approv=new_level)
        # Still pending: the next level must be staffed before we commit.
        approvers = self.resolver.next_approvers_for(after)
        self.session.commit()

        event = TransitionEvent(
            order_id=order_id,
            actor_id=actor_id,
            new_state=after.state,
            act_approv=new_level,
            action=history_action,
            reason=reason,
        )
        return event, approvers

    # -----------------------------------------------------------------
    # Side effects
    # -----------------------------------------------------------------
    def _dispatch(self, event: TransitionEvent, approvers) -> bool:
        if self.dispatcher is None:
            return False
        try:
            if event.new_state is OrderState.PENDING:
                self.dispatcher.notify_next_approvers(event.order_id, approvers)
            else:
                self.dispatcher.notify_outcome(event.order_id, event.new_state, event.reason)
        except NotificationError as exc:
            LOGGER.error(
                "notification_failed",
                order_id=event.order_id,
                state=event.new_state.value,
                error=str(exc),
            )
            return False
        except SQLAlchemyError as exc:
            # the transition is already committed; only the token/mail bookkeeping is lost
            self.session.rollback()
            LOGGER.error(
                "notification_failed",
                order_id=event.order_id,
                state=event.new_state.value,
                error=str(exc),
                exc_info=True,
            )
            return False
        return True
