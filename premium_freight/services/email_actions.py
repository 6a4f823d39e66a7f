"""
E-mail link actions.

A link carries only a token and the clicked action. The token is redeemed
(and, for individual tokens, consumed) first; the state machine runs after.
A failed transition does not give the token back.
"""

from __future__ import annotations

import structlog

from ..domain import BulkActionResult, TransitionResult, build_action, parse_action_kind
from .bulk import BulkActionCoordinator
from .tokens import TokenStore
from .workflow import ApprovalStateMachine

LOGGER = structlog.get_logger(__name__)


class EmailActionHandler:
    def __init__(
        self,
        tokens: TokenStore,
        machine: ApprovalStateMachine,
        coordinator: BulkActionCoordinator | None = None,
        rejection_reason: str = "Rejected via email",
    ):
        self.tokens = tokens
        self.machine = machine
        self.coordinator = coordinator or BulkActionCoordinator(machine)
        self.rejection_reason = rejection_reason

    def process_single(self, token: str, action_name: str, ip_address: str | None = None) -> TransitionResult:
        kind = parse_action_kind(action_name)
        order_id, user_id = self.tokens.redeem_action_token(token, kind, ip_address)
        LOGGER.info("email_action", order_id=order_id, actor_id=user_id, action=kind.value)
        return self.machine.apply(order_id, user_id, build_action(kind, self.rejection_reason))

    def process_bulk(
        self,
        token: str,
        action_name: str,
        specific_order_id: int | None = None,
        reason: str | None = None,
    ) -> BulkActionResult:
        kind = parse_action_kind(action_name)
        user_id, order_ids = self.tokens.redeem_bulk_action_token(token, kind, specific_order_id)
        LOGGER.info("email_bulk_action", actor_id=user_id, action=kind.value, order_ids=order_ids)
        action = build_action(kind, (reason or "").strip() or self.rejection_reason)
        return self.coordinator.apply_bulk_action(order_ids, user_id, action)
