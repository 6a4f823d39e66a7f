"""Bulk actions: one actor, one action, many orders, per-order results."""

from __future__ import annotations

from typing import Iterable

import structlog

from ..domain import Action, BulkActionResult, BulkFailure
from ..errors import (
    AlreadyTerminalError,
    InvalidActorError,
    NoApproverConfiguredError,
    OrderNotFoundError,
)
from .workflow import ApprovalStateMachine

LOGGER = structlog.get_logger(__name__)

# Failures of a single order; anything else (store errors) aborts the batch.
PER_ORDER_ERRORS = (
    AlreadyTerminalError,
    InvalidActorError,
    NoApproverConfiguredError,
    OrderNotFoundError,
)


class BulkActionCoordinator:
    def __init__(self, machine: ApprovalStateMachine):
        self.machine = machine

    def apply_bulk_action(self, order_ids: Iterable[int], actor_id: int, action: Action) -> BulkActionResult:
        """
        Apply ``action`` to each order in turn.

        Orders are processed sequentially, each in its own transaction. The
        result always lists every distinct order id exactly once.
        """
        result = BulkActionResult()
        seen: set[int] = set()

        for order_id in order_ids:
            order_id = int(order_id)
            if order_id in seen:
                continue
            seen.add(order_id)

            try:
                self.machine.apply(order_id, actor_id, action)
            except PER_ORDER_ERRORS as exc:
                result.failed.append(BulkFailure(order_id=order_id, error_kind=exc.code, message=str(exc)))
                continue
            result.succeeded.append(order_id)

        LOGGER.info(
            "bulk_action_applied",
            actor_id=actor_id,
            action=action.kind.value,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
        )
        return result
