"""
premium_freight/services/tokens.py

Token store for e-mail action links.

Individual tokens (ActionToken):
- 128 random bits, bound to exactly one (order, user, action), single use.
- Consumption is ONE conditional UPDATE (... WHERE is_used = false AND not
  expired AND matches). Two concurrent requests cannot both get rowcount 1.
- Consumption commits immediately and is never rolled back by a later
  failure of the state transition. A retry needs a fresh token.

Bulk tokens (BulkActionToken):
- 256 random bits, bound to one user, one action and a list of order ids.
- Never marked used as a whole. Acting on a subset leaves the rest usable;
  orders already moved to a terminal state are refused by the state machine.

Every failure raises TokenInvalidError with the same public message. The
internal reason only goes to the server log.

Minting flushes but does not commit: the caller (notification dispatcher)
owns that transaction.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Iterable, Optional

import structlog
from sqlalchemy import and_, or_, select, update

from ..domain import ActionKind
from ..errors import TokenInvalidError
from ..extensions import db
from ..models import ActionToken, BulkActionToken, utcnow
from ..utils import token_hint

LOGGER = structlog.get_logger(__name__)

ACTION_TOKEN_BYTES = 16
BULK_TOKEN_BYTES = 32


class TokenStore:
    def __init__(
        self,
        session=None,
        action_ttl_hours: int = 72,
        bulk_ttl_hours: int = 168,
        clock=utcnow,
    ):
        self.session = session if session is not None else db.session
        self.action_ttl_hours = action_ttl_hours
        self.bulk_ttl_hours = bulk_ttl_hours
        self.clock = clock

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------
    def _expiry(self, ttl_hours: int) -> Optional[datetime]:
        if not ttl_hours or ttl_hours <= 0:
            return None
        return self.clock() + timedelta(hours=ttl_hours)

    @staticmethod
    def _not_expired(column, now: datetime):
        return or_(column.is_(None), column > now)

    def _fail(self, reason: str, token: str, **fields) -> TokenInvalidError:
        self.session.rollback()
        LOGGER.warning("action_token_rejected", reason=reason, token=token_hint(token), **fields)
        return TokenInvalidError(reason)

    # -----------------------------------------------------------------
    # Individual tokens
    # -----------------------------------------------------------------
    def mint_action_token(self, order_id: int, user_id: int, action: ActionKind) -> str:
        action = ActionKind(action)
        token = secrets.token_hex(ACTION_TOKEN_BYTES)
        self.session.add(
            ActionToken(
                token=token,
                order_id=order_id,
                user_id=user_id,
                action=action.value,
                is_used=False,
                created_at=self.clock(),
                expires_at=self._expiry(self.action_ttl_hours),
            )
        )
        self.session.flush()
        LOGGER.info("action_token_minted", order_id=order_id, user_id=user_id, action=action.value)
        return token

    def consume_action_token(
        self,
        token: str,
        order_id: int,
        user_id: int,
        ip_address: str | None = None,
    ) -> ActionKind:
        """Atomically mark the token used for (order, user) and return its action."""
        self._mark_used(
            token,
            [ActionToken.order_id == order_id, ActionToken.user_id == user_id],
            ip_address,
        )
        action = self.session.execute(
            select(ActionToken.action).where(ActionToken.token == token)
        ).scalar_one()
        self.session.commit()
        LOGGER.info("action_token_consumed", order_id=order_id, user_id=user_id, action=action)
        return ActionKind(action)

    def redeem_action_token(
        self,
        token: str,
        action: ActionKind,
        ip_address: str | None = None,
    ) -> tuple[int, int]:
        """
        E-mail link flow: only the token and the clicked action are known.

        Atomically marks the token used and returns (order_id, user_id).
        """
        action = ActionKind(action)
        self._mark_used(token, [ActionToken.action == action.value], ip_address)
        row = self.session.execute(
            select(ActionToken.order_id, ActionToken.user_id).where(ActionToken.token == token)
        ).one()
        self.session.commit()
        LOGGER.info("action_token_consumed", order_id=row[0], user_id=row[1], action=action.value)
        return row[0], row[1]

    def _mark_used(self, token: str, match_conditions: list, ip_address: str | None) -> None:
        if not token:
            raise self._fail("missing", token)

        now = self.clock()
        stmt = (
            update(ActionToken)
            .where(
                ActionToken.token == token,
                ActionToken.is_used.is_(False),
                self._not_expired(ActionToken.expires_at, now),
                *match_conditions,
            )
            .values(is_used=True, used_at=now, ip_address=ip_address)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount == 1:
            return

        raise self._fail(self._diagnose(token, now), token)

    def _diagnose(self, token: str, now: datetime) -> str:
        """Internal reason for a failed consumption (logs only)."""
        row = self.session.execute(
            select(ActionToken.is_used, ActionToken.expires_at).where(ActionToken.token == token)
        ).one_or_none()
        if row is None:
            return "unknown"
        if row[0]:
            return "used"
        if row[1] is not None and row[1] <= now:
            return "expired"
        return "mismatch"

    # -----------------------------------------------------------------
    # Bulk tokens
    # -----------------------------------------------------------------
    def mint_bulk_action_token(self, user_id: int, order_ids: Iterable[int], action: ActionKind) -> str:
        action = ActionKind(action)
        ids: list[int] = []
        for order_id in order_ids:
            value = int(order_id)
            if value not in ids:
                ids.append(value)
        if not ids:
            raise ValueError("A bulk token needs at least one order id.")

        token = secrets.token_hex(BULK_TOKEN_BYTES)
        self.session.add(
            BulkActionToken(
                token=token,
                user_id=user_id,
                action=action.value,
                order_ids=ids,
                created_at=self.clock(),
                expires_at=self._expiry(self.bulk_ttl_hours),
                use_count=0,
            )
        )
        self.session.flush()
        LOGGER.info("bulk_token_minted", user_id=user_id, action=action.value, order_count=len(ids))
        return token

    def consume_bulk_action_token(
        self,
        token: str,
        user_id: int,
        specific_order_id: int | None = None,
    ) -> list[int]:
        """
        Resolve a bulk token for ``user_id`` to the order ids it covers.

        With ``specific_order_id`` only that order is returned (it must be part
        of the token). The token stays valid for every other order.
        """
        _, _, order_ids = self._use_bulk(token, user_id=user_id, specific_order_id=specific_order_id)
        return order_ids

    def redeem_bulk_action_token(
        self,
        token: str,
        action: ActionKind,
        specific_order_id: int | None = None,
    ) -> tuple[int, list[int]]:
        """E-mail link flow: returns (user_id, order_ids)."""
        _, user_id, order_ids = self._use_bulk(
            token, action=ActionKind(action), specific_order_id=specific_order_id
        )
        return user_id, order_ids

    def _use_bulk(
        self,
        token: str,
        *,
        user_id: int | None = None,
        action: ActionKind | None = None,
        specific_order_id: int | None = None,
    ) -> tuple[ActionKind, int, list[int]]:
        if not token:
            raise self._fail("missing", token)

        now = self.clock()
        row = self.session.execute(
            select(
                BulkActionToken.id,
                BulkActionToken.user_id,
                BulkActionToken.action,
                BulkActionToken.order_ids,
                BulkActionToken.expires_at,
            ).where(BulkActionToken.token == token)
        ).one_or_none()

        if row is None:
            raise self._fail("unknown", token, kind="bulk")
        token_id, token_user_id, token_action, token_order_ids, expires_at = row
        if expires_at is not None and expires_at <= now:
            raise self._fail("expired", token, kind="bulk")
        if user_id is not None and token_user_id != user_id:
            raise self._fail("user_mismatch", token, kind="bulk")
        if action is not None and token_action != action.value:
            raise self._fail("action_mismatch", token, kind="bulk")

        order_ids = [int(v) for v in (token_order_ids or [])]
        if specific_order_id is not None:
            if int(specific_order_id) not in order_ids:
                raise self._fail("order_not_in_token", token, kind="bulk", order_id=specific_order_id)
            order_ids = [int(specific_order_id)]

        self.session.execute(
            update(BulkActionToken)
            .where(BulkActionToken.id == token_id)
            .values(use_count=BulkActionToken.use_count + 1, last_used_at=now)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        LOGGER.info(
            "bulk_token_used",
            user_id=token_user_id,
            action=token_action,
            order_ids=order_ids,
        )
        return ActionKind(token_action), token_user_id, order_ids

    # -----------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------
    def purge_expired(self) -> int:
        """Delete expired tokens of both kinds. Returns the number removed."""
        now = self.clock()
        removed = 0
        for model in (ActionToken, BulkActionToken):
            result = self.session.execute(
                model.__table__.delete().where(
                    and_(model.expires_at.is_not(None), model.expires_at <= now)
                )
            )
            removed += result.rowcount or 0
        self.session.commit()
        LOGGER.info("expired_tokens_purged", removed=removed)
        return removed
