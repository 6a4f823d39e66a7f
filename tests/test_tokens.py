"""Token store: single-use individual tokens, partially consumable bulk tokens."""

from __future__ import annotations

from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from premium_freight.domain import ActionKind
from premium_freight.errors import TokenInvalidError
from premium_freight.extensions import db
from premium_freight.models import ActionToken, BulkActionToken, utcnow
from premium_freight.services.tokens import TokenStore


@pytest.fixture()
def order_id(make_order) -> int:
    return make_order()


def test_minted_tokens_are_unguessable_and_distinct(services, people, order_id) -> None:
    first = services.tokens.mint_action_token(order_id, people.a.id, ActionKind.APPROVE)
    second = services.tokens.mint_action_token(order_id, people.a.id, ActionKind.APPROVE)

    assert first != second
    # 16 random bytes, hex encoded
    assert len(first) == 32
    int(first, 16)


def test_token_is_consumed_once(services, people, order_id) -> None:
    token = services.tokens.mint_action_token(order_id, people.a.id, ActionKind.APPROVE)
    db.session.commit()

    assert services.tokens.consume_action_token(token, order_id, people.a.id, "10.0.0.1") is ActionKind.APPROVE

    with pytest.raises(TokenInvalidError):
        services.tokens.consume_action_token(token, order_id, people.a.id)

    row = ActionToken.query.filter_by(token=token).one()
    assert row.is_used is True
    assert row.ip_address == "10.0.0.1"
    assert row.used_at is not None


def test_token_is_bound_to_order_and_user(services, people, make_order, order_id) -> None:
    other_order = make_order()
    token = services.tokens.mint_action_token(order_id, people.a.id, ActionKind.REJECT)
    db.session.commit()

    with pytest.raises(TokenInvalidError):
        services.tokens.consume_action_token(token, other_order, people.a.id)
    with pytest.raises(TokenInvalidError):
        services.tokens.consume_action_token(token, order_id, people.b.id)

    # mismatches do not burn the token
    assert services.tokens.consume_action_token(token, order_id, people.a.id) is ActionKind.REJECT


def test_failures_share_one_public_message_and_log_the_reason(services, people, order_id) -> None:
    token = services.tokens.mint_action_token(order_id, people.a.id, ActionKind.APPROVE)
    db.session.commit()
    services.tokens.consume_action_token(token, order_id, people.a.id)

    with capture_logs() as logs:
        with pytest.raises(TokenInvalidError) as used:
            services.tokens.consume_action_token(token, order_id, people.a.id)
        with pytest.raises(TokenInvalidError) as unknown:
            services.tokens.consume_action_token("deadbeef" * 4, order_id, people.a.id)

    assert str(used.value) == str(unknown.value) == "Invalid or expired token"
    reasons = [e["reason"] for e in logs if e["event"] == "action_token_rejected"]
    assert reasons == ["used", "unknown"]
    assert all(token not in str(e) for e in logs)


def test_expired_token_is_rejected(services, people, order_id) -> None:
    token = services.tokens.mint_action_token(order_id, people.a.id, ActionKind.APPROVE)
    ActionToken.query.filter_by(token=token).update({"expires_at": utcnow() - timedelta(minutes=1)})
    db.session.commit()

    with pytest.raises(TokenInvalidError) as exc_info:
        services.tokens.consume_action_token(token, order_id, people.a.id)
    assert exc_info.value.reason == "expired"


def test_zero_ttl_disables_expiry(people, order_id) -> None:
    store = TokenStore(db.session, action_ttl_hours=0, bulk_ttl_hours=0)

    token = store.mint_action_token(order_id, people.a.id, ActionKind.APPROVE)
    bulk = store.mint_bulk_action_token(people.a.id, [order_id], ActionKind.APPROVE)
    db.session.commit()

    assert ActionToken.query.filter_by(token=token).one().expires_at is None
    assert BulkActionToken.query.filter_by(token=bulk).one().expires_at is None


def test_redeem_checks_the_clicked_action(services, people, order_id) -> None:
    token = services.tokens.mint_action_token(order_id, people.a.id, ActionKind.APPROVE)
    db.session.commit()

    with pytest.raises(TokenInvalidError):
        services.tokens.redeem_action_token(token, ActionKind.REJECT)

    assert services.tokens.redeem_action_token(token, ActionKind.APPROVE) == (order_id, people.a.id)


def test_bulk_token_partial_consumption(services, people, make_order) -> None:
    ids = [make_order(), make_order(), make_order()]
    token = services.tokens.mint_bulk_action_token(people.a.id, ids, ActionKind.APPROVE)
    db.session.commit()

    assert services.tokens.consume_bulk_action_token(token, people.a.id, specific_order_id=ids[1]) == [ids[1]]
    # still valid for everything it covers
    assert services.tokens.consume_bulk_action_token(token, people.a.id) == ids
    assert BulkActionToken.query.filter_by(token=token).one().use_count == 2


def test_bulk_token_rejects_foreign_orders_and_users(services, people, make_order) -> None:
    ids = [make_order(), make_order()]
    outside = make_order()
    token = services.tokens.mint_bulk_action_token(people.a.id, ids, ActionKind.APPROVE)
    db.session.commit()

    with pytest.raises(TokenInvalidError):
        services.tokens.consume_bulk_action_token(token, people.a.id, specific_order_id=outside)
    with pytest.raises(TokenInvalidError):
        services.tokens.consume_bulk_action_token(token, people.b.id)
    with pytest.raises(TokenInvalidError):
        services.tokens.redeem_bulk_action_token(token, ActionKind.REJECT)

    assert services.tokens.redeem_bulk_action_token(token, ActionKind.APPROVE) == (people.a.id, ids)


def test_bulk_token_needs_orders(services, people) -> None:
    with pytest.raises(ValueError):
        services.tokens.mint_bulk_action_token(people.a.id, [], ActionKind.APPROVE)


def test_purge_expired(services, people, order_id) -> None:
    keep = services.tokens.mint_action_token(order_id, people.a.id, ActionKind.APPROVE)
    drop = services.tokens.mint_action_token(order_id, people.a.id, ActionKind.REJECT)
    ActionToken.query.filter_by(token=drop).update({"expires_at": utcnow() - timedelta(hours=1)})
    db.session.commit()

    assert services.tokens.purge_expired() == 1
    assert ActionToken.query.filter_by(token=keep).count() == 1
    assert ActionToken.query.filter_by(token=drop).count() == 0
