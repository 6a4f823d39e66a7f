"""Approval ledger: fresh reads, compare-and-swap writes, append-only history."""

from __future__ import annotations

import pytest

from premium_freight.domain import HistoryAction
from premium_freight.errors import ConcurrentModificationError, HistoryImmutableError, OrderNotFoundError
from premium_freight.extensions import db
from premium_freight.models import ApprovalHistory


def test_open_order_starts_at_level_zero_with_created_entry(services, people, make_order) -> None:
    order_id = make_order()

    snapshot = services.ledger.read(order_id)
    history = services.ledger.history(order_id)

    assert snapshot.act_approv == 0
    assert snapshot.required_level == 3
    assert [h.action for h in history] == ["CREATED"]
    assert history[0].actor_id == people.requester.id


def test_read_unknown_order(services) -> None:
    with pytest.raises(OrderNotFoundError):
        services.ledger.read(4242)


def test_advance_is_conditioned_on_the_level_read(services, people, make_order) -> None:
    order_id = make_order()
    stale = services.ledger.read(order_id)

    services.ledger.advance(stale, 1, people.a.id, HistoryAction.APPROVED)
    db.session.commit()

    with pytest.raises(ConcurrentModificationError) as exc_info:
        services.ledger.advance(stale, 1, people.a.id, HistoryAction.APPROVED)
    db.session.rollback()

    assert exc_info.value.expected_level == 0
    assert services.ledger.read(order_id).act_approv == 1
    assert [h.action for h in services.ledger.history(order_id)] == ["CREATED", "APPROVED"]


def test_history_entries_cannot_be_updated(services, make_order) -> None:
    order_id = make_order()
    entry = services.ledger.history(order_id)[0]

    entry.comment = "rewritten"
    with pytest.raises(HistoryImmutableError):
        db.session.flush()
    db.session.rollback()

    assert db.session.get(ApprovalHistory, entry.id).comment is None


def test_history_entries_cannot_be_deleted(services, make_order) -> None:
    order_id = make_order()
    entry = services.ledger.history(order_id)[0]

    db.session.delete(entry)
    with pytest.raises(HistoryImmutableError):
        db.session.flush()
    db.session.rollback()

    assert len(services.ledger.history(order_id)) == 1
