"""Approval state machine: transitions, authorization, idempotence, notifications."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from premium_freight.domain import OrderState, REJECTED_LEVEL
from premium_freight.errors import (
    AlreadyTerminalError,
    ConcurrentModificationError,
    InvalidActionError,
    InvalidActorError,
    InvalidOrderError,
    NoApproverConfiguredError,
)
from premium_freight.extensions import db
from premium_freight.models import ApprovalState, EmailNotification


def _levels(services, order_id: int) -> tuple[int, OrderState]:
    snapshot = services.ledger.read(order_id)
    return snapshot.act_approv, snapshot.state


def test_three_level_chain(services, people, make_order) -> None:
    order_id = make_order(required_level=3)

    services.machine.approve(order_id, people.a.id)
    assert _levels(services, order_id) == (1, OrderState.PENDING)

    services.machine.approve(order_id, people.b.id)
    assert _levels(services, order_id) == (2, OrderState.PENDING)

    result = services.machine.approve(order_id, people.c.id)
    assert result.event.new_state is OrderState.APPROVED
    assert _levels(services, order_id) == (3, OrderState.APPROVED)

    with pytest.raises(AlreadyTerminalError):
        services.machine.approve(order_id, people.a.id)
    assert _levels(services, order_id) == (3, OrderState.APPROVED)

    history = services.ledger.history(order_id)
    assert [(h.action, h.level_reached) for h in history] == [
        ("CREATED", 0),
        ("APPROVED", 1),
        ("APPROVED", 2),
        ("APPROVED", 3),
    ]
    assert [h.actor_id for h in history[1:]] == [people.a.id, people.b.id, people.c.id]


def test_rejection_at_level_one(services, people, make_order) -> None:
    order_id = make_order(required_level=3)
    services.machine.approve(order_id, people.a.id)

    services.machine.reject(order_id, people.b.id, "budget exceeded")
    assert _levels(services, order_id) == (REJECTED_LEVEL, OrderState.REJECTED)

    last = services.ledger.history(order_id)[-1]
    assert (last.action, last.level_reached, last.comment) == ("REJECTED", REJECTED_LEVEL, "budget exceeded")

    with pytest.raises(AlreadyTerminalError):
        services.machine.approve(order_id, people.c.id)


def test_rejection_allowed_from_any_level_of_the_chain(services, people, make_order) -> None:
    order_id = make_order(required_level=3)

    # C approves level 3 only, yet may reject while the order sits at level 0
    services.machine.reject(order_id, people.c.id, "not needed")

    assert services.ledger.read(order_id).state is OrderState.REJECTED


def test_approver_for_a_level_above_the_chain_cannot_reject(services, people, make_order) -> None:
    order_id = make_order(required_level=1)

    with pytest.raises(InvalidActorError):
        services.machine.reject(order_id, people.c.id, "no")


def test_approve_requires_the_next_level(services, people, make_order) -> None:
    order_id = make_order(required_level=3)

    with pytest.raises(InvalidActorError) as exc_info:
        services.machine.approve(order_id, people.b.id)

    assert exc_info.value.required_level == 1
    assert _levels(services, order_id) == (0, OrderState.PENDING)


def test_outsider_cannot_act(services, people, make_order) -> None:
    order_id = make_order()

    with pytest.raises(InvalidActorError):
        services.machine.approve(order_id, people.outsider.id)
    with pytest.raises(InvalidActorError):
        services.machine.reject(order_id, people.outsider.id, "spam")


def test_second_approval_by_same_actor(services, people, make_order) -> None:
    order_id = make_order(required_level=3)
    services.machine.approve(order_id, people.a.id)

    # level already advanced past A's authority
    with pytest.raises(InvalidActorError):
        services.machine.approve(order_id, people.a.id)
    assert _levels(services, order_id) == (1, OrderState.PENDING)


def test_reject_needs_reason(services, people, make_order) -> None:
    order_id = make_order()

    with pytest.raises(InvalidActionError):
        services.machine.reject(order_id, people.a.id, "  ")
    assert _levels(services, order_id) == (0, OrderState.PENDING)


def test_missing_next_approver_rolls_the_transition_back(services, people, make_order) -> None:
    order_id = make_order(required_level=4)
    services.machine.approve(order_id, people.a.id)
    services.machine.approve(order_id, people.b.id)

    with pytest.raises(NoApproverConfiguredError):
        services.machine.approve(order_id, people.c.id)

    assert _levels(services, order_id) == (2, OrderState.PENDING)
    assert len(services.ledger.history(order_id)) == 3


def test_conflict_is_retried_from_a_fresh_read(services, people, make_order, monkeypatch) -> None:
    order_id = make_order(required_level=3)
    real_advance = services.ledger.advance
    calls = []

    def racing_advance(snapshot, *args, **kwargs):
        calls.append(snapshot.act_approv)
        if len(calls) == 1:
            raise ConcurrentModificationError(snapshot.order_id, snapshot.act_approv)
        return real_advance(snapshot, *args, **kwargs)

    monkeypatch.setattr(services.ledger, "advance", racing_advance)

    services.machine.approve(order_id, people.a.id)

    assert calls == [0, 0]
    assert _levels(services, order_id) == (1, OrderState.PENDING)


def test_repeated_conflict_collapses_to_already_processed(services, people, make_order, monkeypatch) -> None:
    order_id = make_order(required_level=3)

    def always_conflicts(snapshot, *args, **kwargs):
        raise ConcurrentModificationError(snapshot.order_id, snapshot.act_approv)

    monkeypatch.setattr(services.ledger, "advance", always_conflicts)

    with pytest.raises(AlreadyTerminalError):
        services.machine.approve(order_id, people.a.id)


def test_submit_validates_order(services, people) -> None:
    with pytest.raises(InvalidOrderError):
        services.machine.submit(creator_id=people.requester.id, cost_euros="-1", plant="3310")
    with pytest.raises(InvalidOrderError):
        services.machine.submit(creator_id=people.requester.id, cost_euros="abc", plant="3310")
    with pytest.raises(InvalidOrderError):
        services.machine.submit(creator_id=people.requester.id, cost_euros="10", plant="3310", required_level=9)


def test_submit_derives_level_from_cost(services, people) -> None:
    result = services.machine.submit(creator_id=people.requester.id, cost_euros="4200", plant="3310")

    assert services.ledger.read(result.event.order_id).required_level == 6


def test_submit_without_first_level_approver(services, people) -> None:
    with pytest.raises(NoApproverConfiguredError):
        services.machine.submit(creator_id=people.requester.id, cost_euros="10", plant="4400", required_level=2)


def test_pending_transition_notifies_next_approvers(services, people, make_order, mailbox) -> None:
    order_id = make_order(required_level=3)
    assert [m.to for m in mailbox.sent] == ["a@example.com"]

    result = services.machine.approve(order_id, people.a.id)

    assert result.notified is True
    assert [m.to for m in mailbox.sent] == ["a@example.com", "b@example.com"]
    assert "/actions/single?token=" in mailbox.sent[-1].body
    assert EmailNotification.query.filter_by(order_id=order_id, type="approval_request").count() == 2


def test_terminal_transition_notifies_creator(services, people, make_order, mailbox) -> None:
    order_id = make_order(required_level=1)

    services.machine.reject(order_id, people.a.id, "wrong carrier")

    message = mailbox.sent[-1]
    assert message.to == "requester@example.com"
    assert message.kind == "status_rejected"
    assert "wrong carrier" in message.body


def test_notification_failure_keeps_the_transition(services, people, make_order, mailbox) -> None:
    order_id = make_order(required_level=3)
    mailbox.fail = True

    result = services.machine.approve(order_id, people.a.id)

    assert result.notified is False
    assert _levels(services, order_id) == (1, OrderState.PENDING)


def test_token_bookkeeping_failure_keeps_the_transition(services, people, make_order, mailbox, monkeypatch) -> None:
    order_id = make_order(required_level=3)
    mailbox.sent.clear()

    def broken_mint(*args, **kwargs):
        raise OperationalError("INSERT INTO email_action_tokens", {}, Exception("disk I/O error"))

    monkeypatch.setattr(services.tokens, "mint_action_token", broken_mint)

    result = services.machine.approve(order_id, people.a.id)

    assert result.notified is False
    assert result.event.act_approv == 1
    assert _levels(services, order_id) == (1, OrderState.PENDING)
    assert mailbox.sent == []


def test_act_approv_is_never_cached(services, people, make_order) -> None:
    order_id = make_order(required_level=3)
    services.ledger.read(order_id)

    db.session.query(ApprovalState).filter_by(order_id=order_id).update({"act_approv": 2})
    db.session.commit()

    with pytest.raises(InvalidActorError):
        services.machine.approve(order_id, people.a.id)
    services.machine.approve(order_id, people.c.id)
    assert _levels(services, order_id) == (3, OrderState.APPROVED)
