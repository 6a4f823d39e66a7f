"""Approver routing: plant-specific plus regional, no level skipping."""

from __future__ import annotations

import pytest

from premium_freight.errors import NoApproverConfiguredError
from premium_freight.extensions import db
from premium_freight.models import ApprovalState

from conftest import add_role, make_user


def test_next_approvers_follow_the_level(services, people, make_order) -> None:
    order_id = make_order()

    assert [u.id for u in services.resolver.resolve_next_approvers(order_id)] == [people.a.id]

    services.machine.approve(order_id, people.a.id)
    assert [u.id for u in services.resolver.resolve_next_approvers(order_id)] == [people.b.id]


def test_plant_and_regional_approvers_are_both_eligible(services, people, make_order) -> None:
    regional = make_user("regional1@example.com", "Regional One", plant=None)
    add_role(regional, 1, None)
    db.session.commit()
    order_id = make_order()

    ids = [u.id for u in services.resolver.resolve_next_approvers(order_id)]

    # plant-specific first, then regional
    assert ids == [people.a.id, regional.id]


def test_approvers_of_other_plants_are_ignored(services, people, make_order) -> None:
    other = make_user("other-plant@example.com", "Other Plant", plant="4400")
    add_role(other, 1, "4400")
    db.session.commit()
    order_id = make_order()

    assert other.id not in [u.id for u in services.resolver.resolve_next_approvers(order_id)]
    assert services.resolver.is_authorized_approver(other.id, order_id, 1) is False


def test_inactive_users_are_not_approvers(services, people, make_order) -> None:
    order_id = make_order()
    people.b.is_active = False
    db.session.commit()

    assert services.resolver.is_authorized_approver(people.b.id, order_id, 2) is False


def test_missing_level_is_a_configuration_error(services, people, make_order) -> None:
    order_id = make_order(required_level=5)
    db.session.query(ApprovalState).filter_by(order_id=order_id).update({"act_approv": 3})
    db.session.commit()

    with pytest.raises(NoApproverConfiguredError) as exc_info:
        services.resolver.resolve_next_approvers(order_id)

    assert exc_info.value.level == 4
    assert exc_info.value.plant == "3310"


def test_terminal_orders_have_no_next_approvers(services, people, make_order) -> None:
    order_id = make_order(required_level=1)
    services.machine.approve(order_id, people.a.id)

    assert services.resolver.resolve_next_approvers(order_id) == []


def test_is_authorized_approver(services, people, make_order) -> None:
    order_id = make_order()

    assert services.resolver.is_authorized_approver(people.a.id, order_id, 1)
    assert services.resolver.is_authorized_approver(people.b.id, order_id, 2)
    assert not services.resolver.is_authorized_approver(people.b.id, order_id, 1)
    assert not services.resolver.is_authorized_approver(people.outsider.id, order_id, 1)


def test_roles_and_pending_orders_for_user(services, people, make_order) -> None:
    first = make_order()
    second = make_order()
    services.machine.approve(first, people.a.id)

    roles = services.resolver.roles_for_user(people.b.id)
    assert roles == [
        {
            "id": roles[0]["id"],
            "approval_level": 2,
            "plant": None,
            "charge_name": "Transportation",
            "display_name": "Transportation - Regional",
        }
    ]

    assert [o.id for o in services.resolver.pending_orders_for(people.a.id)] == [second]
    assert [o.id for o in services.resolver.pending_orders_for(people.b.id)] == [first]
    assert services.resolver.pending_orders_for(people.outsider.id) == []
