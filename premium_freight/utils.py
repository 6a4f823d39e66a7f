"""
Utility functions shared across the app. This includes:
- approval_charge_name: job title behind an approval level (used in role listings and e-mails).
- status_text: human readable approval status for an order snapshot.
- token_hint: short, log-safe prefix of an action token.
- parse_order_ids: lenient parsing of order id lists coming from forms / JSON.
"""

from __future__ import annotations

from .domain import ApprovalSnapshot, OrderState

APPROVAL_CHARGES = {
    1: "Traffic",
    2: "Transportation",
    3: "Logistics Manager",
    4: "Controlling",
    5: "Plant Manager",
    6: "Senior Manager Logistics Division",
    7: "Manager OPS Division",
    8: "SR VP Regional",
}


def approval_charge_name(level: int) -> str:
    return APPROVAL_CHARGES.get(int(level), f"Level {level}")


def approver_display_name(level: int, plant: str | None) -> str:
    """
    'Plant Manager - Plant 3310' or 'SR VP Regional - Regional'.
    """
    suffix = f"Plant {plant}" if plant is not None else "Regional"
    return f"{approval_charge_name(level)} - {suffix}"


def status_text(snapshot: ApprovalSnapshot) -> str:
    state = snapshot.state
    if state is OrderState.REJECTED:
        return "Rejected"
    if state is OrderState.APPROVED:
        return "Approved"
    return f"Pending level {snapshot.next_level}/{snapshot.required_level}"


def token_hint(token: str | None) -> str:
    """Never log full tokens."""
    if not token:
        return "-"
    return f"{token[:6]}…"


def parse_order_ids(raw) -> list[int]:
    """
    Accept [1, "2"], "1,2,3" or a single id. Invalid entries raise ValueError.

    Duplicates are dropped, first occurrence order is kept.
    """
    if raw is None:
        return []
    if isinstance(raw, (int, str)):
        items = [p for p in str(raw).split(",") if p.strip() != ""]
    else:
        items = list(raw)

    seen: set[int] = set()
    result: list[int] = []
    for item in items:
        value = int(str(item).strip())
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result
