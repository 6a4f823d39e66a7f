"""
Service layer wiring.

build_services() assembles the approval core for the current app: one
session shared by every service, settings read from app config, mail
transport taken from app.extensions (tests swap in a recording one).
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import MAIL_TRANSPORT_KEY, db
from .approvers import ApproverResolver
from .bulk import BulkActionCoordinator
from .email_actions import EmailActionHandler
from .ledger import ApprovalLedger
from .notifications import EmailNotificationDispatcher, LoggingMailTransport
from .tokens import TokenStore
from .workflow import ApprovalStateMachine


@dataclass
class Services:
    ledger: ApprovalLedger
    resolver: ApproverResolver
    tokens: TokenStore
    dispatcher: EmailNotificationDispatcher
    machine: ApprovalStateMachine
    bulk: BulkActionCoordinator
    email_actions: EmailActionHandler


def build_services(session=None) -> Services:
    app = current_app
    session = session if session is not None else db.session
    cfg = app.config

    ledger = ApprovalLedger(session)
    resolver = ApproverResolver(session, ledger)
    tokens = TokenStore(
        session,
        action_ttl_hours=cfg.get("ACTION_TOKEN_TTL_HOURS", 72),
        bulk_ttl_hours=cfg.get("BULK_TOKEN_TTL_HOURS", 168),
    )
    dispatcher = EmailNotificationDispatcher(
        session,
        tokens=tokens,
        transport=app.extensions.get(MAIL_TRANSPORT_KEY) or LoggingMailTransport(),
        resolver=resolver,
        base_url=cfg.get("PUBLIC_BASE_URL", "http://localhost:5000"),
        app_name=cfg.get("APP_NAME", "Premium Freight"),
        sender=cfg.get("MAIL_SENDER", "noreply@localhost"),
    )
    machine = ApprovalStateMachine(
        session,
        ledger=ledger,
        resolver=resolver,
        dispatcher=dispatcher,
        max_level=cfg.get("MAX_APPROVAL_LEVEL", 8),
    )
    bulk = BulkActionCoordinator(machine)
    email_actions = EmailActionHandler(
        tokens,
        machine,
        coordinator=bulk,
        rejection_reason=cfg.get("EMAIL_REJECTION_REASON", "Rejected via email"),
    )
    return Services(
        ledger=ledger,
        resolver=resolver,
        tokens=tokens,
        dispatcher=dispatcher,
        machine=machine,
        bulk=bulk,
        email_actions=email_actions,
    )
