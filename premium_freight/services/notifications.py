"""
premium_freight/services/notifications.py

Notification dispatcher.

The state machine only knows the NotificationDispatcher protocol:
- notify_next_approvers(order_id, approvers)
- notify_outcome(order_id, outcome, reason=None)

EmailNotificationDispatcher is the production implementation. It mints a
fresh approve and reject token per approver, builds plain-text e-mails with
action links and hands them to a MailTransport. Actual SMTP delivery lives
behind the transport: SmtpMailTransport when MAIL_SERVER is configured,
LoggingMailTransport otherwise (development default).

IMPORTANT:
- Tokens are committed BEFORE the mail is handed over, so a link never
  points at a token that does not exist.
- Full tokens never reach the logs (links are only in the mail body).
- Transports signal failure with NotificationError. Every recipient is
  attempted; the error is raised after the loop.
"""

from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Iterable, Optional, Protocol
from urllib.parse import urlencode

import structlog

from ..domain import ActionKind, OrderState
from ..errors import NoApproverConfiguredError, NotificationError, OrderNotFoundError
from ..extensions import db
from ..models import EmailNotification, Order, User, utcnow
from ..utils import status_text
from .approvers import ApproverResolver
from .tokens import TokenStore

LOGGER = structlog.get_logger(__name__)


class NotificationDispatcher(Protocol):
    def notify_next_approvers(self, order_id: int, approvers: list[User]) -> None: ...

    def notify_outcome(self, order_id: int, outcome: OrderState, reason: Optional[str] = None) -> None: ...


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    body: str
    sender: str
    kind: str
    order_id: Optional[int] = None


class MailTransport(Protocol):
    def send(self, message: OutgoingEmail) -> None: ...


class LoggingMailTransport:
    """Development transport: logs the envelope, delivers nothing."""

    def send(self, message: OutgoingEmail) -> None:
        LOGGER.info(
            "mail_sent",
            to=message.to,
            subject=message.subject,
            kind=message.kind,
            order_id=message.order_id,
        )


class SmtpMailTransport:
    """Delivers plain-text mail over SMTP, one connection per message."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        use_tls: bool = True,
        username: str | None = None,
        password: str | None = None,
        timeout: int = 30,
    ):
        self.host = host
        self.port = port
        self.use_tls = use_tls
        self.username = username
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "SmtpMailTransport":
        return cls(
            host=config["MAIL_SERVER"],
            port=config.get("MAIL_PORT", 587),
            use_tls=config.get("MAIL_USE_TLS", True),
            username=config.get("MAIL_USERNAME"),
            password=config.get("MAIL_PASSWORD"),
            timeout=config.get("MAIL_TIMEOUT", 30),
        )

    def send(self, message: OutgoingEmail) -> None:
        mail = EmailMessage()
        mail["From"] = message.sender
        mail["To"] = message.to
        mail["Subject"] = message.subject
        mail.set_content(message.body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password or "")
                server.send_message(mail)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"SMTP delivery to {message.to} failed: {exc}") from exc

        LOGGER.info("mail_sent", to=message.to, kind=message.kind, order_id=message.order_id)


class EmailNotificationDispatcher:
    def __init__(
        self,
        session=None,
        tokens: TokenStore | None = None,
        transport: MailTransport | None = None,
        resolver: ApproverResolver | None = None,
        base_url: str = "http://localhost:5000",
        app_name: str = "Premium Freight",
        sender: str = "noreply@localhost",
    ):
        self.session = session if session is not None else db.session
        self.tokens = tokens or TokenStore(self.session)
        self.transport = transport or LoggingMailTransport()
        self.resolver = resolver or ApproverResolver(self.session)
        self.base_url = (base_url or "").rstrip("/")
        self.app_name = app_name
        self.sender = sender

    # -----------------------------------------------------------------
    # Links
    # -----------------------------------------------------------------
    def single_action_link(self, token: str, action: ActionKind) -> str:
        query = urlencode({"token": token, "action": ActionKind(action).value})
        return f"{self.base_url}/actions/single?{query}"

    def bulk_action_link(self, token: str, action: ActionKind, order_id: int | None = None) -> str:
        params = {"token": token, "action": ActionKind(action).value}
        if order_id is not None:
            params["order"] = order_id
        return f"{self.base_url}/actions/bulk?{urlencode(params)}"

    # -----------------------------------------------------------------
    # Dispatcher protocol
    # -----------------------------------------------------------------
    def notify_next_approvers(self, order_id: int, approvers: Iterable[User]) -> None:
        order = self._order(order_id)
        snapshot = self.resolver.ledger.read(order_id)

        outgoing: list[tuple[int, OutgoingEmail]] = []
        for user in approvers:
            approve_token = self.tokens.mint_action_token(order_id, user.id, ActionKind.APPROVE)
            reject_token = self.tokens.mint_action_token(order_id, user.id, ActionKind.REJECT)
            body = "\n".join(
                [
                    f"Hello {user.name},",
                    "",
                    f"Premium freight order #{order.id} needs your approval.",
                    f"Plant: {order.plant or '-'}",
                    f"Cost: {order.cost_euros} EUR",
                    f"Description: {order.description or '-'}",
                    f"Status: {status_text(snapshot)}",
                    "",
                    f"Approve: {self.single_action_link(approve_token, ActionKind.APPROVE)}",
                    f"Reject:  {self.single_action_link(reject_token, ActionKind.REJECT)}",
                    "",
                    "Each link can be used once.",
                ]
            )
            outgoing.append(
                (
                    user.id,
                    OutgoingEmail(
                        to=user.email,
                        subject=f"[{self.app_name}] Approval required: order #{order.id}",
                        body=body,
                        sender=self.sender,
                        kind="approval_request",
                        order_id=order.id,
                    ),
                )
            )
        self.session.commit()

        self._deliver_all(outgoing)

    def notify_outcome(self, order_id: int, outcome: OrderState, reason: Optional[str] = None) -> None:
        order = self._order(order_id)
        creator = self.session.get(User, order.creator_id)
        if creator is None:
            raise NotificationError(f"Creator of order {order_id} not found")

        outcome = OrderState(outcome)
        if outcome is OrderState.APPROVED:
            kind = "status_approved"
            lines = [f"Your premium freight order #{order.id} has been fully approved."]
        elif outcome is OrderState.REJECTED:
            kind = "status_rejected"
            lines = [
                f"Your premium freight order #{order.id} has been rejected.",
                f"Reason: {reason or '-'}",
            ]
        else:
            raise NotificationError(f"Order {order_id} is still pending; no outcome to report")

        body = "\n".join([f"Hello {creator.name},", "", *lines])
        message = OutgoingEmail(
            to=creator.email,
            subject=f"[{self.app_name}] Order #{order.id} {outcome.value.lower()}",
            body=body,
            sender=self.sender,
            kind=kind,
            order_id=order.id,
        )
        self._deliver_all([(creator.id, message)])

    # -----------------------------------------------------------------
    # Weekly digest
    # -----------------------------------------------------------------
    def send_weekly_digest(self) -> int:
        """
        One e-mail per approver listing every order waiting on them.

        Each digest carries an approve-all and a reject-all bulk token; every
        listed order also gets its own link on the same tokens.
        Returns the number of digests handed to the transport.
        """
        groups: dict[int, tuple[User, list[Order]]] = {}
        for order in self.resolver.pending_orders():
            try:
                approvers = self.resolver.next_approvers_for(self.resolver.ledger.read(order.id))
            except NoApproverConfiguredError:
                LOGGER.warning("digest_order_skipped", order_id=order.id)
                continue
            for user in approvers:
                groups.setdefault(user.id, (user, []))[1].append(order)

        outgoing: list[tuple[int, OutgoingEmail]] = []
        for user_id, (user, orders) in sorted(groups.items()):
            order_ids = [o.id for o in orders]
            approve_token = self.tokens.mint_bulk_action_token(user_id, order_ids, ActionKind.APPROVE)
            reject_token = self.tokens.mint_bulk_action_token(user_id, order_ids, ActionKind.REJECT)

            lines = [f"Hello {user.name},", "", f"{len(orders)} premium freight order(s) await your approval:", ""]
            for order in orders:
                lines.extend(
                    [
                        f"#{order.id}  plant {order.plant or '-'}  {order.cost_euros} EUR  {order.description or ''}".rstrip(),
                        f"  Approve: {self.bulk_action_link(approve_token, ActionKind.APPROVE, order.id)}",
                        f"  Reject:  {self.bulk_action_link(reject_token, ActionKind.REJECT, order.id)}",
                    ]
                )
            lines.extend(
                [
                    "",
                    f"Approve all: {self.bulk_action_link(approve_token, ActionKind.APPROVE)}",
                    f"Reject all:  {self.bulk_action_link(reject_token, ActionKind.REJECT)}",
                ]
            )
            outgoing.append(
                (
                    user_id,
                    OutgoingEmail(
                        to=user.email,
                        subject=f"[{self.app_name}] Weekly summary: {len(orders)} order(s) pending",
                        body="\n".join(lines),
                        sender=self.sender,
                        kind="weekly_summary",
                    ),
                )
            )
        self.session.commit()

        self._deliver_all(outgoing)
        LOGGER.info("weekly_digest_sent", recipients=len(outgoing))
        return len(outgoing)

    # -----------------------------------------------------------------
    # Delivery
    # -----------------------------------------------------------------
    def _order(self, order_id: int) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def _deliver_all(self, outgoing: list[tuple[int, OutgoingEmail]]) -> None:
        failures: list[str] = []
        for user_id, message in outgoing:
            try:
                self.transport.send(message)
            except NotificationError as exc:
                LOGGER.error(
                    "mail_delivery_failed",
                    to=message.to,
                    kind=message.kind,
                    order_id=message.order_id,
                    error=str(exc),
                )
                failures.append(message.to)
                continue

            self.session.add(
                EmailNotification(
                    order_id=message.order_id,
                    user_id=user_id,
                    type=message.kind,
                    sent_at=utcnow(),
                )
            )
            self.session.commit()

        if failures:
            raise NotificationError(f"Delivery failed for {len(failures)} recipient(s)")
