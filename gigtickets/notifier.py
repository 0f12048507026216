from __future__ import annotations
import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import List, Sequence

from .config import Settings
from .errors import NotificationFailure
from .model.ledger import NewTicket
from .qr import CodeRenderer
from .templates import render

logger = logging.getLogger(__name__)


# ----------------------------
# Notifier interface
# ----------------------------
class Notifier(ABC):
    # raises NotificationFailure when the tickets could not be handed off
    @abstractmethod
    async def send_tickets(
        self, buyer_email: str, tickets: Sequence[NewTicket]
    ) -> None: ...


class LogNotifier(Notifier):
    """Development notifier: writes the tickets to the log, sends nothing."""

    async def send_tickets(
        self, buyer_email: str, tickets: Sequence[NewTicket]
    ) -> None:
        logger.info(
            "[DEV EMAIL] To: %s | %d ticket(s): %s",
            buyer_email,
            len(tickets),
            ", ".join(f"{t.code}@{t.event_date}" for t in tickets),
        )


class SmtpNotifier(Notifier):
    def __init__(self, settings: Settings, renderer: CodeRenderer) -> None:
        self.settings = settings
        self.renderer = renderer

    def build_message(
        self, buyer_email: str, tickets: Sequence[NewTicket]
    ) -> EmailMessage:
        s = self.settings
        inline: List[dict] = []
        for t in tickets:
            cid = make_msgid(idstring=f"qr{t.code}")
            inline.append({
                "code": t.code,
                "event_date": t.event_date,
                # referenced as src="cid:..." (without the angle brackets)
                "cid": cid[1:-1],
                "msgid": cid,
                "png": self.renderer.png(t.code),
            })
        ctx = {
            "event_name": s.event_name,
            "venue_name": s.venue_name,
            "tickets": inline,
        }

        msg = EmailMessage()
        msg["Subject"] = f"Your {s.event_name} Tickets"
        msg["From"] = formataddr((s.venue_name, s.smtp_user))
        msg["To"] = buyer_email
        msg.set_content(render("tickets_email.txt", **ctx))
        msg.add_alternative(render("tickets_email.html", **ctx),
                            subtype="html")

        html_part = msg.get_payload()[1]
        for img in inline:
            html_part.add_related(
                img["png"], maintype="image", subtype="png",
                cid=img["msgid"],
            )
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        s = self.settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=10) as smtp:
            if s.smtp_starttls:
                smtp.starttls()
            if s.smtp_user:
                smtp.login(s.smtp_user, s.smtp_password)
            smtp.send_message(msg)

    async def send_tickets(
        self, buyer_email: str, tickets: Sequence[NewTicket]
    ) -> None:
        msg = self.build_message(buyer_email, tickets)
        try:
            # smtplib blocks; keep it off the event loop
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationFailure(
                f"could not mail {len(tickets)} ticket(s) to {buyer_email}: "
                f"{e}"
            ) from e
        logger.info("Tickets sent to: %s", buyer_email)


def new_notifier(settings: Settings, renderer: CodeRenderer) -> Notifier:
    if settings.notifier == "smtp":
        return SmtpNotifier(settings, renderer)
    if settings.notifier == "log":
        return LogNotifier()
    raise RuntimeError(f"unknown notifier {settings.notifier!r}")
