"""
auth/mailer.py -- Delivery of email-verification links.

Two implementations behind one send_verification(email, name, link) method:
  LogMailer  -- development default. Logs that a link was issued; the link
                itself only at DEBUG level.
  HttpMailer -- POSTs a JSON message to a transactional mail API (Resend
                style: {from, to, subject, html}) with a Bearer API key.

Failures raise MailerError. AuthService logs and continues, so a mail outage
never blocks registration -- the user can ask for a new link later.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import html
import logging

import httpx

logger = logging.getLogger("authkit.auth.mailer")


class MailerError(Exception):
    """The verification message could not be handed to the mail service."""


class LogMailer:
    """Writes verification links to the log instead of sending them."""

    def send_verification(self, email: str, name: str, link: str) -> None:
        logger.info("Verification link issued for %s", email)
        logger.debug("Verification link for %s: %s", email, link)


class HttpMailer:
    """Sends verification mail through an HTTP mail API."""

    def __init__(self, api_url: str, api_key: str, sender: str, timeout: float = 10.0) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send_verification(self, email: str, name: str, link: str) -> None:
        body = (
            f"<p>Hi {html.escape(name)},</p>"
            f'<p>Confirm your email address by opening <a href="{html.escape(link)}">this link</a>.</p>'
            "<p>If you did not create an account, ignore this message.</p>"
        )
        try:
            resp = httpx.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": [email],
                    "subject": "Verify your email address",
                    "html": body,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise MailerError(f"Verification mail to {email} failed: {exc}") from exc
        logger.info("Verification mail sent to %s", email)
