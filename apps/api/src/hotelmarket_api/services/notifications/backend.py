"""Delivery backends for guest notifications."""

from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import List, Optional, Protocol


class EmailBackend(Protocol):
    """Minimal protocol for sending notification emails."""

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
        reply_to: str | None = None,
    ) -> None:
        ...


class SMSBackend(Protocol):
    """Protocol for SMS / WhatsApp dispatchers."""

    async def send_sms(self, recipient: str, body_text: str) -> None:
        ...


def _build_message(
    recipient: str,
    subject: str,
    body_text: str,
    *,
    sender: str | None = None,
    body_html: str | None = None,
    reply_to: str | None = None,
) -> EmailMessage:
    message = EmailMessage()
    if sender:
        message["From"] = sender
    message["To"] = recipient
    message["Subject"] = subject
    if reply_to:
        message["Reply-To"] = reply_to
    message.set_content(body_text)
    if body_html:
        message.add_alternative(body_html, subtype="html")
    return message


class SMTPEmailBackend:
    """SMTP-powered backend; the blocking send runs in a worker thread."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool,
        sender_email: str,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._sender_email = sender_email

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
        reply_to: str | None = None,
    ) -> None:
        message = _build_message(
            recipient,
            subject,
            body_text,
            sender=self._sender_email,
            body_html=body_html,
            reply_to=reply_to,
        )
        await asyncio.to_thread(self._send, message)

    def _send(self, message: EmailMessage) -> None:
        smtp = smtplib.SMTP(self._host, self._port, timeout=10)
        try:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)
        finally:
            smtp.quit()


@dataclass
class InMemoryEmailBackend:
    """Test backend storing outbound messages in memory."""

    sent_messages: List[EmailMessage]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
        reply_to: str | None = None,
    ) -> None:
        self.sent_messages.append(
            _build_message(recipient, subject, body_text, body_html=body_html, reply_to=reply_to)
        )


@dataclass
class InMemorySMSBackend:
    """Stores SMS payloads for inspection in tests."""

    sent_messages: List[tuple[str, str]]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_sms(self, recipient: str, body_text: str) -> None:
        self.sent_messages.append((recipient, body_text))
