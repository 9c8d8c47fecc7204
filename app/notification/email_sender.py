"""SMTP email sender for offer letters.

``SmtpTransport`` owns one process-wide SMTP connection: opened lazily on
first use, checked with ``NOOP`` before reuse, reopened when the server has
dropped it, and closed at application shutdown.  ``EmailSender`` composes
the message, attaches the letter and hands it to the transport.

There are no retries here.  A transport failure surfaces as
``TransportUnavailable`` and a refused address as ``RecipientRejected``;
the caller decides what happens next.

Safety: recipient addresses are never logged.
"""
from __future__ import annotations

import logging
import re
import smtplib
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from pathlib import Path
from typing import Literal

from app.core.errors import RecipientRejected, StorageError, TransportUnavailable

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ---------------------------------------------------------------------------
# Attachment / DeliveryReceipt
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Attachment:
    """A file to attach, either in memory (``data``) or on disk (``path``)."""

    filename: str
    content_type: str = "application/pdf"
    data: bytes | None = None
    path: str | Path | None = None

    def __post_init__(self) -> None:
        if (self.data is None) == (self.path is None):
            raise ValueError("Attachment needs exactly one of data or path")

    def read(self) -> bytes:
        if self.data is not None:
            return self.data
        try:
            return Path(self.path).read_bytes()
        except OSError as exc:
            raise StorageError(f"Attachment file unreadable: {Path(self.path).name}") from exc


@dataclass
class DeliveryReceipt:
    """Record of one accepted outbound message."""

    email: str
    status: Literal["SENT"]
    timestamp: datetime
    smtp_response: str | None
    message_id: str


# ---------------------------------------------------------------------------
# SmtpTransport
# ---------------------------------------------------------------------------

class SmtpTransport:
    """Shared, lazily connected SMTP client."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout_s: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_s = timeout_s
        self._connection: smtplib.SMTP | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> SmtpTransport:
        return cls(
            settings.smtp_host,
            settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout_s=settings.smtp_timeout_s,
        )

    def _connect(self) -> smtplib.SMTP:
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout_s)
        try:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
        except (smtplib.SMTPException, OSError):
            server.close()
            raise
        logger.info("Opened SMTP connection to %s:%d", self.host, self.port)
        return server

    def _is_alive(self, server: smtplib.SMTP) -> bool:
        try:
            return server.noop()[0] == 250
        except (smtplib.SMTPException, OSError):
            return False

    def _discard(self) -> None:
        if self._connection is not None:
            try:
                self._connection.close()
            except OSError:
                pass
            self._connection = None

    def send_message(self, message: MIMEMultipart, to_addrs: list[str]) -> dict:
        """Send *message*; return the refused-recipients mapping."""
        with self._lock:
            if self._connection is not None and not self._is_alive(self._connection):
                logger.info("SMTP connection went stale, reconnecting")
                self._discard()
            if self._connection is None:
                self._connection = self._connect()
            try:
                return self._connection.send_message(message, to_addrs=to_addrs)
            except smtplib.SMTPRecipientsRefused:
                raise
            except (smtplib.SMTPException, OSError):
                self._discard()
                raise

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            try:
                self._connection.quit()
            except (smtplib.SMTPException, OSError):
                pass
            self._discard()
            logger.info("Closed SMTP connection")


# ---------------------------------------------------------------------------
# EmailSender
# ---------------------------------------------------------------------------

class EmailSender:
    """Compose and send one email with one attachment."""

    def __init__(self, transport: SmtpTransport, mail_from: str) -> None:
        self.transport = transport
        self.mail_from = mail_from

    def _compose(
        self,
        email_address: str,
        subject: str,
        body: str,
        attachment: Attachment | None,
        html: bool,
    ) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = email_address
        msg["Date"] = formatdate(localtime=False)
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(body, "html" if html else "plain", "utf-8"))

        if attachment is not None:
            maintype, _, subtype = attachment.content_type.partition("/")
            part = MIMEApplication(attachment.read(), _subtype=subtype or "octet-stream")
            if maintype != "application":
                part.replace_header("Content-Type", attachment.content_type)
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)
        return msg

    def send(
        self,
        email_address: str,
        subject: str,
        body: str,
        attachment: Attachment | None = None,
        *,
        html: bool = False,
    ) -> DeliveryReceipt:
        """Send a single message and return its receipt.

        Raises ``RecipientRejected`` for a malformed or refused address and
        ``TransportUnavailable`` for connection, authentication and other
        SMTP failures.
        """
        address = (email_address or "").strip()
        if not EMAIL_RE.match(address):
            raise RecipientRejected("Recipient address is not a valid email address")

        msg = self._compose(address, subject, body, attachment, html)

        try:
            refused = self.transport.send_message(msg, [address])
        except smtplib.SMTPRecipientsRefused as exc:
            raise RecipientRejected("Mail server refused the recipient") from exc
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP transport failure: %s", type(exc).__name__)
            raise TransportUnavailable(f"Mail transport unavailable: {exc}") from exc

        if refused:
            raise RecipientRejected("Mail server refused the recipient")

        logger.info("Delivered message %s", msg["Message-ID"])
        return DeliveryReceipt(
            email=address,
            status="SENT",
            timestamp=datetime.now(timezone.utc),
            smtp_response="250 OK",
            message_id=msg["Message-ID"],
        )
