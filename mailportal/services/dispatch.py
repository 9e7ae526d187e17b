"""
Outbound dispatch through a user's SMTP relay.

``send`` and ``verify`` never raise for relay-side problems: bad credentials,
unreachable hosts, timeouts and refused recipients all come back as a failed
result so one broken relay cannot take the surrounding request down with it.
"""

import logging
import mimetypes
import smtplib
import socket
import ssl
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.policy import SMTP as SMTP_POLICY
from email.utils import formataddr, formatdate, make_msgid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..config import Settings
from ..utils.sanitization import sanitize_header_value
from .attachment_stager import StagedAttachment
from .config_resolver import UsableConfig

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT = 30.0
DEFAULT_VERIFY_TIMEOUT = 10.0


class DispatchErrorKind(str, Enum):
    AUTHENTICATION_REJECTED = "AuthenticationRejected"
    CONNECTION_FAILED = "ConnectionFailed"
    RECIPIENT_REJECTED = "RecipientRejected"
    TIMEOUT = "Timeout"
    MESSAGE_REJECTED = "MessageRejected"
    ATTACHMENT_UNAVAILABLE = "AttachmentUnavailable"
    UNEXPECTED = "Unexpected"

    @property
    def is_connectivity(self) -> bool:
        return self in (DispatchErrorKind.CONNECTION_FAILED, DispatchErrorKind.TIMEOUT)


class DispatchRequest(BaseModel):
    config: UsableConfig
    to: list[str]
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None
    attachments: list[StagedAttachment] = Field(default_factory=list)

    @property
    def envelope_recipients(self) -> list[str]:
        return [*self.to, *self.cc, *self.bcc]


class DispatchResult(BaseModel):
    success: bool
    provider_message_id: Optional[str] = None
    provider_response: Optional[str] = None
    rejected_recipients: list[str] = Field(default_factory=list)
    error_kind: Optional[DispatchErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def failure(cls, kind: DispatchErrorKind, message: str) -> "DispatchResult":
        return cls(success=False, error_kind=kind, message=message)


class VerifyResult(BaseModel):
    success: bool
    message: str
    error_kind: Optional[DispatchErrorKind] = None


def _smtp_reply(exc: smtplib.SMTPResponseException) -> str:
    error = exc.smtp_error
    if isinstance(error, bytes):
        error = error.decode("utf-8", errors="replace")
    return f"{exc.smtp_code} {error}".strip()


def classify_failure(exc: BaseException, config: UsableConfig) -> tuple[DispatchErrorKind, str]:
    """Map an SMTP/socket failure onto a dispatch error kind and a readable message."""
    target = f"{config.host}:{config.port}"

    if isinstance(exc, smtplib.SMTPAuthenticationError):
        return DispatchErrorKind.AUTHENTICATION_REJECTED, (
            f"Authentication failed. Check username and password. ({_smtp_reply(exc)})"
        )
    if isinstance(exc, smtplib.SMTPNotSupportedError):
        return DispatchErrorKind.AUTHENTICATION_REJECTED, f"Server at {target} does not support authentication"
    if isinstance(exc, smtplib.SMTPRecipientsRefused):
        refused = ", ".join(sorted(exc.recipients))
        return DispatchErrorKind.RECIPIENT_REJECTED, f"All recipients were refused: {refused}"
    if isinstance(exc, smtplib.SMTPSenderRefused):
        return DispatchErrorKind.MESSAGE_REJECTED, f"Sender address refused: {exc.sender} ({_smtp_reply(exc)})"
    if isinstance(exc, smtplib.SMTPDataError):
        return DispatchErrorKind.MESSAGE_REJECTED, f"Message refused by server ({_smtp_reply(exc)})"
    if isinstance(exc, (smtplib.SMTPConnectError, smtplib.SMTPHeloError)):
        return DispatchErrorKind.CONNECTION_FAILED, f"Could not connect to {target}. Check host and port."
    if isinstance(exc, smtplib.SMTPServerDisconnected):
        return DispatchErrorKind.CONNECTION_FAILED, "Server disconnected unexpectedly. Try a different port."
    # SMTPException subclasses OSError, so the remaining SMTP cases go first
    if isinstance(exc, smtplib.SMTPResponseException):
        return DispatchErrorKind.MESSAGE_REJECTED, f"Server rejected the request ({_smtp_reply(exc)})"
    if isinstance(exc, smtplib.SMTPException):
        return DispatchErrorKind.MESSAGE_REJECTED, f"SMTP error: {exc}"
    if isinstance(exc, (TimeoutError, socket.timeout)):
        return DispatchErrorKind.TIMEOUT, f"Connection to {target} timed out. Check host and port."
    if isinstance(exc, ssl.SSLError):
        return DispatchErrorKind.CONNECTION_FAILED, "SSL/TLS error. Try toggling the secure setting or use port 465."
    if isinstance(exc, socket.gaierror):
        return DispatchErrorKind.CONNECTION_FAILED, f"Could not resolve host {config.host}"
    if isinstance(exc, OSError):
        return DispatchErrorKind.CONNECTION_FAILED, f"Could not connect to {target}: {exc}"
    return DispatchErrorKind.UNEXPECTED, f"Unexpected error: {type(exc).__name__}"


class DispatchEngine:
    """Opens SMTP sessions from resolved configs and sends or verifies through them."""

    def __init__(self, timeout: float = DEFAULT_SEND_TIMEOUT, verify_timeout: float = DEFAULT_VERIFY_TIMEOUT):
        self.timeout = timeout
        self.verify_timeout = verify_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "DispatchEngine":
        return cls(timeout=settings.smtp_timeout_seconds, verify_timeout=settings.smtp_verify_timeout_seconds)

    def _open_session(self, config: UsableConfig, timeout: float) -> smtplib.SMTP:
        if config.implicit_tls:
            context = ssl.create_default_context()
            server = smtplib.SMTP_SSL(config.host, config.port, context=context, timeout=timeout)
        else:
            server = smtplib.SMTP(config.host, config.port, timeout=timeout)
            try:
                server.ehlo()
                if server.has_extn("starttls"):
                    context = ssl.create_default_context()
                    server.starttls(context=context)
                    server.ehlo()
            except BaseException:
                self._close(server)
                raise

        if config.username:
            try:
                server.login(config.username, config.password)
            except BaseException:
                self._close(server)
                raise
        return server

    @staticmethod
    def _close(server: smtplib.SMTP) -> None:
        try:
            server.quit()
        except (smtplib.SMTPException, OSError):
            server.close()

    def build_message(self, request: DispatchRequest) -> MIMEMultipart:
        """Compose the MIME message. Bcc recipients stay on the envelope only."""
        config = request.config

        if request.text is not None and request.html is not None:
            body = MIMEMultipart("alternative", policy=SMTP_POLICY)
            body.attach(MIMEText(request.text, "plain", "utf-8", policy=SMTP_POLICY))
            body.attach(MIMEText(request.html, "html", "utf-8", policy=SMTP_POLICY))
        elif request.html is not None:
            body = MIMEText(request.html, "html", "utf-8", policy=SMTP_POLICY)
        else:
            body = MIMEText(request.text or "", "plain", "utf-8", policy=SMTP_POLICY)

        if request.attachments:
            msg = MIMEMultipart("mixed", policy=SMTP_POLICY)
            msg.attach(body)
            for attachment in request.attachments:
                msg.attach(self._attachment_part(attachment))
        else:
            msg = body

        domain = config.from_address.rpartition("@")[2] or None
        msg["Subject"] = sanitize_header_value(request.subject)
        msg["From"] = formataddr((sanitize_header_value(config.from_name), config.from_address))
        msg["To"] = ", ".join(request.to)
        if request.cc:
            msg["Cc"] = ", ".join(request.cc)
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=domain)
        return msg

    @staticmethod
    def _attachment_part(attachment: StagedAttachment) -> MIMEBase:
        content_type = attachment.content_type or mimetypes.guess_type(attachment.filename)[0]
        if not content_type or "/" not in content_type:
            content_type = "application/octet-stream"
        maintype, subtype = content_type.split("/", 1)

        # Read from the staged location; raises FileNotFoundError if it vanished
        with open(attachment.path, "rb") as fh:
            payload = fh.read()

        part = MIMEBase(maintype, subtype, policy=SMTP_POLICY)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
        return part

    def send(self, request: DispatchRequest, timeout: Optional[float] = None) -> DispatchResult:
        config = request.config
        timeout = timeout if timeout is not None else self.timeout

        try:
            msg = self.build_message(request)
        except OSError as e:
            logger.error(f"❌ Staged attachment unavailable for send via {config.host}: {e}")
            return DispatchResult.failure(
                DispatchErrorKind.ATTACHMENT_UNAVAILABLE, f"Attachment could not be read: {e.filename or e}"
            )

        recipients = request.envelope_recipients
        try:
            server = self._open_session(config, timeout)
            try:
                refused = server.send_message(msg, from_addr=config.from_address, to_addrs=recipients)
            finally:
                self._close(server)
        except Exception as e:
            kind, message = classify_failure(e, config)
            if kind is DispatchErrorKind.UNEXPECTED:
                logger.exception(f"❌ Unexpected SMTP failure via {config.host}:{config.port}")
            else:
                logger.error(f"❌ SMTP send failed via {config.host}:{config.port} [{kind.value}]: {message}")
            return DispatchResult.failure(kind, message)

        rejected = sorted(refused or {})
        accepted = len(recipients) - len(rejected)
        logger.info(
            f"✅ Email sent via {config.host}:{config.port} to {accepted}/{len(recipients)} recipient(s)"
        )
        return DispatchResult(
            success=True,
            provider_message_id=str(msg["Message-ID"]),
            provider_response=f"250 Accepted for {accepted} of {len(recipients)} recipient(s)",
            rejected_recipients=rejected,
        )

    def verify(self, config: UsableConfig, timeout: Optional[float] = None) -> VerifyResult:
        """Connect and authenticate without sending anything."""
        timeout = timeout if timeout is not None else self.verify_timeout
        try:
            server = self._open_session(config, timeout)
            self._close(server)
        except Exception as e:
            kind, message = classify_failure(e, config)
            logger.error(f"❌ SMTP verify failed for {config.host}:{config.port} [{kind.value}]: {message}")
            return VerifyResult(success=False, message=message, error_kind=kind)

        logger.info(f"✅ SMTP connection verified for {config.host}:{config.port}")
        return VerifyResult(success=True, message="SMTP connection successful")
