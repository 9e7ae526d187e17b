"""DispatchEngine: message building, failure classification and the never-raise contract."""

import smtplib
import socket
from email import message_from_bytes
from unittest.mock import MagicMock, patch

import pytest

from mailportal.services.attachment_stager import StagedAttachment, UploadedPayload
from mailportal.services.config_resolver import UsableConfig
from mailportal.services.dispatch import (
    DispatchEngine,
    DispatchErrorKind,
    DispatchRequest,
    classify_failure,
)


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _request(config, **overrides):
    data = {
        "config": config,
        "to": ["bob@example.com"],
        "subject": "Quarterly report",
        "text": "Plain body",
        "html": "<p>HTML body</p>",
    }
    data.update(overrides)
    return DispatchRequest(**data)


@pytest.fixture()
def dispatch_engine():
    return DispatchEngine(timeout=2, verify_timeout=2)


@pytest.fixture()
def smtp_server():
    """Patched smtplib.SMTP whose instance accepts everything"""
    with patch("mailportal.services.dispatch.smtplib.SMTP") as smtp_cls:
        server = MagicMock()
        server.has_extn.return_value = True
        server.send_message.return_value = {}
        smtp_cls.return_value = server
        yield smtp_cls, server


class TestSend:
    def test_unreachable_host_is_connection_failed(self, dispatch_engine):
        config = UsableConfig(host="127.0.0.1", port=_free_port(), username="u", password="p")
        result = dispatch_engine.send(_request(config))
        assert result.success is False
        assert result.error_kind is DispatchErrorKind.CONNECTION_FAILED
        assert result.error_kind.is_connectivity

    def test_auth_rejection(self, dispatch_engine, smtp_config, smtp_server):
        _, server = smtp_server
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"5.7.8 Bad credentials")

        result = dispatch_engine.send(_request(smtp_config))

        assert result.success is False
        assert result.error_kind is DispatchErrorKind.AUTHENTICATION_REJECTED
        assert not result.error_kind.is_connectivity
        assert "s3cret" not in (result.message or "")
        server.send_message.assert_not_called()

    def test_timeout(self, dispatch_engine, smtp_config):
        with patch("mailportal.services.dispatch.smtplib.SMTP", side_effect=socket.timeout("timed out")):
            result = dispatch_engine.send(_request(smtp_config))
        assert result.error_kind is DispatchErrorKind.TIMEOUT
        assert result.error_kind.is_connectivity

    def test_all_recipients_refused(self, dispatch_engine, smtp_config, smtp_server):
        _, server = smtp_server
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused(
            {"bob@example.com": (550, b"No such user")}
        )
        result = dispatch_engine.send(_request(smtp_config))
        assert result.error_kind is DispatchErrorKind.RECIPIENT_REJECTED
        assert "bob@example.com" in result.message

    def test_unexpected_error_does_not_raise(self, dispatch_engine, smtp_config, smtp_server):
        _, server = smtp_server
        server.send_message.side_effect = RuntimeError("boom")
        result = dispatch_engine.send(_request(smtp_config))
        assert result.success is False
        assert result.error_kind is DispatchErrorKind.UNEXPECTED

    def test_success(self, dispatch_engine, smtp_config, smtp_server):
        smtp_cls, server = smtp_server
        server.send_message.return_value = {"carol@example.com": (550, b"Mailbox full")}

        result = dispatch_engine.send(_request(smtp_config, cc=["carol@example.com"], bcc=["dave@example.com"]))

        assert result.success is True
        assert result.provider_message_id.startswith("<")
        assert result.rejected_recipients == ["carol@example.com"]
        assert result.provider_response == "250 Accepted for 2 of 3 recipient(s)"
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=2)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("alice@example.com", "s3cret")
        server.quit.assert_called_once()

    def test_bcc_only_on_envelope(self, dispatch_engine, smtp_config, smtp_server):
        _, server = smtp_server

        dispatch_engine.send(_request(smtp_config, cc=["carol@example.com"], bcc=["dave@example.com"]))

        msg = server.send_message.call_args.args[0]
        kwargs = server.send_message.call_args.kwargs
        assert kwargs["to_addrs"] == ["bob@example.com", "carol@example.com", "dave@example.com"]
        assert kwargs["from_addr"] == "alice@example.com"
        assert msg["Bcc"] is None
        assert "dave@example.com" not in msg.as_string()
        assert msg["Cc"] == "carol@example.com"

    def test_caller_timeout_overrides_default(self, dispatch_engine, smtp_config, smtp_server):
        smtp_cls, _ = smtp_server
        dispatch_engine.send(_request(smtp_config), timeout=7)
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=7)

    def test_implicit_tls_uses_smtp_ssl(self, dispatch_engine):
        config = UsableConfig(host="smtp.example.com", port=465, username="u@example.com", password="p")
        with patch("mailportal.services.dispatch.smtplib.SMTP_SSL") as ssl_cls, patch(
            "mailportal.services.dispatch.smtplib.SMTP"
        ) as plain_cls:
            ssl_cls.return_value.send_message.return_value = {}
            result = dispatch_engine.send(_request(config))
        assert result.success is True
        ssl_cls.assert_called_once()
        plain_cls.assert_not_called()

    def test_missing_staged_attachment(self, dispatch_engine, smtp_config, smtp_server, tmp_path):
        _, server = smtp_server
        gone = StagedAttachment(filename="gone.pdf", size=3, path=str(tmp_path / "gone.pdf"))
        result = dispatch_engine.send(_request(smtp_config, attachments=[gone]))
        assert result.error_kind is DispatchErrorKind.ATTACHMENT_UNAVAILABLE
        server.send_message.assert_not_called()


class TestBuildMessage:
    def test_multipart_with_attachment(self, dispatch_engine, smtp_config, stager):
        [staged] = stager.stage(
            [UploadedPayload(filename="notes.txt", content_type="text/plain", content=b"hello")]
        )
        msg = dispatch_engine.build_message(_request(smtp_config, attachments=[staged]))

        parsed = message_from_bytes(msg.as_bytes())
        assert parsed.get_content_type() == "multipart/mixed"
        body, attachment = parsed.get_payload()
        assert body.get_content_type() == "multipart/alternative"
        assert [p.get_content_type() for p in body.get_payload()] == ["text/plain", "text/html"]
        assert attachment.get_filename() == "notes.txt"
        assert attachment.get_payload(decode=True) == b"hello"

    def test_headers(self, dispatch_engine, smtp_config):
        msg = dispatch_engine.build_message(_request(smtp_config, subject="Hi\r\nBcc: evil@example.com"))
        assert msg["From"] == "Alice Example <alice@example.com>"
        assert msg["To"] == "bob@example.com"
        assert msg["Subject"] == "Hi Bcc: evil@example.com"
        assert msg["Message-ID"].endswith("@example.com>")

    def test_html_only(self, dispatch_engine, smtp_config):
        msg = dispatch_engine.build_message(_request(smtp_config, text=None))
        assert msg.get_content_type() == "text/html"


class TestVerify:
    def test_verify_success(self, dispatch_engine, smtp_config, smtp_server):
        _, server = smtp_server
        result = dispatch_engine.verify(smtp_config)
        assert result.success is True
        server.login.assert_called_once()
        server.send_message.assert_not_called()

    def test_verify_auth_rejected(self, dispatch_engine, smtp_config, smtp_server):
        _, server = smtp_server
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"Bad credentials")
        result = dispatch_engine.verify(smtp_config)
        assert result.success is False
        assert result.error_kind is DispatchErrorKind.AUTHENTICATION_REJECTED

    def test_verify_unreachable(self, dispatch_engine):
        config = UsableConfig(host="127.0.0.1", port=_free_port())
        result = dispatch_engine.verify(config)
        assert result.error_kind is DispatchErrorKind.CONNECTION_FAILED


@pytest.mark.parametrize(
    ("exc", "kind"),
    [
        (smtplib.SMTPAuthenticationError(535, b"no"), DispatchErrorKind.AUTHENTICATION_REJECTED),
        (smtplib.SMTPSenderRefused(553, b"no", "a@example.com"), DispatchErrorKind.MESSAGE_REJECTED),
        (smtplib.SMTPDataError(554, b"spam"), DispatchErrorKind.MESSAGE_REJECTED),
        (smtplib.SMTPConnectError(421, b"busy"), DispatchErrorKind.CONNECTION_FAILED),
        (smtplib.SMTPServerDisconnected("gone"), DispatchErrorKind.CONNECTION_FAILED),
        (ConnectionRefusedError(111, "refused"), DispatchErrorKind.CONNECTION_FAILED),
        (socket.gaierror(-2, "Name or service not known"), DispatchErrorKind.CONNECTION_FAILED),
        (TimeoutError("timed out"), DispatchErrorKind.TIMEOUT),
        (ValueError("odd"), DispatchErrorKind.UNEXPECTED),
    ],
)
def test_classify_failure(exc, kind, smtp_config):
    assert classify_failure(exc, smtp_config)[0] is kind
