"""Unit tests for SMTP notifier."""

from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest

from src.services.notifier import SmtpNotifier


@pytest.fixture
def smtp_settings(settings):
    settings.smtp_host = "smtp.test.local"
    settings.smtp_port = 2525
    settings.smtp_username = "mailer"
    settings.smtp_password = "mail-pass"
    settings.email_from = "no-reply@test.local"
    settings.email_from_name = "Finance"
    return settings


class TestSmtpNotifier:
    """Tests for SmtpNotifier.send()."""

    async def test_send_success(self, smtp_settings):
        notifier = SmtpNotifier(smtp_settings)

        with patch("src.services.notifier.aiosmtplib.send", new_callable=AsyncMock) as mock_send:
            result = await notifier.send("alice@x.com", "Hello", "Body text")

        assert result is True
        message = mock_send.call_args.args[0]
        assert message["To"] == "alice@x.com"
        assert message["Subject"] == "Hello"
        assert message["From"] == "Finance <no-reply@test.local>"
        assert "Body text" in message.get_content()

        kwargs = mock_send.call_args.kwargs
        assert kwargs["hostname"] == "smtp.test.local"
        assert kwargs["port"] == 2525
        assert kwargs["username"] == "mailer"
        assert kwargs["password"] == "mail-pass"
        assert kwargs["timeout"] == smtp_settings.notification_timeout_seconds

    async def test_blank_credentials_are_omitted(self, settings):
        settings.smtp_username = ""
        settings.smtp_password = ""
        notifier = SmtpNotifier(settings)

        with patch("src.services.notifier.aiosmtplib.send", new_callable=AsyncMock) as mock_send:
            await notifier.send("alice@x.com", "Hi", "Body")

        assert mock_send.call_args.kwargs["username"] is None
        assert mock_send.call_args.kwargs["password"] is None

    async def test_implicit_tls_disables_starttls(self, settings):
        settings.smtp_use_tls = True
        settings.smtp_start_tls = True
        notifier = SmtpNotifier(settings)

        with patch("src.services.notifier.aiosmtplib.send", new_callable=AsyncMock) as mock_send:
            await notifier.send("alice@x.com", "Hi", "Body")

        assert mock_send.call_args.kwargs["use_tls"] is True
        assert mock_send.call_args.kwargs["start_tls"] is False

    @pytest.mark.parametrize(
        "error",
        [aiosmtplib.SMTPException("rejected"), ConnectionRefusedError("no server")],
    )
    async def test_send_failure_returns_false(self, settings, error):
        notifier = SmtpNotifier(settings)

        with patch(
            "src.services.notifier.aiosmtplib.send",
            new_callable=AsyncMock,
            side_effect=error,
        ):
            result = await notifier.send("alice@x.com", "Hi", "Body")

        assert result is False
