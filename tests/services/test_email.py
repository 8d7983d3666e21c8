"""Email delivery tests."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import httpx
import pytest

from clarity.services.email import (
    ConsoleEmailBackend,
    EmailService,
    ResendEmailBackend,
    SMTPEmailBackend,
    get_email_backend,
    render_otp_email,
)


@pytest.fixture
def smtp_backend() -> SMTPEmailBackend:
    return SMTPEmailBackend(
        host="smtp.example.com",
        port=587,
        username="user",
        password="pass",
        from_address="codes@example.com",
    )


@pytest.fixture
def resend_backend() -> ResendEmailBackend:
    return ResendEmailBackend(api_key="re_test_key", from_address="codes@example.com")


class TestConsoleEmailBackend:
    @pytest.mark.asyncio
    async def test_logs_message(self, caplog):
        """Test that the console backend logs the message."""
        backend = ConsoleEmailBackend()

        with caplog.at_level(logging.INFO):
            result = await backend.send(
                to="a@example.com",
                subject="Your code",
                html="<p>123456</p>",
                text="123456",
            )

        assert result is True
        assert "a@example.com" in caplog.text
        assert "123456" in caplog.text


class TestSMTPEmailBackend:
    """Tests for SMTP delivery."""

    def test_build_message(self, smtp_backend):
        """Test that the SMTP message carries sender, recipient and both bodies."""
        message = smtp_backend.build_message("a@example.com", "Your code", "<p>1</p>", "1")

        assert message["To"] == "a@example.com"
        assert message["From"] == "codes@example.com"
        assert message.is_multipart()

    @pytest.mark.asyncio
    async def test_send_success(self, smtp_backend):
        """Test a successful send."""
        with patch("clarity.services.email.aiosmtplib.send", new_callable=AsyncMock) as mock_send:
            result = await smtp_backend.send(to="a@example.com", subject="Your code", html="<p>1</p>")

        assert result is True
        mock_send.assert_called_once()
        assert mock_send.call_args.kwargs["hostname"] == "smtp.example.com"
        assert mock_send.call_args.kwargs["start_tls"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [aiosmtplib.SMTPException("rejected"), ConnectionRefusedError("refused")],
    )
    async def test_send_failure(self, smtp_backend, error):
        """Test that transport errors surface as a failed send."""
        with patch(
            "clarity.services.email.aiosmtplib.send",
            new_callable=AsyncMock,
            side_effect=error,
        ):
            result = await smtp_backend.send(to="a@example.com", subject="Your code", html="<p>1</p>")

        assert result is False


class TestResendEmailBackend:
    """Tests for Resend delivery."""

    @pytest.mark.asyncio
    async def test_send_success(self, resend_backend):
        """Test a successful send."""
        mock_response = MagicMock()

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=mock_response) as mock_post:
            result = await resend_backend.send(to="a@example.com", subject="Your code", html="<p>1</p>")

        assert result is True
        payload = mock_post.call_args.kwargs["json"]
        assert payload["to"] == ["a@example.com"]
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer re_test_key"

    @pytest.mark.asyncio
    async def test_send_rejected(self, resend_backend):
        """Test that an API rejection surfaces as a failed send."""
        mock_response = MagicMock()
        mock_response.status_code = 422
        mock_response.text = "Invalid recipient"
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "Invalid recipient",
            request=MagicMock(),
            response=mock_response,
        )

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=mock_response):
            result = await resend_backend.send(to="a@example.com", subject="Your code", html="<p>1</p>")

        assert result is False

    @pytest.mark.asyncio
    async def test_send_network_error(self, resend_backend):
        """Test that a network error surfaces as a failed send."""
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            side_effect=httpx.ConnectError("unreachable"),
        ):
            result = await resend_backend.send(to="a@example.com", subject="Your code", html="<p>1</p>")

        assert result is False


class TestGetEmailBackend:
    def test_console(self):
        """Test building the console backend."""
        with patch("clarity.services.email.settings") as mock_settings:
            mock_settings.email_backend = "console"
            assert isinstance(get_email_backend(), ConsoleEmailBackend)

    def test_smtp(self):
        """Test building the SMTP backend from settings."""
        with patch("clarity.services.email.settings") as mock_settings:
            mock_settings.email_backend = "smtp"
            mock_settings.smtp_host = "smtp.example.com"
            mock_settings.smtp_port = 465
            mock_settings.smtp_use_tls = False

            backend = get_email_backend()

        assert isinstance(backend, SMTPEmailBackend)
        assert backend.port == 465
        assert backend.use_tls is False

    def test_resend(self):
        """Test building the Resend backend from settings."""
        with patch("clarity.services.email.settings") as mock_settings:
            mock_settings.email_backend = "resend"
            mock_settings.resend_api_key = "re_test_key"

            backend = get_email_backend()

        assert isinstance(backend, ResendEmailBackend)
        assert backend.api_key == "re_test_key"

    def test_unknown(self):
        """Test that an unknown backend name is rejected."""
        with patch("clarity.services.email.settings") as mock_settings:
            mock_settings.email_backend = "pigeon"
            with pytest.raises(ValueError, match="Unknown email backend"):
                get_email_backend()


def test_render_otp_email():
    """Test that the sign-in email includes the code."""
    html, text = render_otp_email("004213", 10)

    assert "004213" in html
    assert "004213" in text
    assert "10 minutes" in text


class TestEmailService:
    """Tests for EmailService."""

    @pytest.mark.asyncio
    async def test_send_otp_code(self):
        """Test sending a sign-in code through the configured backend."""
        mock_backend = AsyncMock()
        mock_backend.send.return_value = True

        result = await EmailService(backend=mock_backend).send_otp_code(to="a@example.com", code="417203")

        assert result is True
        call_kwargs = mock_backend.send.call_args.kwargs
        assert call_kwargs["to"] == "a@example.com"
        assert "417203" in call_kwargs["html"]
        assert "417203" in call_kwargs["text"]

    @pytest.mark.asyncio
    async def test_send_otp_code_failure(self):
        """Test that a failed backend send is reported."""
        mock_backend = AsyncMock()
        mock_backend.send.return_value = False

        result = await EmailService(backend=mock_backend).send_otp_code(to="a@example.com", code="417203")

        assert result is False

    def test_backend_is_resolved_once(self):
        """Test that the email backend is built once and reused."""
        service = EmailService()

        with patch("clarity.services.email.get_email_backend", return_value=ConsoleEmailBackend()) as factory:
            assert service.backend is service.backend

        factory.assert_called_once()
