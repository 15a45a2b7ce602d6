"""Delivers verification codes via SMTP, SendGrid or the log."""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

import aiosmtplib
import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from email_verification.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

PROVIDER_SMTP = "smtp"
PROVIDER_SENDGRID = "sendgrid"
PROVIDER_CONSOLE = "console"


class SendGridRejectedError(Exception):
    """SendGrid answered with a status other than 200 or 202."""

    def __init__(self, response: httpx.Response) -> None:
        self.status_code = response.status_code
        super().__init__(f"SendGrid returned {response.status_code}: {response.text}")


@dataclass
class EmailResult:
    """Outcome of a single send, including any retries."""

    success: bool
    provider: str
    message_id: str | None = None
    error: str | None = None
    attempts: int = 1


@dataclass
class RenderedEmail:
    subject: str
    text: str
    html: str


def render_verification_email(
    code: str, organization_name: str | None, ttl_minutes: int, app_name: str
) -> RenderedEmail:
    """Build the subject and text/HTML bodies of a verification email."""
    org = organization_name or "your organization"
    subject = f"Verify Your {app_name} Account"
    text = (
        f"{app_name} Email Verification\n\n"
        f"Hello! We received a request to verify your email address for {org}.\n\n"
        f"Your verification code is: {code}\n\n"
        f"Enter this {len(code)}-digit code in your browser to verify your email "
        f"address. This code will expire in {ttl_minutes} minutes.\n\n"
        "Security Note: If you didn't request this verification, please ignore "
        "this email. Never share this code with anyone.\n"
    )
    safe_org = html.escape(org)
    safe_app = html.escape(app_name)
    safe_code = html.escape(code)
    body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h1>{safe_app} Email Verification</h1>"
        f"<p>Hello! We received a request to verify your email address for {safe_org}.</p>"
        '<p style="font-size: 32px; font-weight: bold; letter-spacing: 8px; '
        f'font-family: \'Courier New\', monospace;">{safe_code}</p>'
        f"<p>Enter this {len(code)}-digit code in your browser to verify your email "
        f"address. This code will expire in <strong>{ttl_minutes} minutes</strong>.</p>"
        "<p><strong>Security Note:</strong> If you didn't request this verification, "
        "please ignore this email. Never share this code with anyone.</p>"
        "</div>"
    )
    return RenderedEmail(subject=subject, text=text, html=body)


class EmailService:
    """Sends verification emails through the configured provider.

    Transport failures never raise out of :meth:`send_verification_code`;
    they are logged and reported in the returned :class:`EmailResult`.
    """

    def __init__(
        self,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = config or default_settings
        self._transport = transport

    @property
    def provider(self) -> str:
        return self._settings.email_provider.lower()

    async def send_verification_code(
        self, to_email: str, code: str, organization_name: str | None = None
    ) -> EmailResult:
        """Send *code* to *to_email*.

        Parameters
        ----------
        to_email:
            Recipient email address.
        code:
            The one-time verification code.
        organization_name:
            Shown in the greeting when provided.
        """
        rendered = render_verification_email(
            code,
            organization_name,
            ttl_minutes=self._settings.code_ttl_seconds // 60,
            app_name=self._settings.email_from_name,
        )
        logger.info("Sending verification email to %s via %s", to_email, self.provider)

        if self.provider == PROVIDER_CONSOLE:
            return self._send_console(to_email, rendered, code)
        if self.provider == PROVIDER_SENDGRID:
            return await self._send_sendgrid(to_email, rendered)
        if self.provider == PROVIDER_SMTP:
            return await self._send_smtp(to_email, rendered)

        logger.error("Unknown email provider %r", self.provider)
        return EmailResult(
            success=False,
            provider=self.provider,
            error=f"Unknown email provider: {self.provider}",
        )

    # ── Providers ────────────────────────────────────────

    def _send_console(self, to_email: str, rendered: RenderedEmail, code: str) -> EmailResult:
        logger.info("📧 Verification code for %s: %s (%s)", to_email, code, rendered.subject)
        return EmailResult(success=True, provider=PROVIDER_CONSOLE)

    async def _send_smtp(self, to_email: str, rendered: RenderedEmail) -> EmailResult:
        s = self._settings
        msg = EmailMessage()
        msg["Subject"] = rendered.subject
        msg["From"] = formataddr((s.email_from_name, s.email_from))
        msg["To"] = to_email
        msg["Message-ID"] = make_msgid()
        msg.set_content(rendered.text)
        msg.add_alternative(rendered.html, subtype="html")

        try:
            await aiosmtplib.send(
                msg,
                hostname=s.smtp_host,
                port=s.smtp_port,
                username=s.smtp_username or None,
                password=s.smtp_password or None,
                start_tls=s.smtp_start_tls,
            )
        except aiosmtplib.SMTPException as exc:
            logger.exception("SMTP send to %s failed", to_email)
            return EmailResult(success=False, provider=PROVIDER_SMTP, error=str(exc))
        except OSError as exc:
            logger.exception("SMTP connection to %s:%s failed", s.smtp_host, s.smtp_port)
            return EmailResult(success=False, provider=PROVIDER_SMTP, error=str(exc))

        logger.info("Verification email sent to %s", to_email)
        return EmailResult(success=True, provider=PROVIDER_SMTP, message_id=msg["Message-ID"])

    async def _send_sendgrid(self, to_email: str, rendered: RenderedEmail) -> EmailResult:
        s = self._settings
        if not s.sendgrid_api_key:
            logger.error("SENDGRID_API_KEY not set, cannot send to %s", to_email)
            return EmailResult(
                success=False, provider=PROVIDER_SENDGRID, error="SendGrid API key not configured"
            )

        payload = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": s.email_from, "name": s.email_from_name},
            "subject": rendered.subject,
            "content": [
                {"type": "text/plain", "value": rendered.text},
                {"type": "text/html", "value": rendered.html},
            ],
        }
        headers = {"Authorization": f"Bearer {s.sendgrid_api_key}"}

        retrying = AsyncRetrying(
            retry=retry_if_exception_type((httpx.HTTPError, SendGridRejectedError)),
            stop=stop_after_attempt(max(1, s.email_max_attempts)),
            wait=wait_exponential(multiplier=s.email_retry_backoff_seconds, max=10),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    resp = await self._post_sendgrid(payload, headers)
        except (httpx.HTTPError, SendGridRejectedError) as exc:
            logger.error("SendGrid send to %s failed after %d attempts: %s", to_email, attempts, exc)
            return EmailResult(
                success=False, provider=PROVIDER_SENDGRID, error=str(exc), attempts=attempts
            )

        logger.info("Verification email sent to %s (attempt %d)", to_email, attempts)
        return EmailResult(
            success=True,
            provider=PROVIDER_SENDGRID,
            message_id=resp.headers.get("X-Message-Id"),
            attempts=attempts,
        )

    async def _post_sendgrid(self, payload: dict, headers: dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
            resp = await client.post(self._settings.sendgrid_api_url, json=payload, headers=headers)
        if resp.status_code not in (200, 202):
            raise SendGridRejectedError(resp)
        return resp
