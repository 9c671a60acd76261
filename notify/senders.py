"""
notify/senders.py -- Outbound message senders (email and SMS).

A sender is fire-and-report: it returns True when the provider accepted the
message and False on any failure. Senders never raise -- a broken SMTP relay
or SMS API must not take a password-reset request down with it. Delivery is
not guaranteed either way.

Implementations:
  SmtpEmailSender  -- smtplib with STARTTLS or implicit TLS.
  CourierSmsSender -- requests POST to the Courier send API.
  LoggingSender    -- fallback for unconfigured channels; logs a redacted line.

build_senders() picks real senders when their settings are present.

Layer rule: no imports from auth/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol

import requests

from core.config import Settings

logger = logging.getLogger("sessionauth.notify")


class EmailSender(Protocol):
    def send_email(self, address: str, subject: str, body: str, html: Optional[str] = None) -> bool: ...


class SmsSender(Protocol):
    def send_sms(self, address: str, body: str) -> bool: ...


# ---------------------------------------------------------------------------
# Redaction -- addresses are PII and never logged in full
# ---------------------------------------------------------------------------


def redact_email(address: str) -> str:
    if "@" not in address:
        return "redacted"
    local, domain = address.split("@", 1)
    return f"{local[:2]}***@{domain}"


def redact_phone(number: str) -> str:
    return f"***{number[-3:]}" if len(number) > 3 else "redacted"


def normalize_phone(number: str, default_country_code: str) -> str:
    """Return number in +<country><subscriber> form.

    Numbers already starting with "+" are kept. Otherwise leading zeros are
    dropped and the default country code is prefixed.
    """
    number = number.strip().replace(" ", "")
    if number.startswith("+"):
        return number
    return f"{default_country_code}{number.lstrip('0')}"


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


class SmtpEmailSender:
    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_address: str = "",
        timeout: int = 10,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address or user
        self.timeout = timeout

    def send_email(self, address: str, subject: str, body: str, html: Optional[str] = None) -> bool:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = address
        msg.attach(MIMEText(body, "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))

        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.sendmail(self.from_address, address, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    self._login(server)
                    server.sendmail(self.from_address, address, msg.as_string())
        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed for %s", self.host)
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Email to %s failed: %s", redact_email(address), e)
            return False
        logger.info("Email sent to %s (%s)", redact_email(address), subject)
        return True

    def _login(self, server: smtplib.SMTP) -> None:
        if self.user and self.password:
            server.login(self.user, self.password)


# ---------------------------------------------------------------------------
# SMS
# ---------------------------------------------------------------------------


class CourierSmsSender:
    """Send SMS through Courier's single-channel send endpoint.

    Uses one requests.Session for connection pooling. max_redirects is kept
    low -- this is a known API, long redirect chains are never legitimate.
    """

    def __init__(
        self,
        *,
        api_url: str,
        auth_token: str,
        default_country_code: str = "+971",
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url
        self.auth_token = auth_token
        self.default_country_code = default_country_code
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    def send_sms(self, address: str, body: str) -> bool:
        phone = normalize_phone(address, self.default_country_code)
        payload = {
            "message": {
                "to": {"phone_number": phone},
                "content": {"body": body},
                "routing": {"method": "single", "channels": ["sms"]},
            }
        }
        try:
            resp = self._session.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.auth_token}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("SMS to %s failed: %s", redact_phone(phone), e)
            return False
        logger.info("SMS sent to %s", redact_phone(phone))
        return True


# ---------------------------------------------------------------------------
# Dev fallback
# ---------------------------------------------------------------------------


class LoggingSender:
    """Logs instead of sending. Used when a channel is not configured.

    In debug mode it reports success so the reset flow can be exercised
    locally; otherwise it reports failure, since nothing was delivered.
    The message body is never logged -- it carries the OTP.
    """

    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed

    def send_email(self, address: str, subject: str, body: str, html: Optional[str] = None) -> bool:
        logger.info("Email (not sent, SMTP not configured) to %s: %s", redact_email(address), subject)
        return self.succeed

    def send_sms(self, address: str, body: str) -> bool:
        logger.info("SMS (not sent, SMS API not configured) to %s", redact_phone(address))
        return self.succeed


def build_senders(settings: Settings) -> tuple[EmailSender, SmsSender]:
    """Return (email_sender, sms_sender) for the configured channels."""
    email: EmailSender
    sms: SmsSender
    if settings.smtp_host:
        email = SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.smtp_from,
            timeout=settings.smtp_timeout_seconds,
        )
    else:
        email = LoggingSender(succeed=settings.debug)
    if settings.sms_auth_token:
        sms = CourierSmsSender(
            api_url=settings.sms_api_url,
            auth_token=settings.sms_auth_token,
            default_country_code=settings.sms_default_country_code,
            timeout=settings.sms_timeout_seconds,
        )
    else:
        sms = LoggingSender(succeed=settings.debug)
    return email, sms
