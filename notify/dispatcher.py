"""
notify/dispatcher.py -- Deliver password-reset codes over email and SMS.

Both channels are attempted independently; a failure on one never blocks the
other and nothing here raises. Whether the attempt as a whole counts as
delivered is a named policy (Settings.otp_delivery_policy) rather than an
implicit rule:

  EMAIL_REQUIRED -- email must succeed; SMS is advisory. (default)
  ANY_CHANNEL    -- either channel succeeding is enough.
  ALL_CHANNELS   -- every attempted channel must succeed. A user with no
                    phone number only needs the email.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from notify.senders import EmailSender, SmsSender

logger = logging.getLogger("sessionauth.notify")

OTP_EMAIL_SUBJECT = "Password Reset OTP"

_OTP_EMAIL_TEXT = (
    "We received a request to reset your password.\n"
    "Use the following code to proceed: {code}\n\n"
    "This code will expire in {minutes} minutes.\n"
    "If you didn't request this, please ignore this email."
)

_OTP_EMAIL_HTML = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Reset Your Password</h2>
  <p>We received a request to reset your password. Please use the following code to proceed:</p>
  <div style="background-color: #f4f4f4; padding: 10px; text-align: center; font-size: 24px;
              letter-spacing: 8px; font-weight: bold;">{code}</div>
  <p>This code will expire in {minutes} minutes.</p>
  <p>If you didn't request this, please ignore this email.</p>
</div>
"""

_OTP_SMS_TEXT = "Your password reset code is: {code}. It expires in {minutes} minutes."


class DeliveryPolicy(str, Enum):
    EMAIL_REQUIRED = "email_required"
    ANY_CHANNEL = "any_channel"
    ALL_CHANNELS = "all_channels"


@dataclass(frozen=True)
class DeliveryReport:
    """Outcome of one OTP dispatch.

    sms_attempted is False when the user has no phone number on file.
    delivered is the policy's verdict, not simply email_sent.
    """

    email_sent: bool
    sms_sent: bool
    sms_attempted: bool
    delivered: bool


class OtpDispatcher:
    def __init__(
        self,
        email_sender: EmailSender,
        sms_sender: SmsSender,
        policy: DeliveryPolicy = DeliveryPolicy.EMAIL_REQUIRED,
        ttl_minutes: int = 10,
    ) -> None:
        self._email = email_sender
        self._sms = sms_sender
        self.policy = DeliveryPolicy(policy)
        self.ttl_minutes = ttl_minutes

    def send_otp_email(self, address: str, code: str) -> bool:
        try:
            return bool(
                self._email.send_email(
                    address,
                    OTP_EMAIL_SUBJECT,
                    _OTP_EMAIL_TEXT.format(code=code, minutes=self.ttl_minutes),
                    html=_OTP_EMAIL_HTML.format(code=code, minutes=self.ttl_minutes),
                )
            )
        except Exception:
            # Senders are supposed to report, not raise; a misbehaving one
            # still must not break the other channel.
            logger.exception("Email sender raised")
            return False

    def send_otp_sms(self, address: Optional[str], code: str) -> bool:
        if not address:
            return False
        try:
            return bool(self._sms.send_sms(address, _OTP_SMS_TEXT.format(code=code, minutes=self.ttl_minutes)))
        except Exception:
            logger.exception("SMS sender raised")
            return False

    def dispatch(self, email: str, phone_number: Optional[str], code: str) -> DeliveryReport:
        """Send code over both channels and apply the delivery policy."""
        email_sent = self.send_otp_email(email, code)
        sms_attempted = bool(phone_number)
        sms_sent = self.send_otp_sms(phone_number, code)
        report = DeliveryReport(
            email_sent=email_sent,
            sms_sent=sms_sent,
            sms_attempted=sms_attempted,
            delivered=self._delivered(email_sent, sms_sent, sms_attempted),
        )
        if not report.delivered:
            logger.warning(
                "OTP delivery failed under policy %s (email=%s sms=%s)",
                self.policy.value,
                email_sent,
                sms_sent,
            )
        return report

    def _delivered(self, email_sent: bool, sms_sent: bool, sms_attempted: bool) -> bool:
        if self.policy is DeliveryPolicy.ANY_CHANNEL:
            return email_sent or sms_sent
        if self.policy is DeliveryPolicy.ALL_CHANNELS:
            return email_sent and (sms_sent or not sms_attempted)
        return email_sent
