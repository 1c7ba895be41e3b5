from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from .phone_utils import mask_identifier
from .sms_provider import TransportError, _send_with_retry

logger = logging.getLogger("pediahelp.mail")

RESEND_URL = "https://api.resend.com/emails"


def otp_email_text(code: str, minutes: int, brand: str) -> str:
    return (
        f"{brand}\n\n"
        f"Your verification code is {code}.\n"
        f"It expires in {minutes} minutes.\n\n"
        "If you didn't request this, you can safely ignore this email."
    )


def otp_email_html(code: str, minutes: int, brand: str) -> str:
    return (
        '<div style="max-width:640px;margin:0 auto;padding:32px 20px;font-family:sans-serif;line-height:1.6">'
        f'<div style="font-size:14px;font-weight:700;color:#1C947B">{html.escape(brand)}</div>'
        '<h1 style="font-size:18px;color:#264E53">Your verification code</h1>'
        f"<p>Use this code to continue. It expires in <strong>{minutes} minutes</strong>.</p>"
        '<div style="font-family:monospace;font-size:28px;letter-spacing:6px;font-weight:800;'
        'background:#1C947B;color:#fff;padding:10px 16px;border-radius:8px;display:inline-block">'
        f"{html.escape(code)}</div>"
        '<p style="font-size:12px">If you didn\'t request this, you can safely ignore this email.</p>'
        "</div>"
    )


@dataclass
class ResendMailer:
    api_key: str
    from_addr: str
    reply_to: Optional[str] = None
    brand: str = "Pediahelp"
    code_minutes: int = 10
    url: str = RESEND_URL
    http: Optional[httpx.AsyncClient] = field(default=None, repr=False)

    async def send_email(self, to: str, subject: str, text: str, html_body: Optional[str] = None) -> None:
        if not (self.api_key and self.from_addr):
            raise TransportError("Resend mailer not configured")
        payload: dict = {"from": self.from_addr, "to": [to], "subject": subject, "text": text}
        if html_body:
            payload["html"] = html_body
        if self.reply_to:
            payload["reply_to"] = [self.reply_to]
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        await _send_with_retry(
            lambda client: client.post(self.url, json=payload, headers=headers),
            backend_name="resend",
            http=self.http,
        )
        logger.debug("Email sent to=%s subject=%s", mask_identifier(to), subject)

    async def send_code(self, to: str, code: str) -> None:
        await self.send_email(
            to,
            f"{self.brand} verification code: {code}",
            otp_email_text(code, self.code_minutes, self.brand),
            otp_email_html(code, self.code_minutes, self.brand),
        )


@dataclass
class LogMailer:
    """Dev mailer: records what would have been sent."""

    sent: List[dict] = field(default_factory=list)

    async def send_email(self, to: str, subject: str, text: str, html_body: Optional[str] = None) -> None:
        self.sent.append({"to": to, "subject": subject, "text": text})
        logger.info("Log mailer to=%s subject=%s", mask_identifier(to), subject)

    async def send_code(self, to: str, code: str) -> None:
        await self.send_email(to, "verification code", f"code ending {code[-2:]}")
