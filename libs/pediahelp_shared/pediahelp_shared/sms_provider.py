from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

import httpx

from .phone_utils import mask_identifier

logger = logging.getLogger("pediahelp.sms")

MSG91_OTP_URL = "https://control.msg91.com/api/v5/otp"
MSG91_WHATSAPP_URL = "https://api.msg91.com/api/v5/whatsapp/whatsapp-outbound-message"


class OtpTransport(Protocol):
    async def send_code(self, to: str, code: str) -> None:  # pragma: no cover - interface
        ...


class TransportError(RuntimeError):
    pass


@dataclass
class LogBackend:
    """Dev transport: logs a masked code instead of delivering it."""

    channel: str = "sms"

    async def send_code(self, to: str, code: str) -> None:
        logger.info("OTP log backend channel=%s to=%s code=%s", self.channel, mask_identifier(to), _mask_code(code))


@dataclass
class Msg91SmsBackend:
    auth_key: str
    template_id: str
    sender_id: str
    url: str = MSG91_OTP_URL
    http: Optional[httpx.AsyncClient] = None

    async def send_code(self, to: str, code: str) -> None:
        if not (self.auth_key and self.template_id):
            raise TransportError("MSG91 SMS backend not configured")
        payload = {
            "template_id": self.template_id,
            "mobile": to,
            "otp": code,
            "sender": self.sender_id,
        }
        await _send_with_retry(
            lambda client: client.post(self.url, json=payload, headers=_msg91_headers(self.auth_key)),
            backend_name="msg91_sms",
            http=self.http,
            validator=_validate_msg91,
        )


@dataclass
class Msg91WhatsAppBackend:
    auth_key: str
    template: str
    from_number: str
    language: str = "en"
    url: str = MSG91_WHATSAPP_URL
    http: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.auth_key and self.template and self.from_number)

    async def send_code(self, to: str, code: str) -> None:
        if not self.configured:
            raise TransportError("WA_NOT_CONFIGURED")
        # The approved template carries exactly one body parameter: the code.
        payload = {
            "to": to,
            "from": self.from_number,
            "type": "template",
            "template": {
                "name": self.template,
                "language": {"code": self.language},
                "components": [{"type": "body", "parameters": [{"type": "text", "text": code}]}],
            },
        }
        await _send_with_retry(
            lambda client: client.post(self.url, json=payload, headers=_msg91_headers(self.auth_key)),
            backend_name="msg91_whatsapp",
            http=self.http,
            validator=_validate_msg91,
        )


def _msg91_headers(auth_key: str) -> dict[str, str]:
    return {"Content-Type": "application/json", "authkey": auth_key}


def _validate_msg91(res: httpx.Response) -> None:
    try:
        data = res.json()
    except ValueError:
        data = {}
    if res.status_code >= 400 or (isinstance(data, dict) and data.get("type") == "error"):
        message = data.get("message") if isinstance(data, dict) else None
        raise TransportError(message or f"MSG91 request failed ({res.status_code})")


def _mask_code(code: str) -> str:
    if not code:
        return ""
    digits = re.sub(r"\D", "", code)
    if len(digits) <= 2:
        return "*" * len(digits)
    return "*" * (len(digits) - 2) + digits[-2:]


async def _send_with_retry(
    call: Callable[[httpx.AsyncClient], Awaitable[httpx.Response]],
    backend_name: str,
    *,
    http: Optional[httpx.AsyncClient] = None,
    validator: Optional[Callable[[httpx.Response], None]] = None,
    max_attempts: int = 3,
    delay: float = 0.5,
    timeout: float = 5.0,
) -> httpx.Response:
    """Run ``call`` with a bounded exponential backoff.

    Validation failures (the provider answered and said no) are not retried.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            if http is not None:
                res = await call(http)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    res = await call(client)
        except httpx.HTTPError as exc:
            if attempt == max_attempts:
                raise TransportError(f"{backend_name} unreachable: {exc}") from exc
            logger.warning("%s attempt %s failed: %s", backend_name, attempt, exc)
            await asyncio.sleep(delay)
            delay *= 2
            continue
        if validator:
            validator(res)
        else:
            res.raise_for_status()
        return res
    raise TransportError(f"{backend_name} gave up")  # pragma: no cover
