from __future__ import annotations

import logging
from typing import Dict

from fastapi import Request
from prometheus_client import Counter

from pediahelp_shared import (
    Channel,
    DeliveryError,
    LogBackend,
    LogMailer,
    Msg91SmsBackend,
    Msg91WhatsAppBackend,
    OtpSessionStore,
    OtpTransport,
    ResendMailer,
    mask_identifier,
    send_with_policy,
)

from .config import settings

logger = logging.getLogger("pediahelp.verify")

OTP_DISPATCH = Counter("otp_dispatch_total", "OTP dispatch attempts", ["channel", "outcome"])
OTP_VERIFY = Counter("otp_verify_total", "OTP verification outcomes", ["outcome"])


def build_mailer():
    if settings.RESEND_API_KEY and settings.RESEND_FROM:
        return ResendMailer(
            api_key=settings.RESEND_API_KEY,
            from_addr=settings.RESEND_FROM,
            reply_to=settings.RESEND_REPLY_TO,
            brand=settings.BRAND_NAME,
            code_minutes=settings.otp_minutes,
        )
    if not settings.DEV_MODE:
        logger.warning("Resend not configured; email notifications and email OTP are disabled")
    return LogMailer()


def build_transports(mailer) -> Dict[Channel, OtpTransport]:
    transports: Dict[Channel, OtpTransport] = {}
    if isinstance(mailer, ResendMailer) or settings.DEV_MODE:
        transports[Channel.EMAIL] = mailer
    if settings.MSG91_AUTH_KEY and settings.MSG91_SMS_TEMPLATE_ID:
        transports[Channel.SMS] = Msg91SmsBackend(
            auth_key=settings.MSG91_AUTH_KEY,
            template_id=settings.MSG91_SMS_TEMPLATE_ID,
            sender_id=settings.MSG91_SENDER_ID,
        )
    elif settings.DEV_MODE:
        transports[Channel.SMS] = LogBackend(channel="sms")
    whatsapp = Msg91WhatsAppBackend(
        auth_key=settings.MSG91_AUTH_KEY,
        template=settings.MSG91_WA_TEMPLATE,
        from_number=settings.MSG91_WHATSAPP_NUMBER,
    )
    if whatsapp.configured:
        transports[Channel.WHATSAPP] = whatsapp
    return transports


def get_store(request: Request) -> OtpSessionStore:
    return OtpSessionStore(
        request.app.state.redis,
        max_tries=settings.OTP_MAX_TRIES,
        ttl_margin_secs=settings.OTP_STORE_TTL_MARGIN_SECS,
    )


def get_redis(request: Request):
    return request.app.state.redis


def get_transports(request: Request) -> Dict[Channel, OtpTransport]:
    return request.app.state.transports


def get_mailer(request: Request):
    return request.app.state.mailer


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("cf-connecting-ip") or request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def deliver_otp(
    store: OtpSessionStore,
    transports: Dict[Channel, OtpTransport],
    session_id: str,
    identifier: str,
    code: str,
    channel: Channel,
) -> Channel:
    """Send the code over the channel policy and record the winning channel."""
    try:
        used = await send_with_policy(
            identifier,
            code,
            channel,
            transports,
            country_code=settings.DEFAULT_COUNTRY_CODE,
            email_only=settings.EMAIL_ONLY,
        )
    except DeliveryError:
        OTP_DISPATCH.labels(channel.value, "failed").inc()
        raise
    OTP_DISPATCH.labels(used.value, "sent").inc()
    await store.set_channel_used(session_id, used.value)
    return used


async def dispatch_otp_in_background(
    store: OtpSessionStore,
    transports: Dict[Channel, OtpTransport],
    session_id: str,
    identifier: str,
    code: str,
    channel: Channel,
) -> None:
    """Fire-and-forget wrapper: failures end up in the logs only."""
    try:
        used = await deliver_otp(store, transports, session_id, identifier, code, channel)
    except Exception as exc:
        logger.error(
            "[verify/start:bg] send failed sid=%s to=%s: %s",
            session_id,
            mask_identifier(identifier),
            exc,
        )
        return
    logger.info("[verify/start:bg] sent ok sid=%s via=%s", session_id, used.value)
