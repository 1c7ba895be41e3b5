from __future__ import annotations

import enum
import logging
from typing import List, Mapping, Optional

from .otp import OTPError
from .phone_utils import is_email, is_phone, mask_identifier, normalize_msisdn
from .sms_provider import OtpTransport

logger = logging.getLogger("pediahelp.channels")


class Channel(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    AUTO = "auto"


class DeliveryError(OTPError):
    """Every candidate channel failed; ``__cause__`` holds the last failure."""


class ChannelRejected(OTPError):
    """The identifier cannot be carried by the channel (NOT_EMAIL, NOT_PHONE, ...)."""


def candidate_channels(identifier: str, channel: Channel, *, whatsapp_enabled: bool = True) -> List[Channel]:
    """Delivery order for ``identifier``.

    ``auto`` leads with the channel matching the identifier's shape and keeps
    the others as backups; an explicit channel is tried alone.
    """
    if channel != Channel.AUTO:
        return [channel]
    if is_phone(identifier) and not is_email(identifier):
        order = [Channel.SMS, Channel.WHATSAPP, Channel.EMAIL]
    else:
        order = [Channel.EMAIL, Channel.SMS, Channel.WHATSAPP]
    if not whatsapp_enabled:
        order.remove(Channel.WHATSAPP)
    return order


def _recipient_for(identifier: str, channel: Channel, country_code: str) -> str:
    if channel == Channel.EMAIL:
        if not is_email(identifier):
            raise ChannelRejected("NOT_EMAIL")
        return identifier.strip()
    if not is_phone(identifier):
        raise ChannelRejected("NOT_PHONE")
    return normalize_msisdn(identifier, country_code)


async def send_with_policy(
    identifier: str,
    code: str,
    channel: Channel,
    transports: Mapping[Channel, OtpTransport],
    *,
    country_code: str = "91",
    email_only: bool = False,
) -> Channel:
    """Deliver ``code`` over the first channel that accepts it.

    Raises DeliveryError when all candidates fail.
    """
    if email_only:
        channel = Channel.EMAIL
    candidates = candidate_channels(
        identifier,
        channel,
        whatsapp_enabled=Channel.WHATSAPP in transports,
    )
    last_err: Optional[BaseException] = None
    for ch in candidates:
        try:
            to = _recipient_for(identifier, ch, country_code)
            transport = transports.get(ch)
            if transport is None:
                raise ChannelRejected("CHANNEL_NOT_CONFIGURED")
            await transport.send_code(to, code)
        except Exception as exc:
            last_err = exc
            logger.warning("OTP via %s failed for %s: %s", ch.value, mask_identifier(identifier), exc)
            continue
        logger.info("OTP delivered via %s to %s", ch.value, mask_identifier(identifier))
        return ch
    if last_err is not None:
        raise DeliveryError(str(last_err) or "otp_delivery_failed") from last_err
    raise DeliveryError("otp_delivery_failed")
