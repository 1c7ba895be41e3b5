from .otp import (
    OTPError,
    StoreContentionError,
    Scope,
    Session,
    VerifyError,
    VerifyResult,
    OtpSessionStore,
    generate_otp_code,
    generate_session_id,
    hash_code,
    now_sec,
)
from .rate_limit import RATE_LIMITED, RateLimitedError, RateLimitBackendError, bump_rate_or_throw
from .channels import Channel, ChannelRejected, DeliveryError, candidate_channels, send_with_policy
from .sms_provider import LogBackend, Msg91SmsBackend, Msg91WhatsAppBackend, OtpTransport, TransportError
from .mailer import LogMailer, ResendMailer
from .env import env_bool, env_float, env_int, env_list
from .phone_utils import is_email, is_phone, mask_identifier, mask_phone, normalize_msisdn

__all__ = [
    "OTPError",
    "StoreContentionError",
    "Scope",
    "Session",
    "VerifyError",
    "VerifyResult",
    "OtpSessionStore",
    "generate_otp_code",
    "generate_session_id",
    "hash_code",
    "now_sec",
    "RATE_LIMITED",
    "RateLimitedError",
    "RateLimitBackendError",
    "bump_rate_or_throw",
    "Channel",
    "ChannelRejected",
    "DeliveryError",
    "candidate_channels",
    "send_with_policy",
    "LogBackend",
    "Msg91SmsBackend",
    "Msg91WhatsAppBackend",
    "OtpTransport",
    "TransportError",
    "LogMailer",
    "ResendMailer",
    "env_bool",
    "env_float",
    "env_int",
    "env_list",
    "is_email",
    "is_phone",
    "mask_identifier",
    "mask_phone",
    "normalize_msisdn",
]
