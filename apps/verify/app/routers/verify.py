import asyncio
import logging
import re
import secrets
import time

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status

from pediahelp_shared import (
    Channel,
    OTPError,
    RateLimitBackendError,
    RateLimitedError,
    Scope,
    VerifyError,
    bump_rate_or_throw,
    hash_code,
    is_email,
    is_phone,
    now_sec,
)
from pediahelp_shared import otp as otp_lib

from .. import recaptcha
from ..config import settings
from ..errors import AppError
from ..otp_runtime import (
    OTP_VERIFY,
    client_ip,
    deliver_otp,
    dispatch_otp_in_background,
    get_redis,
    get_store,
    get_transports,
)
from ..schemas import SendOtpIn, VerifyCheckIn, VerifyStartIn


router = APIRouter(prefix="/api", tags=["verify"])
logger = logging.getLogger("pediahelp.verify")

_CODE_RE = re.compile(r"^\d{6}$")


def _epoch_ms(value):
    """Client form-open time in epoch ms, or None when absent or not numeric."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_enum(enum_cls, value: str):
    try:
        return enum_cls((value or "").strip().lower())
    except ValueError:
        raise AppError("bad_request")


async def _captcha_ok(token: str, ip: str) -> bool:
    try:
        return await asyncio.wait_for(
            recaptcha.verify_recaptcha(token, ip),
            timeout=settings.RECAPTCHA_TIMEOUT_SECS,
        )
    except asyncio.TimeoutError:
        logger.warning("reCAPTCHA check timed out after %ss", settings.RECAPTCHA_TIMEOUT_SECS)
        return False


async def _bump(redis, key: str, max_hits: int) -> None:
    try:
        await bump_rate_or_throw(redis, key, settings.RL_WINDOW_SECS, max_hits)
    except RateLimitBackendError as exc:
        # counter store down: let the request through rather than lock everyone out
        logger.error("ratelimit_soft_fail key=%s: %s", key, exc)


@router.post("/verify/start")
async def verify_start(
    payload: VerifyStartIn,
    request: Request,
    background_tasks: BackgroundTasks,
    redis=Depends(get_redis),
    store=Depends(get_store),
    transports=Depends(get_transports),
):
    t0 = time.monotonic()
    identifier = payload.identifier.strip() if isinstance(payload.identifier, str) else ""
    if not identifier or not (is_email(identifier) or is_phone(identifier)):
        raise AppError("bad_identifier")
    if not payload.recaptcha_token:
        raise AppError("no_recaptcha")
    if payload.honeypot:
        logger.info("Honeypot tripped on verify/start")
        raise AppError("bot_detected")
    started_at = _epoch_ms(payload.started_at)
    if started_at and time.time() * 1000 - started_at < settings.START_MIN_DELAY_MS:
        raise AppError("too_fast")
    scope = _parse_enum(Scope, payload.scope)
    channel = _parse_enum(Channel, payload.channel)
    if settings.EMAIL_ONLY:
        channel = Channel.EMAIL

    ip = client_ip(request)
    logger.info("[verify/start] begin scope=%s channel=%s", scope.value, channel.value)
    try:
        captcha_ok, _, _ = await asyncio.gather(
            _captcha_ok(payload.recaptcha_token, ip),
            _bump(redis, f"otp:ip:{ip}", settings.RL_IP_MAX),
            _bump(redis, f"otp:id:{identifier.lower()}", settings.RL_ID_MAX),
        )
        if not captcha_ok:
            raise AppError("recaptcha_failed")
        logger.info("[verify/start] guards_ok +%dms", (time.monotonic() - t0) * 1000)

        session_id = otp_lib.generate_session_id()
        code = otp_lib.generate_otp_code()
        expires_at = now_sec() + settings.OTP_TTL_SECS
        await store.create_session(
            session_id,
            identifier=identifier,
            scope=scope.value,
            otp_hash=hash_code(code),
            expires_at=expires_at,
            ip=ip,
        )
        if settings.OTP_STASH_PLAIN_CODE:
            await store.stash_plain_code(session_id, code, settings.OTP_PLAIN_CODE_TTL_SECS, expires_at)
        logger.info("[verify/start] session_saved sid=%s", session_id)
    except RateLimitedError as exc:
        raise AppError(
            exc.args[0],
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(exc.retry_after)} if exc.retry_after else None,
        )
    except AppError:
        raise
    except Exception:
        logger.exception("[verify/start] failed")
        raise AppError("start_failed")

    background_tasks.add_task(
        dispatch_otp_in_background, store, transports, session_id, identifier, code, channel
    )
    logger.info("[verify/start] queued sid=%s +%dms", session_id, (time.monotonic() - t0) * 1000)
    return {"sessionId": session_id, "queued": True}


@router.post("/verify/check")
async def verify_check(payload: VerifyCheckIn, store=Depends(get_store)):
    code = (payload.otp or payload.code or "").strip()
    if not payload.session_id or not _CODE_RE.match(code):
        raise AppError("bad_request")
    try:
        result = await store.verify_and_bump(payload.session_id, code)
    except OTPError as exc:
        logger.error("verify/check failed sid=%s: %s", payload.session_id, exc)
        OTP_VERIFY.labels("error").inc()
        raise AppError("verify_failed", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    if not result.ok:
        OTP_VERIFY.labels(result.error.value).inc()
        if result.error == VerifyError.TOO_MANY_ATTEMPTS:
            raise AppError(result.error.value, status_code=status.HTTP_429_TOO_MANY_REQUESTS)
        raise AppError(result.error.value)
    OTP_VERIFY.labels("ok").inc()
    return {"ok": True, "scope": result.scope}


def _require_send_token(request: Request) -> None:
    auth = request.headers.get("authorization", "")
    token = auth[7:] if auth.startswith("Bearer ") else ""
    if not token or not settings.SEND_TOKEN or not secrets.compare_digest(token, settings.SEND_TOKEN):
        logger.warning("[internal/send-otp] unauthorized")
        raise AppError("unauthorized", status_code=status.HTTP_401_UNAUTHORIZED)


@router.post("/internal/send-otp", dependencies=[Depends(_require_send_token)])
async def send_otp_now(payload: SendOtpIn, store=Depends(get_store), transports=Depends(get_transports)):
    """Synchronous resend using the briefly stashed plain code."""
    identifier = (payload.identifier or "").strip()
    if not payload.session_id or not identifier:
        raise AppError("bad_request")
    channel = Channel.EMAIL if settings.EMAIL_ONLY else _parse_enum(Channel, payload.channel)
    s = await store.get_session(payload.session_id)
    if s is None:
        raise AppError("invalid_session")
    if s.identifier != identifier:
        raise AppError("bad_request")
    code = await store.pop_plain_code(payload.session_id)
    if not code:
        logger.error("[internal/send-otp] code_not_available sid=%s", payload.session_id)
        raise AppError("code_not_available")
    try:
        used = await deliver_otp(store, transports, payload.session_id, identifier, code, channel)
    except Exception as exc:
        logger.error("[internal/send-otp] send failed sid=%s: %s", payload.session_id, exc)
        raise AppError("send_failed", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return {"ok": True, "channelUsed": used.value}
