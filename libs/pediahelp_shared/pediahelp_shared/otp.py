from __future__ import annotations

import enum
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from redis.exceptions import WatchError

logger = logging.getLogger("pediahelp.otp")


class OTPError(Exception):
    """Base exception for OTP operations."""


class StoreContentionError(OTPError):
    """A session kept changing underneath a read-modify-write."""


class Scope(str, enum.Enum):
    CONTACT = "contact"
    CAREERS = "careers"
    REVIEW = "review"
    BLOG_COMMENT = "blog-comment"


class VerifyError(str, enum.Enum):
    INVALID_SESSION = "invalid_session"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    INVALID_OTP = "invalid_otp"


_SESSION_KEY = "otp:sess:{}"
_PLAIN_CODE_KEY = "otp:code:{}"
_MAX_WATCH_RETRIES = 8

# persisted (camelCase) name -> attribute name
_FIELD_NAMES = {
    "identifier": "identifier",
    "scope": "scope",
    "otpHash": "otp_hash",
    "expiresAt": "expires_at",
    "tries": "tries",
    "verified": "verified",
    "used": "used",
    "ip": "ip",
    "channelUsed": "channel_used",
    "createdAt": "created_at",
    "usedAt": "used_at",
}


def now_sec() -> int:
    return int(time.time())


def generate_otp_code() -> str:
    return f"{secrets.randbelow(10**6):06d}"


def generate_session_id(nbytes: int = 12) -> str:
    return secrets.token_hex(nbytes)


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


def _to_str(value: Optional[bytes | str]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode()
    return value


@dataclass
class Session:
    identifier: str
    scope: str
    otp_hash: str
    expires_at: int
    tries: int = 0
    verified: bool = False
    used: bool = False
    ip: Optional[str] = None
    channel_used: Optional[str] = None
    created_at: int = 0
    used_at: Optional[int] = None

    def is_expired(self, now: Optional[int] = None) -> bool:
        return (now if now is not None else now_sec()) > self.expires_at

    def to_json(self) -> str:
        return json.dumps({wire: getattr(self, attr) for wire, attr in _FIELD_NAMES.items()})

    @classmethod
    def from_json(cls, raw: bytes | str) -> "Session":
        data: Dict[str, Any] = json.loads(_to_str(raw))
        return cls(**{attr: data[wire] for wire, attr in _FIELD_NAMES.items() if wire in data})


@dataclass
class VerifyResult:
    ok: bool
    scope: Optional[str] = None
    error: Optional[VerifyError] = None


class OtpSessionStore:
    """Redis-backed OTP sessions, one JSON record per session id.

    Every mutation is a WATCH/MULTI read-modify-write of that record, so
    concurrent verifications cannot both slip under the try cap.
    """

    def __init__(self, redis, *, max_tries: int = 5, ttl_margin_secs: int = 900):
        self.redis = redis
        self.max_tries = max_tries
        self.ttl_margin_secs = ttl_margin_secs

    def _storage_ttl(self, expires_at: int) -> int:
        return max(expires_at - now_sec() + self.ttl_margin_secs, self.ttl_margin_secs)

    async def create_session(
        self,
        session_id: str,
        *,
        identifier: str,
        scope: str,
        otp_hash: str,
        expires_at: int,
        ip: Optional[str] = None,
    ) -> Session:
        session = Session(
            identifier=identifier,
            scope=scope,
            otp_hash=otp_hash,
            expires_at=expires_at,
            ip=ip,
            created_at=now_sec(),
        )
        await self.redis.set(
            _SESSION_KEY.format(session_id),
            session.to_json(),
            ex=self._storage_ttl(expires_at),
        )
        logger.debug("OTP session created sid=%s scope=%s", session_id, scope)
        return session

    async def get_session(self, session_id: str) -> Optional[Session]:
        raw = await self.redis.get(_SESSION_KEY.format(session_id))
        if raw is None:
            return None
        return Session.from_json(raw)

    async def delete_session(self, session_id: str) -> None:
        await self.redis.delete(_SESSION_KEY.format(session_id), _PLAIN_CODE_KEY.format(session_id))

    async def _update(self, session_id: str, mutate: Callable[[Session], Any]) -> Any:
        """Apply ``mutate`` to the stored session atomically.

        ``mutate`` returns ``(changed, result)``; the record is only written
        back when ``changed`` is true. Missing sessions yield ``mutate(None)``.
        """
        key = _SESSION_KEY.format(session_id)
        for _ in range(_MAX_WATCH_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    session = Session.from_json(raw) if raw is not None else None
                    changed, result = mutate(session)
                    if not changed or session is None:
                        return result
                    pipe.multi()
                    pipe.set(key, session.to_json(), ex=self._storage_ttl(session.expires_at))
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.debug("OTP session %s changed during update; retrying", session_id)
                    continue
        raise StoreContentionError(f"session {session_id} kept changing")

    async def verify_and_bump(self, session_id: str, code: str) -> VerifyResult:
        now = now_sec()
        submitted = hash_code(code or "")

        def _mutate(s: Optional[Session]):
            if s is None:
                return False, VerifyResult(ok=False, error=VerifyError.INVALID_SESSION)
            if s.is_expired(now):
                return False, VerifyResult(ok=False, error=VerifyError.EXPIRED)
            if s.used:
                return False, VerifyResult(ok=False, error=VerifyError.ALREADY_USED)
            s.tries += 1
            if s.tries > self.max_tries:
                return True, VerifyResult(ok=False, error=VerifyError.TOO_MANY_ATTEMPTS)
            if hmac.compare_digest(submitted, s.otp_hash):
                s.verified = True
                s.used_at = now
                return True, VerifyResult(ok=True, scope=s.scope)
            return True, VerifyResult(ok=False, error=VerifyError.INVALID_OTP)

        result = await self._update(session_id, _mutate)
        if not result.ok:
            logger.info("OTP verify rejected sid=%s reason=%s", session_id, result.error.value)
        return result

    async def mark_used(self, session_id: str) -> bool:
        """Flip ``used`` once. Returns True only for the call that flipped it."""
        now = now_sec()

        def _mutate(s: Optional[Session]):
            if s is None or s.used:
                return False, False
            s.used = True
            s.used_at = now
            return True, True

        return await self._update(session_id, _mutate)

    async def set_channel_used(self, session_id: str, channel: str) -> None:
        def _mutate(s: Optional[Session]):
            if s is None:
                return False, None
            s.channel_used = channel
            return True, None

        await self._update(session_id, _mutate)

    async def stash_plain_code(self, session_id: str, code: str, ttl_secs: int, expires_at: int) -> None:
        """Keep the raw code briefly for the resend path, never past expiry."""
        ttl = min(ttl_secs, expires_at - now_sec())
        if ttl <= 0:
            return
        await self.redis.set(_PLAIN_CODE_KEY.format(session_id), code, ex=ttl)

    async def pop_plain_code(self, session_id: str) -> Optional[str]:
        key = _PLAIN_CODE_KEY.format(session_id)
        pipe = self.redis.pipeline(transaction=True)
        pipe.get(key)
        pipe.delete(key)
        raw, _ = await pipe.execute()
        return _to_str(raw) or None
