import logging

from fastapi import status

from pediahelp_shared import OtpSessionStore, Scope, Session, now_sec

from .errors import AppError

logger = logging.getLogger("pediahelp.verify")


async def claim_session(store: OtpSessionStore, session_id: str, expected_scope: Scope) -> Session:
    """Validate a verified session for ``expected_scope`` and spend it.

    The session is marked used before the caller performs its write, so a
    failing write still leaves it spent.
    """
    s = await store.get_session(session_id)
    if s is None:
        raise AppError("invalid_session")
    if s.is_expired(now_sec()):
        raise AppError("expired")
    if not s.verified:
        raise AppError("not_verified")
    if s.used:
        raise AppError("already_used")
    if s.scope != expected_scope.value:
        logger.warning("Session %s scope=%s presented to %s", session_id, s.scope, expected_scope.value)
        raise AppError("wrong_scope", status_code=status.HTTP_403_FORBIDDEN)
    if not await store.mark_used(session_id):
        # lost a race with a concurrent claim
        raise AppError("already_used")
    return s
