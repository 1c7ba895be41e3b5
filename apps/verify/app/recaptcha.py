import logging

import httpx

from .config import settings

logger = logging.getLogger("pediahelp.recaptcha")


async def verify_recaptcha(token: str, remote_ip: str | None = None) -> bool:
    """Check a reCAPTCHA token against the siteverify endpoint.

    Any transport or decoding problem counts as a failed check.
    """
    if not settings.RECAPTCHA_SECRET:
        if settings.DEV_MODE:
            logger.warning("RECAPTCHA_SECRET not set; accepting token in dev mode")
            return True
        logger.error("Captcha verification service is not configured")
        return False
    form = {"secret": settings.RECAPTCHA_SECRET, "response": token}
    if remote_ip:
        form["remoteip"] = remote_ip
    try:
        async with httpx.AsyncClient(timeout=settings.RECAPTCHA_TIMEOUT_SECS) as client:
            res = await client.post(settings.RECAPTCHA_VERIFY_URL, data=form)
            res.raise_for_status()
            data = res.json()
    except httpx.TimeoutException:
        logger.error("Captcha verification request timed out")
        return False
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Captcha verification request error: %s", exc)
        return False
    if not data.get("success"):
        logger.warning("Captcha verification failed: %s", data.get("error-codes"))
        return False
    return True
