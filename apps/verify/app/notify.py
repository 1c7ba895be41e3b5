import html
import logging
from typing import Optional

from .config import settings

logger = logging.getLogger("pediahelp.verify")


def receiver_for(kind: str) -> str:
    if kind == "careers":
        return settings.CAREERS_RECEIVER or settings.MAIL_RECEIVER
    if kind == "review":
        return settings.REVIEWS_RECEIVER or settings.MAIL_RECEIVER
    return settings.MAIL_RECEIVER


def _render(fields: dict) -> tuple[str, str]:
    rows = [(label, value) for label, value in fields.items() if value not in (None, "")]
    text = "\n".join(f"{label}: {value}" for label, value in rows)
    cells = "".join(
        f"<tr><td><strong>{html.escape(label)}</strong></td><td>{html.escape(str(value))}</td></tr>"
        for label, value in rows
    )
    return text, f"<table>{cells}</table>"


async def send_notification(mailer, kind: str, subject: str, fields: dict, to: Optional[str] = None) -> str:
    """Email the site inbox about a submission.

    Returns ``sent``, ``failed`` or ``skipped`` (no receiver configured);
    never raises.
    """
    to = to or receiver_for(kind)
    if not to or mailer is None:
        logger.info("Notification for %s skipped: no receiver", kind)
        return "skipped"
    text, body = _render(fields)
    try:
        await mailer.send_email(to, f"[{settings.BRAND_NAME}] {subject}", text, body)
    except Exception as exc:
        logger.error("Notification for %s failed: %s", kind, exc)
        return "failed"
    return "sent"
