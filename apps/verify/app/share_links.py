import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from .errors import AppError

logger = logging.getLogger("pediahelp.verify")

MAX_LINK_LENGTH = 2048
PROBE_TIMEOUT_SECS = 4.5

# Preview/share links only; files are never downloaded.
ALLOW_HOSTS = {
    "drive.google.com",
    "docs.google.com",
    "www.dropbox.com",
    "dropbox.com",
    "onedrive.live.com",
    "1drv.ms",
    "box.com",
    "www.box.com",
    "storage.googleapis.com",
}
KEEP_PARAMS = {"id", "resourcekey", "dl", "usp", "rlkey"}
DROPBOX_HOSTS = {"www.dropbox.com", "dropbox.com"}


def check_link_length(link: str) -> None:
    if len(link) > MAX_LINK_LENGTH:
        raise AppError("link_too_long")


def normalize_share_link(link: str) -> str:
    """Validate a resume share link and return its cleaned form.

    Tracking parameters are dropped and Dropbox links are switched to a
    direct download (``dl=1``).
    """
    try:
        parts = urlsplit(link.strip())
        host = (parts.hostname or "").lower()
    except ValueError:
        raise AppError("invalid_link")
    if not parts.scheme:
        raise AppError("invalid_link")
    if parts.scheme.lower() not in ("http", "https"):
        raise AppError("scheme_not_allowed")
    if not host:
        raise AppError("invalid_link")
    if host not in ALLOW_HOSTS:
        raise AppError("host_not_allowed")

    params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k in KEEP_PARAMS]
    if host in DROPBOX_HOSTS:
        dl = next((v for k, v in params if k == "dl"), None)
        if dl in (None, "", "0"):
            params = [(k, v) for k, v in params if k != "dl"]
            params.append(("dl", "1"))
    return urlunsplit((parts.scheme.lower(), parts.netloc, parts.path, urlencode(params), parts.fragment))


async def probe_link(url: str, timeout: float = PROBE_TIMEOUT_SECS) -> bool:
    """Best-effort HEAD check; 2xx and 3xx both count as reachable."""
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            res = await client.head(url)
    except httpx.HTTPError as exc:
        logger.warning("link_head_failed url=%s: %s", url, exc)
        return False
    if res.status_code >= 400:
        logger.warning("link_head_failed url=%s status=%s", url, res.status_code)
        return False
    return True
