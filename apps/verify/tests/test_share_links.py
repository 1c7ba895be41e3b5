import httpx
import pytest

from app import share_links
from app.errors import AppError


@pytest.mark.parametrize(
    "link,code",
    [
        ("not a link", "invalid_link"),
        ("ftp://drive.google.com/x", "scheme_not_allowed"),
        ("javascript:alert(1)", "scheme_not_allowed"),
        ("https://example.com/cv.pdf", "host_not_allowed"),
    ],
)
def test_rejections(link, code):
    with pytest.raises(AppError) as exc:
        share_links.normalize_share_link(link)
    assert exc.value.code == code


def test_tracking_params_are_dropped():
    out = share_links.normalize_share_link(
        "https://docs.google.com/document/d/xyz/edit?usp=sharing&fbclid=123&resourcekey=abc"
    )
    assert out == "https://docs.google.com/document/d/xyz/edit?usp=sharing&resourcekey=abc"


def test_dropbox_forced_to_direct_download():
    assert share_links.normalize_share_link("https://dropbox.com/s/a/cv.pdf").endswith("?dl=1")
    kept = share_links.normalize_share_link("https://www.dropbox.com/scl/fi/a/cv.pdf?rlkey=k&dl=1")
    assert kept == "https://www.dropbox.com/scl/fi/a/cv.pdf?rlkey=k&dl=1"


def test_length_limit():
    share_links.check_link_length("https://1drv.ms/x")
    with pytest.raises(AppError):
        share_links.check_link_length("x" * 2049)


@pytest.mark.asyncio
async def test_probe_treats_errors_as_unreachable(monkeypatch):
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        share_links.httpx,
        "AsyncClient",
        lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw),
    )
    assert await share_links.probe_link("https://drive.google.com/file/d/a") is False
