import os
import tempfile

import fakeredis
import pytest


# Ensure sensible defaults for tests before app import
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("DB_URL", "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="pediahelp-"), "verify.db"))
os.environ.setdefault("AUTO_CREATE_SCHEMA", "true")
os.environ.setdefault("RECAPTCHA_SECRET", "")
os.environ.setdefault("SEND_TOKEN", "test-send-token")


class RecordingTransport:
    """Collects (to, code) pairs; raises when ``fail`` is set."""

    def __init__(self, fail: Exception | None = None):
        self.fail = fail
        self.sent = []

    async def send_code(self, to: str, code: str) -> None:
        if self.fail is not None:
            raise self.fail
        self.sent.append((to, code))


class RecordingMailer(RecordingTransport):
    def __init__(self, fail: Exception | None = None):
        super().__init__(fail)
        self.emails = []

    async def send_email(self, to, subject, text, html_body=None):
        if self.fail is not None:
            raise self.fail
        self.emails.append({"to": to, "subject": subject, "text": text})


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_async(fake_server):
    return fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def redis_sync(fake_server):
    """Synchronous view of the same data, for assertions from the test thread."""
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def transports():
    from pediahelp_shared import Channel

    return {
        Channel.EMAIL: RecordingTransport(),
        Channel.SMS: RecordingTransport(),
        Channel.WHATSAPP: RecordingTransport(),
    }


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def fixed_code(monkeypatch):
    code = "482913"
    monkeypatch.setattr("pediahelp_shared.otp.generate_otp_code", lambda: code)
    return code


@pytest.fixture
def captcha(monkeypatch):
    """reCAPTCHA stand-in; flip ``captcha.ok`` to make it reject."""

    class _Captcha:
        ok = True
        calls = 0

    async def _verify(token, remote_ip=None):
        _Captcha.calls += 1
        return _Captcha.ok

    monkeypatch.setattr("app.recaptcha.verify_recaptcha", _verify)
    return _Captcha


@pytest.fixture
def client(redis_async, transports, mailer, captcha):
    from fastapi.testclient import TestClient
    from app.main import create_app

    app = create_app(redis=redis_async, transports=transports, mailer=mailer)
    with TestClient(app) as c:
        yield c
