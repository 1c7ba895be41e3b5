import json
import time

from pediahelp_shared import Channel, TransportError


def _start(client, **overrides):
    body = {
        "identifier": "user@example.com",
        "scope": "contact",
        "recaptchaToken": "tok",
    }
    body.update(overrides)
    return client.post("/api/verify/start", json=body)


def _session_keys(redis_sync):
    return list(redis_sync.scan_iter("otp:sess:*"))


def test_start_check_and_consume(client, redis_sync, transports, fixed_code):
    r = _start(client)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["queued"] is True
    sid = body["sessionId"]

    # background dispatch ran after the response and recorded its channel
    assert transports[Channel.EMAIL].sent == [("user@example.com", fixed_code)]
    stored = json.loads(redis_sync.get(f"otp:sess:{sid}"))
    assert stored["channelUsed"] == "email"
    assert stored["scope"] == "contact"
    assert fixed_code not in redis_sync.get(f"otp:sess:{sid}")

    r = client.post("/api/verify/check", json={"sessionId": sid, "otp": fixed_code})
    assert r.status_code == 200
    assert r.json() == {"ok": True, "scope": "contact"}

    payload = {"sessionId": sid, "name": "Asha", "email": "user@example.com", "message": "Hello"}
    r = client.post("/api/contact/submit", json=payload)
    assert r.status_code == 200, r.text
    assert r.json()["ok"] is True

    r = client.post("/api/contact/submit", json=payload)
    assert r.status_code == 400
    assert r.json() == {"error": "already_used"}


def test_rate_limited_start_creates_no_session(client, redis_sync, monkeypatch):
    from app.config import settings

    monkeypatch.setattr(settings, "RL_IP_MAX", 1)
    assert _start(client).status_code == 200
    assert len(_session_keys(redis_sync)) == 1

    r = _start(client, identifier="other@example.com")
    assert r.status_code == 429
    assert r.json() == {"error": "RATE_LIMITED"}
    assert r.headers["Retry-After"] == str(settings.RL_WINDOW_SECS)
    assert len(_session_keys(redis_sync)) == 1


def test_identifier_limit_is_separate(client, monkeypatch):
    from app.config import settings

    monkeypatch.setattr(settings, "RL_ID_MAX", 1)
    assert _start(client).status_code == 200
    assert _start(client).status_code == 429
    assert _start(client, identifier="second@example.com").status_code == 200


def test_guard_rejections(client, redis_sync):
    assert _start(client, identifier="").json() == {"error": "bad_identifier"}
    assert _start(client, identifier="not-an-id").json() == {"error": "bad_identifier"}
    assert _start(client, identifier=9812345678).json() == {"error": "bad_identifier"}
    assert _start(client, identifier=None).json() == {"error": "bad_identifier"}
    assert _start(client, recaptchaToken="").json() == {"error": "no_recaptcha"}
    assert _start(client, honeypot="x").json() == {"error": "bot_detected"}
    r = _start(client, startedAt=time.time() * 1000)
    assert r.status_code == 400 and r.json() == {"error": "too_fast"}
    assert _start(client, scope="admin").json() == {"error": "bad_request"}
    assert _start(client, channel="pigeon").json() == {"error": "bad_request"}
    assert _session_keys(redis_sync) == []


def test_slow_enough_submission_passes(client):
    r = _start(client, startedAt=time.time() * 1000 - 5000)
    assert r.status_code == 200


def test_non_numeric_started_at_is_ignored(client):
    assert _start(client, startedAt="abc").status_code == 200
    assert _start(client, identifier="b@example.com", startedAt=str(time.time() * 1000)).json() == {"error": "too_fast"}


def test_failed_captcha_creates_no_session(client, redis_sync, captcha):
    captcha.ok = False
    r = _start(client)
    assert r.status_code == 400
    assert r.json() == {"error": "recaptcha_failed"}
    assert _session_keys(redis_sync) == []


def test_captcha_timeout_counts_as_failure(client, monkeypatch):
    import asyncio
    from app.config import settings

    async def _slow(token, remote_ip=None):
        await asyncio.sleep(1)
        return True

    monkeypatch.setattr("app.recaptcha.verify_recaptcha", _slow)
    monkeypatch.setattr(settings, "RECAPTCHA_TIMEOUT_SECS", 0.05)
    assert _start(client).json() == {"error": "recaptcha_failed"}


def test_delivery_failure_does_not_fail_start(client, redis_sync, transports):
    for t in transports.values():
        t.fail = TransportError("down")
    r = _start(client)
    assert r.status_code == 200
    stored = json.loads(redis_sync.get(f"otp:sess:{r.json()['sessionId']}"))
    assert stored["channelUsed"] is None


def test_forwarded_ip_is_recorded(client, redis_sync):
    r = client.post(
        "/api/verify/start",
        json={"identifier": "user@example.com", "recaptchaToken": "t"},
        headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1"},
    )
    stored = json.loads(redis_sync.get(f"otp:sess:{r.json()['sessionId']}"))
    assert stored["ip"] == "203.0.113.9"
    assert redis_sync.get("otp:ip:203.0.113.9") == "1"


def test_check_rejections(client, fixed_code):
    sid = _start(client).json()["sessionId"]
    assert client.post("/api/verify/check", json={"sessionId": sid, "otp": "12ab"}).json() == {"error": "bad_request"}
    assert client.post("/api/verify/check", json={"sessionId": "ghost", "otp": "000000"}).json() == {
        "error": "invalid_session"
    }
    for _ in range(5):
        r = client.post("/api/verify/check", json={"sessionId": sid, "code": "000000"})
        assert r.json() == {"error": "invalid_otp"}
    r = client.post("/api/verify/check", json={"sessionId": sid, "otp": fixed_code})
    assert r.status_code == 429
    assert r.json() == {"error": "too_many_attempts"}


def test_resend_requires_token(client):
    r = client.post("/api/internal/send-otp", json={"sessionId": "x", "identifier": "user@example.com"})
    assert r.status_code == 401
    r = client.post(
        "/api/internal/send-otp",
        json={"sessionId": "x", "identifier": "user@example.com"},
        headers={"Authorization": "Bearer wrong"},
    )
    assert r.status_code == 401


def test_resend_uses_stashed_code_once(client, transports, monkeypatch, fixed_code):
    from app.config import settings

    monkeypatch.setattr(settings, "OTP_STASH_PLAIN_CODE", True)
    monkeypatch.setattr(settings, "SEND_TOKEN", "test-send-token")
    sid = _start(client, identifier="9812345678").json()["sessionId"]
    headers = {"Authorization": "Bearer test-send-token"}
    body = {"sessionId": sid, "identifier": "9812345678", "channel": "sms"}

    r = client.post("/api/internal/send-otp", json=body, headers=headers)
    assert r.status_code == 200, r.text
    assert r.json() == {"ok": True, "channelUsed": "sms"}
    assert transports[Channel.SMS].sent[-1] == ("919812345678", fixed_code)

    r = client.post("/api/internal/send-otp", json=body, headers=headers)
    assert r.json() == {"error": "code_not_available"}


def test_resend_delivery_failure(client, transports, monkeypatch):
    from app.config import settings

    monkeypatch.setattr(settings, "OTP_STASH_PLAIN_CODE", True)
    monkeypatch.setattr(settings, "SEND_TOKEN", "test-send-token")
    sid = _start(client).json()["sessionId"]
    transports[Channel.EMAIL].fail = TransportError("down")
    r = client.post(
        "/api/internal/send-otp",
        json={"sessionId": sid, "identifier": "user@example.com", "channel": "email"},
        headers={"Authorization": "Bearer test-send-token"},
    )
    assert r.status_code == 500
    assert r.json() == {"error": "send_failed"}


def test_malformed_body_is_bad_request(client):
    r = client.post("/api/verify/start", content=b"not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json() == {"error": "bad_request"}


def test_health_and_metrics(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers["X-Request-ID"]
    _start(client)
    assert "otp_dispatch_total" in client.get("/metrics").text


def test_health_checks_db_off_the_loop(client, monkeypatch):
    calls = []

    def _ping():
        calls.append(True)

    monkeypatch.setattr("app.main._ping_db", _ping)
    assert client.get("/health").status_code == 200
    assert calls == [True]


def test_access_log_carries_error_code(client, caplog):
    import logging

    caplog.set_level(logging.INFO, logger="verify.request")
    _start(client, identifier="nope")
    entries = [json.loads(r.getMessage()) for r in caplog.records if r.name == "verify.request"]
    assert entries[-1]["path"] == "/api/verify/start"
    assert entries[-1]["status"] == 400
    assert entries[-1]["error"] == "bad_identifier"
    assert entries[-1]["ip"]

    client.get("/health")
    entries = [json.loads(r.getMessage()) for r in caplog.records if r.name == "verify.request"]
    assert "error" not in entries[-1]
