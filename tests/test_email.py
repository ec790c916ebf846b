import smtplib
from types import SimpleNamespace

import pytest
import requests

from rsizevideo import notify
from rsizevideo.config import MB, Settings
from rsizevideo.notify import Notifier

JOB = {
    "id": "f" * 32,
    "filename": "clip-rsizevideo-com.mp4",
    "originalSize": 50 * MB,
    "newSize": 10 * MB,
    "reductionPercentage": 80.0,
    "compressionTime": 90.0,
}


class DummySMTP:
    sent = []

    def __init__(self, host, port, *args, **kwargs):
        self.host = host
        self.port = port

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def send_message(self, message):
        DummySMTP.sent.append(message)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def dummy_smtp(monkeypatch):
    DummySMTP.sent = []
    monkeypatch.setattr(
        notify,
        "smtplib",
        SimpleNamespace(SMTP=DummySMTP, SMTP_SSL=DummySMTP, SMTPException=smtplib.SMTPException),
    )
    return DummySMTP


def _smtp_settings(**kw):
    return Settings(
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="user",
        smtp_pass="pass",
        sender_email="contact@rsizevideo.com",
        frontend_url="https://rsizevideo.com",
        **kw,
    )


@pytest.mark.asyncio
async def test_send_email_sets_headers(dummy_smtp):
    sent = await Notifier(_smtp_settings()).notify_ready("recipient@example.com", JOB)
    assert sent is True

    msg = dummy_smtp.sent[0]
    assert msg["To"] == "recipient@example.com"
    assert msg["Auto-Submitted"] == "auto-generated"
    assert msg["X-Auto-Response-Suppress"] == "All"
    assert msg["Reply-To"] == "no-reply@rsizevideo.com"

    text = msg.get_body(preferencelist=("plain",)).get_content()
    assert "https://rsizevideo.com/download/" + "f" * 32 in text
    assert "80.00%" in text
    assert "50.00 MB -> 10.00 MB" in text
    assert "1.5 minutes" in text
    assert "24 hours" in text
    assert msg.get_body(preferencelist=("html",)) is not None


def test_mailgun_used_when_configured(monkeypatch, dummy_smtp):
    recorded = {}

    def fake_post(url, auth=None, data=None, timeout=None):
        recorded.update(url=url, auth=auth, data=data)
        return SimpleNamespace(raise_for_status=lambda: None)

    monkeypatch.setattr(notify.requests, "post", fake_post)
    settings = _smtp_settings(mailgun_key="key", mailgun_domain="mg.example.com")
    assert Notifier(settings).send_ready_email("a@example.com", JOB) is True

    assert recorded["url"] == "https://api.mailgun.net/v3/mg.example.com/messages"
    assert recorded["auth"] == ("api", "key")
    assert recorded["data"]["to"] == ["a@example.com"]
    assert "clip-rsizevideo-com.mp4" in recorded["data"]["html"]
    assert dummy_smtp.sent == []


def test_mailgun_failure_falls_back_to_smtp(monkeypatch, dummy_smtp):
    def failing_post(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(notify.requests, "post", failing_post)
    settings = _smtp_settings(mailgun_key="key", mailgun_domain="mg.example.com")
    assert Notifier(settings).send_ready_email("a@example.com", JOB) is True
    assert len(dummy_smtp.sent) == 1


def test_no_transport_configured():
    notifier = Notifier(Settings())
    assert notifier.enabled is False
    assert notifier.send_ready_email("a@example.com", JOB) is False
