import pytest

import db
import mailer
import settings


class Outbox:
    """Stands in for the mail transport and records what would have been sent."""

    def __init__(self):
        self.messages = []
        self.calls = 0
        self.fail_all = False
        self.fail_for = set()

    def send(self, to_email, subject, html, from_name=None):
        self.calls += 1
        if self.fail_all or to_email in self.fail_for:
            raise OSError("smtp unavailable")
        self.messages.append({"to": to_email, "subject": subject, "html": html, "from_name": from_name})

    def subjects(self):
        return [m["subject"] for m in self.messages]


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "ASYNC_EMAILS", False)
    monkeypatch.setattr(settings, "EMAIL_RETRY_DELAY", 0)
    monkeypatch.setattr(settings, "EMAIL_RETRY_ATTEMPTS", 3)
    monkeypatch.setattr(settings, "OWNER_EMAIL", "owner@example.com")
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "")
    monkeypatch.setattr(settings, "STRIPE_PUBLISHABLE_KEY", "")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    monkeypatch.setattr(settings, "PAYMENT_API_KEY", "devkey")
    monkeypatch.setattr(settings, "ADMIN_KEY", "")
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "")
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "secret")
    monkeypatch.setattr(settings, "ADMIN_PASSWORD_HASH", "")
    db.init_db()
    return tmp_path


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    box = Outbox()
    monkeypatch.setattr(mailer, "send_email", box.send)
    return box


@pytest.fixture
def app():
    from app import app as flask_app

    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield


CUSTOMER = {
    "customer_name": "Noura Saleh",
    "customer_email": "noura@example.com",
    "customer_phone": "0551234567",
    "city": "Jeddah",
    "address": "Al Rawdah St 12",
    "zip_code": "23435",
    "notes": "",
}


@pytest.fixture
def customer():
    return dict(CUSTOMER)
