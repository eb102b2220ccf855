import os

# Point settings at an in-memory database before any autocompliance import
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
os.environ["DEFAULT_TIMEZONE"] = "UTC"
os.environ["COMPLIANCE_METRICS_ENABLED"] = "false"
os.environ["COMPLIANCE_SMTP_SERVER"] = ""
os.environ["COMPLIANCE_FCM_PROJECT_ID"] = ""
os.environ["COMPLIANCE_FCM_CREDENTIALS_JSON"] = ""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from autocompliance.db.base import Base
from autocompliance.db.session import SessionLocal, engine, get_db
from autocompliance.compliance import models  # noqa: F401
from autocompliance.compliance.delivery import DeliveryError, DeliveryGateway


class RecordingSender:
    """Sender double that remembers every notification and can be told to fail"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def __call__(self, notification):
        self.calls.append(notification)
        if self.fail:
            raise DeliveryError("simulated outage")
        return "ok"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def senders():
    return {"email": RecordingSender(), "in_app": RecordingSender(), "push": RecordingSender(fail=True)}


@pytest.fixture()
def gateway(senders):
    return DeliveryGateway(senders)


@pytest.fixture()
def client(db, gateway):
    from autocompliance.main import app
    from autocompliance.compliance.api import get_delivery_gateway

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_delivery_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
