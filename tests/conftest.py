import hashlib
import hmac
import json
import time

import pytest

from alianah import create_app
from alianah.extensions import db as _db
from alianah.extensions import mail
from alianah.models import (
    Appeal,
    Fundraiser,
    Order,
    OrderItem,
    SponsorshipProject,
    SponsorshipProjectCountry,
    WaterProject,
    WaterProjectCountry,
)
from alianah.models.mixins import STATUS_PENDING, utcnow

TEST_WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def outbox(app):
    with mail.record_messages() as sent:
        yield sent


# -----------------------------------------------------------------------------
# Catalogue + order builders
# -----------------------------------------------------------------------------
@pytest.fixture
def appeal(db):
    row = Appeal(slug="gaza-emergency", title="Gaza Emergency")
    db.session.add(row)
    db.session.commit()
    return row


@pytest.fixture
def fundraiser(db, appeal):
    row = Fundraiser(
        appeal_id=appeal.id,
        slug="aminas-run",
        title="Amina's 10k Run",
        fundraiser_name="Amina",
        email="amina@example.com",
    )
    db.session.add(row)
    db.session.commit()
    return row


@pytest.fixture
def water(db):
    project = WaterProject(project_type="WATER_PUMP", location="Sylhet")
    country = WaterProjectCountry(project_type="WATER_PUMP", country="Bangladesh", price_pence=3000)
    db.session.add_all([project, country])
    db.session.commit()
    return project, country


@pytest.fixture
def sponsorship(db):
    project = SponsorshipProject(project_type="ORPHANS", location="Mogadishu")
    country = SponsorshipProjectCountry(project_type="ORPHANS", country="Somalia", price_pence=3500)
    db.session.add_all([project, country])
    db.session.commit()
    return project, country


def make_order(db, items, *, status=STATUS_PENDING, age=None, **fields):
    subtotal = sum(i["amount_pence"] for i in items)
    order = Order(
        order_number=fields.pop("order_number", "786-100000001"),
        status=status,
        subtotal_pence=subtotal,
        fees_pence=0,
        total_pence=subtotal,
        donor_first_name=fields.pop("donor_first_name", "Yusuf"),
        donor_last_name=fields.pop("donor_last_name", "Khan"),
        donor_email=fields.pop("donor_email", "yusuf@example.com"),
        **fields,
    )
    for data in items:
        data.setdefault("appeal_title", "Donation")
        order.items.append(OrderItem(**data))
    db.session.add(order)
    db.session.commit()
    if age is not None:
        order.created_at = utcnow() - age
        db.session.commit()
    return order


@pytest.fixture
def order_factory(db):
    def _make(items, **fields):
        return make_order(db, items, **fields)

    return _make


# -----------------------------------------------------------------------------
# Signed webhook deliveries
# -----------------------------------------------------------------------------
def sign_payload(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp=None) -> str:
    ts = int(timestamp if timestamp is not None else time.time())
    sig = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test_1") -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "livemode": False,
        "data": {"object": obj},
    }


@pytest.fixture
def post_event(client):
    def _post(event: dict, secret: str = TEST_WEBHOOK_SECRET, signature=None):
        payload = json.dumps(event)
        headers = {"Stripe-Signature": signature if signature is not None else sign_payload(payload, secret)}
        return client.post(
            "/api/webhooks/stripe",
            data=payload,
            headers=headers,
            content_type="application/json",
        )

    return _post
