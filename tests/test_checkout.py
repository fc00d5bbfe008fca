import re
from unittest import mock

import pytest
import stripe

from alianah.models import Donor, Order, SponsorshipProjectCountry
from alianah.models.mixins import STATUS_COMPLETED, STATUS_PENDING
from alianah.services.checkout import compute_fees, generate_order_number
from alianah.services.portal_tokens import create_portal_token

INTENT = {"id": "pi_new", "object": "payment_intent", "client_secret": "pi_new_secret_abc"}
SESSION = {"id": "cs_new", "object": "checkout.session", "url": "https://checkout.stripe.com/c/pay/cs_new"}

DONOR = {
    "firstName": "Yusuf",
    "lastName": "Khan",
    "email": "Yusuf@Example.com",
    "phone": "07700 900123",
    "postcode": "E1 6AN",
    "giftAid": True,
}


def _appeal_item(appeal, **extra):
    item = {"appealId": appeal.id, "appealTitle": appeal.title, "frequency": "ONE_OFF", "amountPence": 2000}
    item.update(extra)
    return item


def _water_item(project, country, amount=3000):
    return {
        "waterProjectId": project.id,
        "waterProjectCountryId": country.id,
        "appealTitle": "Water Pump",
        "frequency": "ONE_OFF",
        "amountPence": amount,
        "plaqueName": "Maryam",
    }


# -----------------------------------------------------------------------------
# Pure helpers
# -----------------------------------------------------------------------------
@pytest.mark.parametrize(
    "subtotal,cover,expected",
    [(2000, True, 44), (2000, False, 0), (0, True, 0), (125, True, 22)],
)
def test_compute_fees(subtotal, cover, expected):
    assert compute_fees(subtotal, cover) == expected


def test_order_numbers_use_charity_prefix(app):
    assert re.fullmatch(r"786-1\d{8}", generate_order_number())


# -----------------------------------------------------------------------------
# Express checkout
# -----------------------------------------------------------------------------
def test_express_checkout_creates_pending_order_and_intent(client, db, appeal):
    with mock.patch("stripe.PaymentIntent.create", return_value=INTENT) as create:
        resp = client.post(
            "/api/checkout/express",
            json={"email": "new@example.com", "coverFees": True, "items": [_appeal_item(appeal)]},
        )

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["paymentClientSecret"] == "pi_new_secret_abc"
    assert body["paymentIntentId"] == "pi_new"

    order = db.session.get(Order, body["orderId"])
    assert order.status == STATUS_PENDING
    assert order.order_number == body["orderNumber"]
    assert (order.subtotal_pence, order.fees_pence, order.total_pence) == (2000, 44, 2044)
    assert (order.donor_first_name, order.donor_last_name) == ("Express", "Donor")

    kwargs = create.call_args.kwargs
    assert kwargs["amount"] == 2044
    assert kwargs["currency"] == "gbp"
    assert kwargs["metadata"]["orderNumber"] == order.order_number
    assert kwargs["idempotency_key"] == f"express-{order.order_number}"


def test_express_checkout_reuses_known_donor_name(client, db, appeal):
    db.session.add(Donor(email="yusuf@example.com", first_name="Yusuf", last_name="Khan"))
    db.session.commit()

    with mock.patch("stripe.PaymentIntent.create", return_value=INTENT):
        resp = client.post("/api/checkout/express", json={"email": "yusuf@example.com", "items": [_appeal_item(appeal)]})

    order = db.session.get(Order, resp.get_json()["orderId"])
    assert order.donor_name == "Yusuf Khan"
    assert db.session.query(Donor).count() == 1


def test_express_checkout_rejects_recurring_items(client, db, appeal):
    with mock.patch("stripe.PaymentIntent.create") as create:
        resp = client.post(
            "/api/checkout/express",
            json={"email": "new@example.com", "items": [_appeal_item(appeal, frequency="MONTHLY")]},
        )
    assert resp.status_code == 400
    assert "one-off" in resp.get_json()["error"]
    create.assert_not_called()
    assert db.session.query(Order).count() == 0


@pytest.mark.parametrize(
    "payload,message",
    [
        ({"email": "not-an-email"}, "valid email"),
        ({"email": "a@example.com", "items": []}, "Basket is empty"),
        ({"email": "a@example.com", "subtotalPence": 1999}, "subtotalPence"),
    ],
)
def test_express_checkout_validation(client, appeal, payload, message):
    payload.setdefault("items", [_appeal_item(appeal)])
    resp = client.post("/api/checkout/express", json=payload)
    assert resp.status_code == 400
    assert message in resp.get_json()["error"]


def test_water_item_price_must_match_country(client, water):
    project, country = water
    resp = client.post(
        "/api/checkout/express",
        json={"email": "a@example.com", "items": [_water_item(project, country, amount=2500)]},
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Water project amount does not match selected country price"


def test_sponsorship_country_must_match_project_type(client, db, sponsorship):
    project, _ = sponsorship
    other = SponsorshipProjectCountry(project_type="FAMILIES", country="Yemen", price_pence=5000)
    db.session.add(other)
    db.session.commit()

    resp = client.post(
        "/api/checkout/express",
        json={
            "email": "a@example.com",
            "items": [
                {
                    "sponsorshipProjectId": project.id,
                    "sponsorshipCountryId": other.id,
                    "appealTitle": "Orphan Sponsorship",
                    "frequency": "ONE_OFF",
                    "amountPence": 5000,
                }
            ],
        },
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Sponsorship country does not match project type"


def test_stripe_failure_maps_to_502_and_keeps_nothing(client, db, appeal):
    with mock.patch("stripe.PaymentIntent.create", side_effect=stripe.APIConnectionError("network down")):
        resp = client.post("/api/checkout/express", json={"email": "a@example.com", "items": [_appeal_item(appeal)]})
    assert resp.status_code == 502
    assert db.session.query(Order).count() == 0


def test_non_object_body_is_rejected(client):
    resp = client.post("/api/checkout/express", json=["not", "an", "object"])
    assert resp.status_code == 400
    assert "request_id" in resp.get_json()


# -----------------------------------------------------------------------------
# Hosted Checkout Session
# -----------------------------------------------------------------------------
def test_one_off_checkout_session(client, db, appeal, water):
    project, country = water
    with mock.patch("stripe.checkout.Session.create", return_value=SESSION) as create:
        resp = client.post(
            "/api/checkout",
            json={"donor": DONOR, "items": [_appeal_item(appeal), _water_item(project, country)], "subtotalPence": 5000},
        )

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["checkoutUrl"] == SESSION["url"]
    assert body["sessionId"] == "cs_new"

    params = create.call_args.kwargs
    assert params["mode"] == "payment"
    assert params["customer_email"] == "yusuf@example.com"
    assert params["payment_intent_data"]["metadata"]["orderNumber"] == body["orderNumber"]
    assert params["success_url"].startswith(f"https://donate.example.org/success/{body['orderId']}")
    assert params["cancel_url"] == f"https://donate.example.org/checkout?resume={body['orderNumber']}"
    assert [li["price_data"]["unit_amount"] for li in params["line_items"]] == [2000, 3000]

    donor = db.session.query(Donor).one()
    assert donor.email == "yusuf@example.com"
    assert donor.phone == "07700 900123"
    order = db.session.get(Order, body["orderId"])
    assert order.gift_aid is True
    assert len(order.items) == 2


def test_recurring_checkout_session_uses_subscription_mode(client, appeal):
    with mock.patch("stripe.checkout.Session.create", return_value=SESSION) as create:
        resp = client.post(
            "/api/checkout",
            json={"donor": dict(DONOR, coverFees=True), "items": [_appeal_item(appeal, frequency="MONTHLY")]},
        )

    assert resp.status_code == 200
    params = create.call_args.kwargs
    assert params["mode"] == "subscription"
    assert params["line_items"][0]["price_data"]["recurring"] == {"interval": "month"}
    assert params["line_items"][-1]["price_data"]["product_data"]["name"] == "Transaction fees"
    assert params["subscription_data"]["metadata"]["orderNumber"] == resp.get_json()["orderNumber"]
    assert "payment_intent_data" not in params


def test_monthly_and_yearly_cannot_be_mixed(client, appeal):
    resp = client.post(
        "/api/checkout",
        json={
            "donor": DONOR,
            "items": [_appeal_item(appeal, frequency="MONTHLY"), _appeal_item(appeal, frequency="YEARLY")],
        },
    )
    assert resp.status_code == 400


def test_checkout_requires_donor_names(client, appeal):
    resp = client.post("/api/checkout", json={"donor": {"email": "a@example.com"}, "items": [_appeal_item(appeal)]})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "First and last name are required"


# -----------------------------------------------------------------------------
# Status, resume, confirm
# -----------------------------------------------------------------------------
def test_order_status(client, appeal, order_factory):
    order = order_factory([{"appeal_id": appeal.id, "amount_pence": 2000}])
    resp = client.get(f"/api/checkout/order/{order.id}")
    assert resp.get_json() == {"status": STATUS_PENDING, "orderNumber": order.order_number}
    assert client.get("/api/checkout/order/9999").status_code == 404


def test_resume_returns_basket_for_unfinished_order(client, appeal, order_factory):
    order = order_factory([{"appeal_id": appeal.id, "appeal_title": "Gaza Emergency", "amount_pence": 2000}])
    resp = client.get(f"/api/checkout/resume?orderNumber={order.order_number}")
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["items"][0]["appealTitle"] == "Gaza Emergency"
    assert body["items"][0]["amountPence"] == 2000
    assert body["donor"]["email"] == "yusuf@example.com"


def test_resume_rejects_completed_and_unknown_orders(client, appeal, order_factory):
    order = order_factory([{"appeal_id": appeal.id, "amount_pence": 2000}], status=STATUS_COMPLETED)
    assert client.get(f"/api/checkout/resume?orderNumber={order.order_number}").status_code == 400
    assert client.get("/api/checkout/resume?orderNumber=786-199999999").status_code == 404
    assert client.get("/api/checkout/resume").status_code == 400


def test_confirm_finalizes_paid_intent(client, db, appeal, order_factory):
    order = order_factory([{"appeal_id": appeal.id, "amount_pence": 2000}])
    intent = {"id": "pi_1", "status": "succeeded", "metadata": {"orderNumber": order.order_number}}

    with mock.patch("stripe.PaymentIntent.retrieve", return_value=intent):
        resp = client.post("/api/checkout/confirm", json={"orderNumber": order.order_number, "paymentIntentId": "pi_1"})

    assert resp.get_json() == {"success": True, "orderNumber": order.order_number}
    assert db.session.get(Order, order.id).status == STATUS_COMPLETED


def test_confirm_rejects_foreign_or_unpaid_intent(client, db, appeal, order_factory):
    order = order_factory([{"appeal_id": appeal.id, "amount_pence": 2000}])
    foreign = {"id": "pi_1", "status": "succeeded", "metadata": {"orderNumber": "786-100000077"}}
    unpaid = {"id": "pi_1", "status": "requires_payment_method", "metadata": {"orderNumber": order.order_number}}
    body = {"orderNumber": order.order_number, "paymentIntentId": "pi_1"}

    with mock.patch("stripe.PaymentIntent.retrieve", return_value=foreign):
        assert client.post("/api/checkout/confirm", json=body).status_code == 400
    with mock.patch("stripe.PaymentIntent.retrieve", return_value=unpaid):
        assert client.post("/api/checkout/confirm", json=body).status_code == 400
    assert db.session.get(Order, order.id).status == STATUS_PENDING


def test_confirm_rejects_intent_without_order_number(client, db, appeal, order_factory, outbox):
    order = order_factory([{"appeal_id": appeal.id, "amount_pence": 2000}])
    stray = {"id": "pi_other", "status": "succeeded", "metadata": {}, "amount": 50}

    with mock.patch("stripe.PaymentIntent.retrieve", return_value=stray):
        resp = client.post("/api/checkout/confirm", json={"orderNumber": order.order_number, "paymentIntentId": "pi_other"})

    assert resp.status_code == 400
    assert db.session.get(Order, order.id).status == STATUS_PENDING
    assert outbox == []


def test_confirm_subscription(client, db, appeal, order_factory):
    order = order_factory([{"appeal_id": appeal.id, "frequency": "MONTHLY", "amount_pence": 1000}])
    sub = {
        "id": "sub_9",
        "metadata": {"orderNumber": order.order_number},
        "latest_invoice": {"status": "paid"},
        "customer": {"id": "cus_1", "email": "yusuf@example.com"},
    }
    with mock.patch("stripe.Subscription.retrieve", return_value=sub) as retrieve:
        resp = client.post("/api/checkout/confirm", json={"orderNumber": order.order_number, "subscriptionId": "sub_9"})

    assert resp.status_code == 200
    assert retrieve.call_args.args == ("sub_9",)
    assert db.session.get(Order, order.id).status == STATUS_COMPLETED


# -----------------------------------------------------------------------------
# Manage-subscription portal
# -----------------------------------------------------------------------------
def test_portal_session_for_valid_token(client, app):
    token = create_portal_token("yusuf@example.com")
    with mock.patch("stripe.Customer.list", return_value={"data": [{"id": "cus_1"}]}) as list_customers, mock.patch(
        "stripe.billing_portal.Session.create", return_value={"url": "https://billing.stripe.com/p/session/x"}
    ) as create:
        resp = client.post("/api/stripe/portal-session", json={"token": token})

    assert resp.get_json() == {"url": "https://billing.stripe.com/p/session/x"}
    list_customers.assert_called_once_with(email="yusuf@example.com", limit=1)
    assert create.call_args.kwargs["customer"] == "cus_1"


def test_portal_session_rejects_bad_token(client):
    resp = client.post("/api/stripe/portal-session", json={"token": "tampered"})
    assert resp.status_code == 401


def test_portal_session_without_customer(client, app):
    token = create_portal_token("nobody@example.com")
    with mock.patch("stripe.Customer.list", return_value={"data": []}):
        resp = client.post("/api/stripe/portal-session", json={"token": token})
    assert resp.status_code == 404
