import re

import pytest

import db
import settings


CHECKOUT_FORM = {
    "customer_name": "Noura Saleh",
    "customer_email": "noura@example.com",
    "customer_phone": "0551234567",
    "city": "Jeddah",
    "address": "Al Rawdah St 12",
}


def add_to_cart(client, pid=1, qty=1, size="M"):
    return client.post("/api/cart/add?lang=en", json={"product_id": pid, "qty": qty, "size": size})


def last_order_id(location):
    return re.search(r"(ORD\d{8})", location).group(1)


def test_home_page_renders_both_languages(client):
    assert "مياسه ستيل" in client.get("/").get_data(as_text=True)
    body = client.get("/?lang=en").get_data(as_text=True)
    assert "Mayasah Style" in body
    assert 'dir="ltr"' in body


def test_security_headers(client):
    resp = client.get("/health")
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert "default-src 'self'" in resp.headers["Content-Security-Policy"]
    assert resp.get_json()["ok"] is True


def test_cookie_banner_until_consent(client):
    assert 'id="cookie-banner"' in client.get("/").get_data(as_text=True)
    client.post("/consent", data={"choice": "reject"})
    assert 'id="cookie-banner"' not in client.get("/").get_data(as_text=True)


def test_product_page_404(client):
    assert client.get("/product/999").status_code == 404


def test_cart_add_checks_stock(client):
    assert add_to_cart(client, pid=999).status_code == 404
    resp = add_to_cart(client, pid=2, qty=31)
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Only 30 available"

    ok = add_to_cart(client, pid=2, qty=2, size="L")
    assert ok.get_json() == {"ok": True, "count": 2, "message": "Added to cart"}


def test_cart_update_and_remove(client):
    add_to_cart(client, pid=1, qty=1, size="S")
    resp = client.post("/api/cart/update", json={"key": "1:S", "qty": 3})
    assert resp.get_json()["totals"]["subtotal_cents"] == 25415 * 3
    assert client.post("/api/cart/update", json={"key": "1:S", "qty": 99}).status_code == 400
    assert client.post("/api/cart/remove", json={"key": "1:S"}).get_json()["count"] == 0


def test_checkout_with_empty_cart_is_rejected(client):
    resp = client.post("/checkout", data=dict(CHECKOUT_FORM, payment_method="cash"))
    assert resp.status_code == 302
    assert "/cart" in resp.headers["Location"]


def test_checkout_validation_error(client):
    add_to_cart(client)
    resp = client.post("/checkout?lang=en", data=dict(CHECKOUT_FORM, customer_email="bad", payment_method="cash"))
    assert resp.status_code == 400
    assert "Please enter a valid email address." in resp.get_data(as_text=True)
    assert db.get_product(1)["current_stock"] == 50


def test_cash_checkout_places_order_and_emails(client, outbox):
    add_to_cart(client, pid=1, qty=2)
    resp = client.post("/checkout?lang=en", data=dict(CHECKOUT_FORM, payment_method="cash"))

    assert resp.status_code == 302
    order_id = last_order_id(resp.headers["Location"])
    order = db.get_order(order_id)
    assert order["status"] == "pending"
    assert order["total_cents"] == 50830 + 7625
    assert db.get_product(1)["current_stock"] == 48
    assert outbox.subjects() == [f"Order Confirmation #{order_id}", f"New Order #{order_id}"]

    page = client.get(resp.headers["Location"])
    assert page.status_code == 200
    assert order_id in page.get_data(as_text=True)
    assert client.post("/api/cart/clear").get_json()["count"] == 0


def test_order_page_is_private(client):
    assert client.get("/order/ORD00000000").status_code == 404


def test_card_checkout_through_mock_gateway(client, outbox):
    add_to_cart(client, pid=2, qty=1)
    resp = client.post("/checkout?lang=en", data=dict(CHECKOUT_FORM, payment_method="card"))
    gateway_url = resp.headers["Location"]
    assert "/payment-hosted-mock/MSH" in gateway_url

    assert client.get(gateway_url).status_code == 200
    session_id = gateway_url.rsplit("/", 1)[-1]
    done = client.post(f"/payment-hosted-mock/{session_id}/callback", data={"result": "success"})

    assert done.status_code == 302
    assert "status=success" in done.headers["Location"]
    assert "transaction_id=MOCKTXN" in done.headers["Location"]
    order_id = last_order_id(done.headers["Location"])
    assert db.get_order(order_id)["status"] == "paid"
    assert outbox.subjects()[0] == f"Payment Confirmation - Order #{order_id}"
    assert client.get(done.headers["Location"]).status_code == 200


def test_declined_mock_payment_releases_stock(client):
    add_to_cart(client, pid=2, qty=3)
    gateway_url = client.post("/checkout", data=dict(CHECKOUT_FORM, payment_method="card")).headers["Location"]
    assert db.get_product(2)["current_stock"] == 27

    session_id = gateway_url.rsplit("/", 1)[-1]
    done = client.post(f"/payment-hosted-mock/{session_id}/callback", data={"result": "fail"})

    assert "status=failed" in done.headers["Location"]
    assert db.get_product(2)["current_stock"] == 30
    assert db.get_order(last_order_id(done.headers["Location"]))["status"] == "payment_failed"


def test_mock_gateway_email_failure_page(client, outbox):
    add_to_cart(client, pid=1)
    gateway_url = client.post("/checkout", data=dict(CHECKOUT_FORM, payment_method="card")).headers["Location"]
    outbox.fail_all = True
    done = client.post(gateway_url + "/callback", data={"result": "success"})
    assert done.status_code == 502


def test_payment_webhook_requires_api_key(client):
    payload = {"order_id": "ORD1", "transaction_id": "T1", "status": "failed"}
    rejected = client.post("/payment-webhook", json=payload)
    assert rejected.status_code == 403
    assert rejected.get_json()["message"] == "Invalid API key"
    resp = client.post("/payment-webhook", json=payload, headers={"X-API-Key": "devkey"})
    assert resp.status_code == 200
    assert resp.get_json()["recorded_as"] == "non-success"
    again = client.post("/payment-webhook?key=devkey", json=payload)
    assert again.get_json()["duplicate"] is True


def test_payment_webhook_missing_fields(client):
    resp = client.post("/payment-webhook", json={"order_id": "ORD1"}, headers={"X-API-Key": "devkey"})
    assert resp.status_code == 400


def test_stripe_webhook_disabled_without_secret(client):
    assert client.post("/webhook", data=b"{}").status_code == 400


def test_create_payment_session_api(client):
    assert client.post("/create-payment-session", json={"order_id": "ORD1"}).status_code == 400
    resp = client.post("/create-payment-session", json={"order_id": "ORD1", "amount": 344.5})
    body = resp.get_json()
    assert body["success"] is True
    assert db.get_session(body["sessionId"])["amount_cents"] == 34450


def test_mock_session_cannot_vouch_for_another_order(client):
    add_to_cart(client, pid=2, qty=2)
    victim = last_order_id(
        client.post("/checkout", data=dict(CHECKOUT_FORM, payment_method="card")).headers["Location"]
    )
    assert db.get_product(2)["current_stock"] == 28

    other = client.post("/create-payment-session", json={"order_id": "ORD99999999", "amount": 1}).get_json()
    resp = client.post(
        "/payment-webhook",
        json={"order_id": victim, "transaction_id": "T-X", "status": "failed", "sessionId": other["sessionId"]},
    )

    assert resp.status_code == 403
    assert db.get_order(victim)["status"] == "pending"
    assert db.get_product(2)["current_stock"] == 28


def test_mock_session_posts_for_its_own_order(client):
    created = client.post("/create-payment-session", json={"order_id": "ORD88888888", "amount": 10}).get_json()
    resp = client.post(
        "/payment-webhook",
        json={"order_id": "ORD88888888", "transaction_id": "T-OWN", "status": "failed", "sessionId": created["sessionId"]},
    )
    assert resp.status_code == 200


def test_payment_session_for_known_order_charges_its_total(client):
    add_to_cart(client, pid=1)
    order_id = last_order_id(
        client.post("/checkout", data=dict(CHECKOUT_FORM, payment_method="card")).headers["Location"]
    )
    total = db.get_order(order_id)["total_cents"]

    body = client.post("/create-payment-session", json={"order_id": order_id, "amount": 1}).get_json()
    assert db.get_session(body["sessionId"])["amount_cents"] == total

    done = client.post(f"/payment-hosted-mock/{body['sessionId']}/callback", data={"result": "success"})
    assert done.status_code == 302
    assert db.get_order(order_id)["status"] == "paid"
    again = client.post("/create-payment-session", json={"order_id": order_id, "amount": 1})
    assert again.status_code == 409


@pytest.mark.parametrize(
    "payload",
    [
        {"order_id": "ORD1", "amount_cents": "abc"},
        {"order_id": "ORD1", "amount": 10, "order_data": {"items": [{"quantity": "x"}]}},
        {"order_id": "ORD1", "amount": 10, "order_data": ["not", "an", "object"]},
    ],
)
def test_create_payment_session_rejects_bad_input(client, payload):
    assert client.post("/create-payment-session", json=payload).status_code == 400


def test_payment_webhook_rejects_unreadable_items(client):
    resp = client.post(
        "/payment-webhook",
        json={"order_id": "ORD1", "transaction_id": "T-BAD", "status": "success", "items": [{"quantity": "x"}]},
        headers={"X-API-Key": "devkey"},
    )
    assert resp.status_code == 400


def test_send_order_api(client, outbox):
    assert client.post("/send-order", json={"customer": {"name": "Sara"}, "items": [{"id": 1}]}).status_code == 400

    short = client.post(
        "/send-order",
        json={"customer": {"name": "Sara", "phone": "05"}, "items": [{"id": 3, "quantity": 41}]},
    )
    assert short.status_code == 400
    assert short.get_json()["out_of_stock_items"][0] == {
        "id": 3, "name": "Modern Navy Abaya", "available": 40, "requested": 41
    }

    ok = client.post(
        "/send-order",
        json={
            "customer": {"name": "Sara", "phone": "05", "email": "sara@example.com"},
            "items": [{"id": 3, "quantity": 1, "size": "M"}],
            "language": "en",
        },
    )
    body = ok.get_json()
    assert body["success"] is True
    assert db.get_order(body["order_id"])["customer_name"] == "Sara"
    assert db.get_product(3)["current_stock"] == 39
    assert f"Order Confirmation #{body['order_id']}" in outbox.subjects()


def test_send_order_records_email_failure(client, outbox):
    outbox.fail_all = True
    body = client.post(
        "/send-order",
        json={"customer_name": "Sara", "customer_phone": "05", "customer_email": "s@example.com", "items": [{"id": 1}]},
    ).get_json()
    assert body["success"] is True
    assert db.list_payments(status="email_failed")[0]["order_id"] == body["order_id"]


@pytest.mark.parametrize(
    "items",
    [
        [{"id": 1, "quantity": "two"}],
        ["1"],
        "abaya",
    ],
)
def test_send_order_rejects_malformed_items(client, items):
    resp = client.post(
        "/send-order?lang=en", json={"customer_name": "Sara", "customer_phone": "05", "items": items}
    )
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False
    assert db.get_product(1)["current_stock"] == 50


def test_send_order_rejects_non_object_body(client):
    assert client.post("/send-order", json=[{"id": 1}]).status_code == 400


def test_products_api(client):
    body = client.get("/api/products").get_json()
    assert body["success"] is True
    assert [p["sku"] for p in body["products"]] == ["ABY-001", "ABY-002", "ABY-003", "ABY-004"]
    assert client.get("/api/products/1").get_json()["product"]["final_price_cents"] == 25415
    assert client.get("/api/products/99").status_code == 404


def test_availability_api(client):
    assert client.get("/api/products/2/availability?quantity=5").get_json() == {"available": True, "stock": 30}
    short = client.get("/api/products/2/availability?quantity=31&lang=en").get_json()
    assert short["available"] is False
    assert short["message"] == "Only 30 available"


def test_resend_invoice(client, outbox):
    assert client.post("/resend-invoice", json={}).status_code == 400
    assert client.post("/resend-invoice", json={"order_id": "ORD404"}).status_code == 404

    add_to_cart(client)
    order_id = last_order_id(
        client.post("/checkout", data=dict(CHECKOUT_FORM, payment_method="cash")).headers["Location"]
    )
    body = client.post("/resend-invoice", json={"order_id": order_id}).get_json()
    assert body["success"] is True
    assert body["emailErrors"] is None


# Admin


def login(client):
    return client.post("/admin/login", data={"email": "admin@example.com", "password": "secret"})


def test_admin_requires_login(client):
    assert client.get("/admin").status_code == 302
    assert client.get("/admin/api/products").status_code == 401
    assert client.post("/admin/login", data={"password": "nope"}).status_code == 401


def test_admin_dashboard_search(client):
    login(client)
    body = client.get("/admin?q=aby-003&lang=en").get_data(as_text=True)
    assert "Modern Navy Abaya" in body
    assert "Classic Black Abaya" not in body


def test_admin_login_with_hash(client, monkeypatch):
    from werkzeug.security import generate_password_hash

    monkeypatch.setattr(settings, "ADMIN_EMAIL", "owner@mayasah.test")
    monkeypatch.setattr(settings, "ADMIN_PASSWORD_HASH", generate_password_hash("s3cret"))
    assert client.post("/admin/login", data={"email": "other@x.test", "password": "s3cret"}).status_code == 401
    assert client.post("/admin/login", data={"email": "owner@mayasah.test", "password": "s3cret"}).status_code == 302


def test_admin_product_crud(client):
    login(client)
    created = client.post(
        "/admin/api/products",
        json={"sku": "ABY-005", "name_ar": "عباية بيج", "name_en": "Beige Abaya", "price": "SAR 275", "current_stock": "12 pcs"},
    )
    assert created.status_code == 201
    product = created.get_json()["product"]
    assert product["price_cents"] == 27500
    assert product["current_stock"] == 12
    assert product["initial_stock"] == 12

    skus = [p["sku"] for p in client.get("/admin/api/products").get_json()["products"]]
    assert "ABY-005" in skus

    updated = client.put(f"/admin/api/products/{product['id']}", json={"discount": "20%", "price": ""})
    assert updated.get_json()["product"]["discount"] == 20
    assert updated.get_json()["product"]["price_cents"] == 0

    assert client.delete(f"/admin/api/products/{product['id']}").status_code == 200
    assert client.get(f"/admin/api/products/{product['id']}").status_code == 404


def test_admin_product_validation(client):
    login(client)
    assert client.post("/admin/api/products", json={"sku": "X"}).status_code == 400
    dup = client.post("/admin/api/products", json={"sku": "ABY-001", "name_ar": "a", "name_en": "b"})
    assert dup.status_code == 409
    assert client.put("/admin/api/products/1", json={"name_en": ""}).status_code == 400
    assert client.put("/admin/api/products/999", json={"name_en": "x"}).status_code == 404


def test_admin_form_create_and_delete(client):
    login(client)
    client.post("/admin/products", data={"sku": "ABY-006", "name_ar": "أ", "name_en": "Form Abaya", "price": "199"})
    product = next(p for p in db.list_products() if p["sku"] == "ABY-006")
    assert product["price_cents"] == 19900
    client.post(f"/admin/products/{product['id']}/delete")
    assert db.get_product(product["id"]) is None


def test_admin_upload_rejects_other_files(client):
    import io

    login(client)
    bad = client.post("/admin/upload", data={"image": (io.BytesIO(b"x"), "notes.txt")}, content_type="multipart/form-data")
    assert bad.status_code == 400
    good = client.post("/admin/upload", data={"image": (io.BytesIO(b"\x89PNG"), "look.png")}, content_type="multipart/form-data")
    assert good.get_json()["image"].startswith("uploads/")


def test_failed_payments_and_retry_with_admin_key(client, monkeypatch, outbox):
    monkeypatch.setattr(settings, "ADMIN_KEY", "k1")
    assert client.get("/admin/failed-payments").status_code == 401

    outbox.fail_all = True
    client.post("/send-order", json={"customer_name": "S", "customer_phone": "05", "customer_email": "s@example.com", "items": [{"id": 1}]})
    listed = client.get("/admin/failed-payments", headers={"X-Admin-Key": "k1"}).get_json()
    assert len(listed["payments"]) == 1

    outbox.fail_all = False
    retried = client.post("/admin/retry-failed-emails", json={}, headers={"X-Admin-Key": "k1"}).get_json()
    assert retried["attempted"] == 1
    assert db.list_payments(status="email_failed") == []


def test_retry_failed_emails_rejects_bad_limit(client):
    assert client.post("/admin/retry-failed-emails", json={"limit": "ten"}).status_code == 400


def test_admin_consents_listing(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_KEY", "k1")
    client.post("/log-consent", json={"analytics": True})
    assert client.get("/admin/consents").status_code == 401
    listed = client.get("/admin/consents", headers={"X-Admin-Key": "k1"}).get_json()
    assert listed["consents"][0]["source"] == "log"


def test_retry_emails_cli(app):
    result = app.test_cli_runner().invoke(args=["retry-emails"])
    assert "Attempted 0 resend(s)" in result.output


def test_retry_emails_cli_resends_failed_invoices(app, client, outbox):
    outbox.fail_all = True
    order_id = client.post(
        "/send-order",
        json={"customer_name": "S", "customer_phone": "05", "customer_email": "s@example.com", "items": [{"id": 1}]},
    ).get_json()["order_id"]
    outbox.fail_all = False

    result = app.test_cli_runner().invoke(args=["retry-emails"])

    assert result.exception is None
    assert f"{order_id}: ok" in result.output
    assert "Attempted 1 resend(s)" in result.output
    assert db.list_payments(status="email_failed") == []


# Chat, consent, contact


def test_chat_api(client):
    body = client.post("/api/chat", json={"message": "shipping?", "lang": "en"}).get_json()
    assert body["intent"] == "shipping"
    assert client.get("/api/chat/quick/sizes?lang=en").get_json()["intent"] == "size"
    assert client.get("/api/chat/quick/unknown").status_code == 404


def test_set_consent_cookie(client):
    assert client.post("/set-consent-cookie", json={}).status_code == 400

    resp = client.post("/set-consent-cookie", json={"consent": {"necessary": False, "analytics": True}})
    assert resp.get_json()["consent"]["necessary"] is True
    cookie = resp.headers["Set-Cookie"]
    assert "mayasah_cookie_consent=" in cookie
    assert "SameSite=Lax" in cookie
    assert "Max-Age=31536000" in cookie

    current = client.get("/api/consent").get_json()["consent"]
    assert current["analytics"] is True and current["marketing"] is False
    assert db.list_consents()[0]["payload"]["necessary"] is True


def test_log_consent(client):
    assert client.post("/log-consent", json={"analytics": False}).get_json() == {"success": True}
    assert db.list_consents()[0]["source"] == "log"


def test_consent_form_accept_all(client):
    client.post("/consent", data={"choice": "accept"})
    consent = client.get("/api/consent").get_json()["consent"]
    assert consent == {**consent, "necessary": True, "analytics": True, "marketing": True}


def test_send_contact(client, outbox):
    missing = client.post("/send-contact", json={"name": "S", "language": "en"})
    assert missing.status_code == 400
    assert missing.get_json()["message"] == "Please fill in all required fields"

    payload = {"name": "Sara", "email": "sara@example.com", "subject": "Sizes", "message": "Hi", "language": "ar"}
    ok = client.post("/send-contact", json=payload)
    assert ok.get_json() == {"success": True, "message": "تم إرسال رسالتك بنجاح"}
    assert outbox.subjects() == ["رسالة جديدة: Sizes", "تم استلام رسالتك - مياسه ستيل"]

    outbox.fail_all = True
    failed = client.post("/send-contact", json=payload)
    assert failed.status_code == 500
