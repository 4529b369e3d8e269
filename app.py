import hmac
import json
import logging
import os
import re
import sqlite3
from datetime import datetime
from functools import wraps
from typing import Dict
from uuid import uuid4

import click
import stripe
from flask import Flask, render_template, request, session, redirect, url_for, jsonify, abort, flash, has_request_context
from flask_cors import CORS
from werkzeug.security import check_password_hash
from werkzeug.utils import secure_filename

import chatbot
import checkout
import db
import mailer
import payments
import settings
from texts import TEXT, SIZES, CATEGORIES, t

app = Flask(__name__, static_folder="static", template_folder="templates")
app.secret_key = settings.SECRET_KEY

app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=settings.COOKIE_SECURE,
    MAX_CONTENT_LENGTH=8 * 1024 * 1024,
)

CORS(app, supports_credentials=True, origins=settings.CORS_ALLOWED_ORIGINS or "*")

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
app.logger.setLevel(settings.LOG_LEVEL.upper())

CONSENT_COOKIE = "mayasah_cookie_consent"
CONSENT_MAX_AGE = 365 * 24 * 60 * 60
ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


@app.after_request
def add_security_headers(resp):
    resp.headers["X-Content-Type-Options"] = "nosniff"
    resp.headers["X-Frame-Options"] = "DENY"
    resp.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    resp.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    resp.headers["Cross-Origin-Opener-Policy"] = "same-origin"
    resp.headers["Cross-Origin-Resource-Policy"] = "same-origin"
    resp.headers["Content-Security-Policy"] = (
        "default-src 'self'; "
        "img-src 'self' data: https:; "
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com; "
        "font-src 'self' https://fonts.gstatic.com; "
        "script-src 'self'; "
        "connect-src 'self'; "
        "base-uri 'self'; "
        "form-action 'self' https://checkout.stripe.com; "
        "frame-ancestors 'none'"
    )
    return resp


def get_lang():
    lang = request.args.get("lang") or session.get("lang") or "ar"
    if lang not in ("ar", "en"):
        lang = "ar"
    session["lang"] = lang
    return lang


def get_cart() -> Dict[str, int]:
    return session.get("cart", {})


def set_cart(cart: Dict[str, int]):
    session["cart"] = cart
    session.modified = True


def remember_order(order_id: str):
    orders = session.get("orders", [])[-9:]
    orders.append(order_id)
    session["orders"] = orders


def json_body() -> Dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def read_consent():
    raw = request.cookies.get(CONSENT_COOKIE)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


@app.context_processor
def inject_shell():
    shell = {
        "money": mailer.format_money,
        "currency": settings.CURRENCY,
        "low_stock": settings.LOW_STOCK_THRESHOLD,
    }
    # Emails are also rendered from worker threads and the CLI, outside any request.
    if has_request_context():
        shell["cart_count"] = sum(get_cart().values())
        shell["show_cookie_banner"] = read_consent() is None
    return shell


# Storefront


@app.route("/")
def index():
    lang = get_lang()
    category = request.args.get("category", "all")
    products = db.list_products(request.args.get("q", ""), category)
    return render_template(
        "index.html",
        lang=lang,
        t=TEXT[lang],
        products=products,
        categories=CATEGORIES,
        category=category,
    )


@app.route("/product/<int:pid>")
def product(pid: int):
    lang = get_lang()
    item = db.get_product(pid)
    if not item:
        abort(404)
    return render_template("product.html", lang=lang, t=TEXT[lang], product=item, sizes=SIZES)


@app.route("/cart")
def cart():
    lang = get_lang()
    lines, subtotal = checkout.cart_lines(get_cart())
    return render_template(
        "cart.html",
        lang=lang,
        t=TEXT[lang],
        items=lines,
        totals=checkout.compute_totals(subtotal, bool(lines)),
    )


@app.route("/checkout", methods=["GET", "POST"])
def checkout_page():
    lang = get_lang()
    lines, subtotal = checkout.cart_lines(get_cart())
    if request.method == "GET":
        if not lines:
            return redirect(url_for("cart", lang=lang))
        return render_template(
            "checkout.html",
            lang=lang,
            t=TEXT[lang],
            items=lines,
            totals=checkout.compute_totals(subtotal, True),
            form={},
            stripe_configured=settings.stripe_configured(),
        )

    customer = checkout.clean_customer(request.form)
    payment_method = request.form.get("payment_method", "")
    try:
        checkout.validate_checkout(customer, lines, payment_method)
        order = checkout.place_order(customer, lines, payment_method, lang)
    except checkout.CheckoutError as exc:
        flash(t(lang, exc.key), "error")
        if exc.key == "err_empty_cart":
            return redirect(url_for("cart", lang=lang))
        return render_template(
            "checkout.html",
            lang=lang,
            t=TEXT[lang],
            items=lines,
            totals=checkout.compute_totals(subtotal, True),
            form=customer,
            stripe_configured=settings.stripe_configured(),
        ), 400
    except db.OutOfStockError as exc:
        for item in exc.items:
            product_row = db.get_product(item["id"])
            name = product_row["name_ar" if lang == "ar" else "name_en"] if product_row else item["id"]
            flash(f"{name}: {t(lang, 'only_available', stock=item.get('available', 0))}", "error")
        if not exc.items:
            flash(t(lang, "err_out_of_stock"), "error")
        return redirect(url_for("cart", lang=lang))

    remember_order(order["order_id"])
    if payment_method == "cash":
        set_cart({})
        payments.dispatch_order_emails(app, order)
        return redirect(url_for("order_confirmation", order_id=order["order_id"], lang=lang))

    try:
        created = payments.create_payment_session(
            order["order_id"],
            order["total_cents"],
            url_for("order_confirmation", order_id=order["order_id"], _external=True),
            order,
            request.host_url,
        )
    except stripe.StripeError as exc:
        app.logger.error("Payment session failed for %s: %s", order["order_id"], exc)
        db.update_order_status(order["order_id"], "payment_failed")
        checkout.release_order_stock(order)
        flash(t(lang, "err_payment_session"), "error")
        return redirect(url_for("checkout_page", lang=lang))
    return redirect(created["url"])


@app.route("/order/<order_id>")
def order_confirmation(order_id: str):
    lang = get_lang()
    if order_id not in session.get("orders", []):
        abort(404)
    order = db.get_order(order_id)
    if not order:
        abort(404)
    if order["status"] == "paid":
        set_cart({})
    return render_template(
        "order.html",
        lang=lang,
        t=TEXT[lang],
        order=order,
        transaction_id=request.args.get("transaction_id") or order["transaction_id"],
    )


@app.route("/cancel")
def checkout_cancel():
    lang = get_lang()
    order_id = request.args.get("order_id")
    if order_id and order_id in session.get("orders", []):
        order = db.get_order(order_id)
        if order and order["status"] == "pending" and order["payment_method"] == "card":
            db.update_order_status(order_id, "canceled")
            checkout.release_order_stock(order)
            app.logger.info("Order %s canceled at the payment page", order_id)
    return render_template("cancel.html", lang=lang, t=TEXT[lang])


@app.route("/contact")
def contact():
    lang = get_lang()
    return render_template("contact.html", lang=lang, t=TEXT[lang])


# Cart API


def _cart_qty_for(cart: Dict[str, int], pid: int, skip_key: str = None) -> int:
    return sum(q for k, q in cart.items() if k != skip_key and checkout.split_key(k)[0] == pid)


@app.post("/api/cart/add")
def api_cart_add():
    lang = get_lang()
    data = json_body()
    try:
        pid = int(data.get("product_id"))
        qty = max(int(data.get("qty", 1)), 1)
    except (TypeError, ValueError):
        return jsonify({"ok": False, "message": t(lang, "err_unknown_product")}), 400
    size = str(data.get("size") or "")
    if size and size not in SIZES:
        size = ""

    item = db.get_product(pid)
    if not item:
        return jsonify({"ok": False, "message": t(lang, "err_unknown_product")}), 404

    cart = get_cart()
    if _cart_qty_for(cart, pid) + qty > item["current_stock"]:
        return jsonify({"ok": False, "message": t(lang, "only_available", stock=item["current_stock"])}), 400

    key = checkout.cart_key(pid, size)
    cart[key] = cart.get(key, 0) + qty
    set_cart(cart)
    return jsonify({"ok": True, "count": sum(cart.values()), "message": t(lang, "added_to_cart")})


@app.post("/api/cart/update")
def api_cart_update():
    lang = get_lang()
    data = json_body()
    key = str(data.get("key", ""))
    cart = get_cart()
    if key not in cart:
        return jsonify({"ok": False}), 404
    try:
        qty = int(data.get("qty", 1))
    except (TypeError, ValueError):
        return jsonify({"ok": False}), 400
    if qty <= 0:
        cart.pop(key)
    else:
        pid = checkout.split_key(key)[0]
        item = db.get_product(pid)
        if not item or _cart_qty_for(cart, pid, skip_key=key) + qty > item["current_stock"]:
            stock = item["current_stock"] if item else 0
            return jsonify({"ok": False, "message": t(lang, "only_available", stock=stock)}), 400
        cart[key] = qty
    set_cart(cart)
    lines, subtotal = checkout.cart_lines(cart)
    return jsonify(
        {"ok": True, "count": sum(cart.values()), "totals": checkout.compute_totals(subtotal, bool(lines))}
    )


@app.post("/api/cart/remove")
def api_cart_remove():
    data = json_body()
    key = str(data.get("key") or data.get("product_id") or "")
    cart = get_cart()
    if key in cart:
        cart.pop(key)
        set_cart(cart)
    return jsonify({"ok": True, "count": sum(cart.values())})


@app.post("/api/cart/clear")
def api_cart_clear():
    set_cart({})
    return jsonify({"ok": True, "count": 0})


# Products API


@app.get("/api/products")
def api_products():
    return jsonify({"success": True, "products": db.list_products(request.args.get("q", ""), request.args.get("category", "all"))})


@app.get("/api/products/<int:pid>")
def api_product(pid: int):
    item = db.get_product(pid)
    if not item:
        return jsonify({"success": False, "message": "Product not found"}), 404
    return jsonify({"success": True, "product": item})


@app.get("/api/products/<int:pid>/availability")
def api_product_availability(pid: int):
    lang = get_lang()
    quantity = request.args.get("quantity", 1, type=int) or 1
    item = db.get_product(pid)
    if not item:
        return jsonify({"available": False, "message": t(lang, "err_unknown_product")}), 404
    if item["current_stock"] >= quantity:
        return jsonify({"available": True, "stock": item["current_stock"]})
    return jsonify({"available": False, "stock": item["current_stock"], "message": t(lang, "only_available", stock=item["current_stock"])})


@app.get("/health")
def health():
    return jsonify({"ok": True, "time": datetime.utcnow().isoformat()})


# Orders API


@app.post("/send-order")
def send_order():
    data = json_body()
    nested = data.get("customer") if isinstance(data.get("customer"), dict) else {}
    customer = checkout.clean_customer({**nested, **{k: v for k, v in data.items() if isinstance(v, str)}})
    if not customer["customer_name"] or not customer["customer_phone"]:
        return jsonify({"success": False, "message": "Missing customer name or phone"}), 400
    if not data.get("items"):
        return jsonify({"success": False, "message": "No items in order"}), 400

    lang = data.get("language") if data.get("language") in ("ar", "en") else "ar"
    payment_method = data.get("payment_method") if data.get("payment_method") in checkout.PAYMENT_METHODS else "cash"
    try:
        lines = checkout.lines_from_items(data["items"])
        order = checkout.place_order(customer, lines, payment_method, lang)
    except checkout.CheckoutError as exc:
        return jsonify({"success": False, "message": t(lang, exc.key)}), 400
    except db.OutOfStockError as exc:
        if exc.unknown:
            return jsonify({"success": False, "message": "Unknown products", "unknown_items": exc.unknown}), 400
        return jsonify({"success": False, "message": "out of stock", "out_of_stock_items": exc.items}), 400

    payments.dispatch_order_emails(app, order)
    return jsonify({"success": True, "message": "Order received", "order_id": order["order_id"]})


# Payments


@app.post("/create-payment-session")
def create_payment_session():
    data = json_body()
    order_id = data.get("order_id")
    amount_cents = data.get("amount_cents") or payments.to_cents(data.get("amount"))
    if not order_id or not amount_cents:
        return jsonify({"success": False, "message": "order_id and amount required"}), 400
    try:
        amount_cents = int(amount_cents)
        order_data = data.get("order_data")
        payments.normalize_order_data(order_data)
    except (TypeError, ValueError) as exc:
        return jsonify({"success": False, "message": f"invalid amount or order data: {exc}"}), 400

    stored = db.get_order(str(order_id))
    if stored:
        if stored["status"] == "paid":
            return jsonify({"success": False, "message": "order already paid"}), 409
        # Known orders are always charged their own total.
        amount_cents = stored["total_cents"]
        order_data = order_data or stored
    if amount_cents <= 0:
        return jsonify({"success": False, "message": "order_id and amount required"}), 400
    try:
        created = payments.create_payment_session(
            str(order_id), amount_cents, data.get("return_url"), order_data, request.host_url
        )
    except stripe.StripeError as exc:
        app.logger.error("Payment session failed for %s: %s", order_id, exc)
        return jsonify({"success": False, "message": "Payment provider error"}), 502
    return jsonify(created)


@app.get("/payment-hosted-mock/<session_id>")
def mock_gateway(session_id: str):
    lang = get_lang()
    pay_session = db.get_session(session_id)
    if not pay_session or pay_session["provider"] != "mock":
        abort(404)
    return render_template("mock_gateway.html", lang=lang, t=TEXT[lang], pay_session=pay_session)


@app.post("/payment-hosted-mock/<session_id>/callback")
def mock_gateway_callback(session_id: str):
    lang = get_lang()
    pay_session = db.get_session(session_id)
    if not pay_session or pay_session["provider"] != "mock":
        abort(404)

    failed = request.form.get("result") == "fail"
    transaction_id = payments.mock_transaction_id(failed)
    status = "failed" if failed else "success"
    payload = {
        "order_id": pay_session["order_id"],
        "transaction_id": transaction_id,
        "status": status,
        "amount": pay_session["amount_cents"] / 100,
        "payment_method": "card",
        "sessionId": session_id,
    }
    result = payments.process_webhook_payload(payload)
    mailer.append_log("mock-callback", {"session_id": session_id, "payload": payload, "result": result})

    if result.get("code") in (409, 502):
        return render_template(
            "payment_result.html",
            lang=lang,
            t=TEXT[lang],
            order_id=pay_session["order_id"],
            result=result,
            conflict=result["code"] == 409,
        ), result["code"]

    return_url = pay_session["return_url"] or url_for("order_confirmation", order_id=pay_session["order_id"])
    sep = "&" if "?" in return_url else "?"
    return redirect(f"{return_url}{sep}transaction_id={transaction_id}&status={status}")


def _provided_key(header: str) -> str:
    return request.headers.get(header) or request.args.get("key") or ""


def same_secret(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@app.post("/payment-webhook")
def payment_webhook():
    payload = json_body()
    pay_session = db.get_session(str(payload["sessionId"])) if payload.get("sessionId") else None
    # A mock session only vouches for its own order.
    internal = (
        pay_session is not None
        and pay_session["provider"] == "mock"
        and payload.get("order_id") == pay_session["order_id"]
    )
    if not internal and not same_secret(_provided_key("X-API-Key"), settings.PAYMENT_API_KEY):
        app.logger.warning("Webhook rejected: bad API key from %s", request.remote_addr)
        return jsonify({"success": False, "message": "Invalid API key"}), 403

    result = payments.process_webhook_payload(payload)
    code = result.pop("code", 200)
    return jsonify(result), code


@app.post("/webhook")
def stripe_webhook():
    if not settings.STRIPE_WEBHOOK_SECRET:
        return "", 400

    payload = request.data
    sig_header = request.headers.get("Stripe-Signature")

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        app.logger.warning("Stripe webhook rejected: %s", exc)
        return "", 400

    if event["type"] == "checkout.session.completed":
        session_obj = json.loads(payload)["data"]["object"]
        result = payments.process_webhook_payload(payments.payload_from_stripe_session(session_obj))
        code = result.pop("code", 200)
        # Stripe retries on non-2xx; a 502 from email delivery is already queued for retry.
        if code == 400:
            return jsonify(result), 400
        if code == 409:
            app.logger.error("Stripe payment for %s needs manual review: %s", session_obj.get("id"), result["message"])

    return "", 200


@app.post("/resend-invoice")
def resend_invoice():
    data = json_body()
    order_id = data.get("order_id")
    if not order_id:
        return jsonify({"success": False, "message": "order_id required"}), 400
    if not db.get_order(order_id) and not db.latest_session_for_order(order_id):
        return jsonify({"success": False, "message": "order not found"}), 404
    return jsonify(payments.resend_invoice(order_id))


# Admin


def admin_logged_in() -> bool:
    return bool(session.get("is_admin"))


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not admin_logged_in():
            if request.path.startswith("/admin/api/"):
                return jsonify({"success": False, "message": "unauthorized"}), 401
            return redirect(url_for("admin_login"))
        return view(*args, **kwargs)

    return wrapped


def admin_key_required(view):
    """Machine access with X-Admin-Key when ADMIN_KEY is set; a signed-in admin always passes."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        if not admin_logged_in() and settings.ADMIN_KEY:
            if not same_secret(_provided_key("X-Admin-Key"), settings.ADMIN_KEY):
                return jsonify({"success": False, "message": "unauthorized"}), 401
        return view(*args, **kwargs)

    return wrapped


def check_admin_credentials(email: str, password: str) -> bool:
    if settings.ADMIN_EMAIL and email.strip().lower() != settings.ADMIN_EMAIL.lower():
        return False
    if settings.ADMIN_PASSWORD_HASH:
        return check_password_hash(settings.ADMIN_PASSWORD_HASH, password)
    if settings.ADMIN_PASSWORD:
        return same_secret(password, settings.ADMIN_PASSWORD)
    return False


@app.route("/admin/login", methods=["GET", "POST"])
def admin_login():
    lang = get_lang()
    if request.method == "POST":
        email = request.form.get("email", "")
        if check_admin_credentials(email, request.form.get("password", "")):
            session["is_admin"] = True
            app.logger.info("Admin signed in: %s", email)
            return redirect(url_for("admin_dashboard", lang=lang))
        app.logger.warning("Failed admin login for %s from %s", email, request.remote_addr)
        flash(t(lang, "admin_bad_login"), "error")
        return render_template("admin_login.html", lang=lang, t=TEXT[lang]), 401
    return render_template("admin_login.html", lang=lang, t=TEXT[lang])


@app.post("/admin/logout")
def admin_logout():
    session.pop("is_admin", None)
    return redirect(url_for("admin_login", lang=get_lang()))


def parse_number(value) -> float:
    cleaned = re.sub(r"[^0-9.]", "", str(value if value is not None else ""))
    if not cleaned:
        return 0
    try:
        return float(cleaned)
    except ValueError:
        return 0


def product_from_input(data, partial: bool = False) -> Dict:
    """Map dashboard/API input to product columns; prices arrive in SAR."""
    out = {}
    for field in ("sku", "name_ar", "name_en", "category", "badge", "description_ar", "description_en", "image"):
        if field in data:
            out[field] = str(data.get(field) or "").strip()
    if "price_cents" in data:
        out["price_cents"] = int(parse_number(data.get("price_cents")))
    elif "price" in data:
        out["price_cents"] = int(round(parse_number(data.get("price")) * 100))
    if "discount" in data:
        out["discount"] = max(0, min(100, int(parse_number(data.get("discount")))))
    for field in ("current_stock", "initial_stock"):
        if field in data:
            out[field] = int(parse_number(data.get(field)))

    if not partial:
        for field in ("price_cents", "discount", "current_stock"):
            out.setdefault(field, 0)
        out.setdefault("initial_stock", out["current_stock"])
        for field in ("image", "category", "badge", "description_ar", "description_en"):
            out.setdefault(field, "")
    return out


def missing_product_fields(product_data: Dict, partial: bool = False):
    required = ("sku", "name_ar", "name_en")
    if partial:
        return [f for f in required if f in product_data and not product_data[f]]
    return [f for f in required if not product_data.get(f)]


def save_upload(image_file):
    """Store an uploaded product image under UPLOAD_DIR; returns (static path, error)."""
    if not image_file or not getattr(image_file, "filename", ""):
        return None, "An image file is required."
    filename = secure_filename(image_file.filename)
    extension = os.path.splitext(filename)[1].lower().lstrip(".")
    if extension not in ALLOWED_IMAGE_EXTENSIONS:
        return None, "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files."
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    unique = f"{uuid4().hex}.{extension}"
    try:
        image_file.save(os.path.join(settings.UPLOAD_DIR, unique))
    except OSError as exc:
        app.logger.error("Upload failed: %s", exc)
        return None, "We could not store the uploaded image. Please try again."
    return f"uploads/{unique}", None


@app.get("/admin")
@admin_required
def admin_dashboard():
    lang = get_lang()
    q = request.args.get("q", "")
    category = request.args.get("category", "all")
    everything = db.list_products()
    return render_template(
        "admin.html",
        lang=lang,
        t=TEXT[lang],
        products=db.list_products(q, category),
        q=q,
        category=category,
        categories=CATEGORIES,
        stats={
            "active": sum(1 for p in everything if p["current_stock"] > 0),
            "low_stock": sum(1 for p in everything if p["current_stock"] <= settings.LOW_STOCK_THRESHOLD),
            "total": len(everything),
        },
    )


@app.get("/admin/api/products")
@admin_required
def admin_api_products():
    return jsonify(
        {"success": True, "products": db.list_products(request.args.get("q", ""), request.args.get("category", "all"))}
    )


@app.post("/admin/api/products")
@admin_required
def admin_api_create_product():
    data = product_from_input(json_body())
    missing = missing_product_fields(data)
    if missing:
        return jsonify({"success": False, "message": "Missing required fields", "fields": missing}), 400
    try:
        pid = db.create_product(data)
    except sqlite3.IntegrityError:
        return jsonify({"success": False, "message": "SKU already exists"}), 409
    app.logger.info("Product %s created (%s)", pid, data["sku"])
    return jsonify({"success": True, "product": db.get_product(pid)}), 201


@app.get("/admin/api/products/<int:pid>")
@admin_required
def admin_api_product(pid: int):
    item = db.get_product(pid)
    if not item:
        return jsonify({"success": False, "message": "Product not found"}), 404
    return jsonify({"success": True, "product": item})


@app.put("/admin/api/products/<int:pid>")
@admin_required
def admin_api_update_product(pid: int):
    data = product_from_input(json_body(), partial=True)
    missing = missing_product_fields(data, partial=True)
    if missing:
        return jsonify({"success": False, "message": "Missing required fields", "fields": missing}), 400
    try:
        updated = db.update_product(pid, data)
    except sqlite3.IntegrityError:
        return jsonify({"success": False, "message": "SKU already exists"}), 409
    if not updated:
        return jsonify({"success": False, "message": "Product not found"}), 404
    return jsonify({"success": True, "product": db.get_product(pid)})


@app.delete("/admin/api/products/<int:pid>")
@admin_required
def admin_api_delete_product(pid: int):
    if not db.delete_product(pid):
        return jsonify({"success": False, "message": "Product not found"}), 404
    app.logger.info("Product %s deleted", pid)
    return jsonify({"success": True})


@app.post("/admin/upload")
@admin_required
def admin_upload():
    path, error = save_upload(request.files.get("image"))
    if error:
        return jsonify({"success": False, "message": error}), 400
    return jsonify({"success": True, "image": path})


def _form_product(partial: bool):
    form = request.form.to_dict()
    if request.files.get("image_file") and request.files["image_file"].filename:
        path, error = save_upload(request.files["image_file"])
        if error:
            return None, error
        form["image"] = path
    return product_from_input(form, partial=partial), None


@app.post("/admin/products")
@admin_required
def admin_create_product():
    lang = get_lang()
    data, error = _form_product(partial=False)
    if error or missing_product_fields(data):
        flash(error or t(lang, "admin_save_failed"), "error")
        return redirect(url_for("admin_dashboard", lang=lang))
    try:
        db.create_product(data)
        flash(t(lang, "admin_saved"), "success")
    except sqlite3.IntegrityError:
        flash(t(lang, "admin_save_failed"), "error")
    return redirect(url_for("admin_dashboard", lang=lang))


@app.post("/admin/products/<int:pid>")
@admin_required
def admin_update_product(pid: int):
    lang = get_lang()
    data, error = _form_product(partial=True)
    if error or missing_product_fields(data, partial=True):
        flash(error or t(lang, "admin_save_failed"), "error")
        return redirect(url_for("admin_dashboard", lang=lang))
    try:
        ok = db.update_product(pid, data)
    except sqlite3.IntegrityError:
        ok = False
    flash(t(lang, "admin_saved" if ok else "admin_save_failed"), "success" if ok else "error")
    return redirect(url_for("admin_dashboard", lang=lang))


@app.post("/admin/products/<int:pid>/delete")
@admin_required
def admin_delete_product(pid: int):
    lang = get_lang()
    if db.delete_product(pid):
        flash(t(lang, "admin_deleted"), "success")
    return redirect(url_for("admin_dashboard", lang=lang))


@app.get("/admin/failed-payments")
@admin_key_required
def admin_failed_payments():
    return jsonify({"success": True, "payments": db.list_payments(status="email_failed", limit=200)})


@app.post("/admin/retry-failed-emails")
@admin_key_required
def admin_retry_failed_emails():
    data = json_body()
    try:
        limit = int(data.get("limit") or 10)
    except (TypeError, ValueError):
        return jsonify({"success": False, "message": "limit must be a number"}), 400
    summary = payments.retry_failed_emails_once(limit=limit, order_id=data.get("order_id"))
    return jsonify({"success": True, **summary})


@app.get("/admin/consents")
@admin_key_required
def admin_consents():
    return jsonify({"success": True, "consents": db.list_consents(limit=request.args.get("limit", 100, type=int) or 100)})


# Chat


@app.post("/api/chat")
def api_chat():
    data = json_body()
    return jsonify(chatbot.reply(str(data.get("message") or "")[:500], data.get("lang") or get_lang()))


@app.get("/api/chat/quick/<question>")
def api_chat_quick(question: str):
    answer = chatbot.quick_reply(question, request.args.get("lang") or get_lang())
    if answer is None:
        abort(404)
    return jsonify(answer)


# Cookie consent


def normalize_consent(raw) -> Dict:
    raw = raw if isinstance(raw, dict) else {}
    return {
        "necessary": True,
        "analytics": bool(raw.get("analytics")),
        "marketing": bool(raw.get("marketing")),
        "timestamp": raw.get("timestamp") or datetime.utcnow().isoformat(),
        "version": str(raw.get("version") or "1.0"),
    }


def set_consent_cookie(resp, consent: Dict):
    resp.set_cookie(
        CONSENT_COOKIE,
        json.dumps(consent, separators=(",", ":")),
        max_age=CONSENT_MAX_AGE,
        samesite="Lax",
        secure=settings.COOKIE_SECURE,
        httponly=False,
    )
    return resp


@app.post("/consent")
def consent_form():
    lang = get_lang()
    choice = request.form.get("choice", "save")
    if choice == "accept":
        consent = normalize_consent({"analytics": True, "marketing": True})
    elif choice == "reject":
        consent = normalize_consent({})
    else:
        consent = normalize_consent(
            {"analytics": request.form.get("analytics"), "marketing": request.form.get("marketing")}
        )
    db.insert_consent(consent, source="banner")
    flash(t(lang, "cookie_saved"), "success")
    target = request.referrer if request.referrer and request.referrer.startswith(request.host_url) else url_for("index")
    return set_consent_cookie(redirect(target), consent)


@app.post("/log-consent")
def log_consent():
    data = json_body()
    db.insert_consent(data, source="log")
    mailer.append_log("consent", data)
    return jsonify({"success": True})


@app.post("/set-consent-cookie")
def set_consent_cookie_api():
    data = json_body()
    if not isinstance(data.get("consent"), dict):
        return jsonify({"success": False, "message": "consent required"}), 400
    consent = normalize_consent(data["consent"])
    db.insert_consent(consent, source="api")
    return set_consent_cookie(jsonify({"success": True, "consent": consent}), consent)


@app.get("/api/consent")
def api_consent():
    return jsonify({"consent": read_consent()})


# Contact


@app.post("/send-contact")
def send_contact():
    data = json_body() or request.form.to_dict()
    lang = data.get("language") if data.get("language") in ("ar", "en") else get_lang()
    fields = {k: str(data.get(k) or "").strip() for k in ("name", "email", "phone", "subject", "message")}
    if not all(fields[k] for k in ("name", "email", "subject", "message")) or not checkout.EMAIL_RE.match(fields["email"]):
        return jsonify({"success": False, "message": t(lang, "contact_required")}), 400
    fields["language"] = lang
    try:
        mailer.send_contact_messages(fields)
    except (mailer.MailConfigError, OSError, ValueError) as exc:
        app.logger.error("Contact email failed: %s", exc)
        mailer.append_log("email-errors", {"contact": fields["email"], "error": str(exc)})
        return jsonify({"success": False, "message": t(lang, "contact_failed")}), 500
    return jsonify({"success": True, "message": t(lang, "contact_sent")})


@app.cli.command("init-db")
def init_db_command():
    """Create tables and seed the catalogue."""
    db.init_db()
    click.echo(f"Database ready at {db.db_path()}")


@app.cli.command("retry-emails")
@click.option("--limit", default=20, show_default=True, help="Maximum failed records to retry.")
def retry_emails_command(limit):
    """Re-send invoices for payments stuck in email_failed."""
    db.init_db(seed=False)
    summary = payments.retry_failed_emails_once(limit=limit)
    for entry in summary["results"]:
        click.echo(f"{entry['order_id']}: {'ok' if entry['result']['success'] else 'failed'}")
    click.echo(f"Attempted {summary['attempted']} resend(s)")


if __name__ == "__main__":
    db.init_db()
    payments.start_retry_worker(app)
    app.run(debug=False)
