import logging
import secrets
import threading
import time
from typing import Dict, List, Optional

import stripe

import checkout
import db
import mailer
import settings

logger = logging.getLogger(__name__)

CUSTOMER_FIELDS = (
    "customer_name",
    "customer_email",
    "customer_phone",
    "address",
    "city",
    "zip_code",
    "notes",
)
TOTAL_FIELDS = ("subtotal_cents", "tax_cents", "shipping_cents", "total_cents")
# Orders whose reserved stock went back on the shelf.
RELEASED_STATUSES = ("payment_failed", "canceled", "stock_conflict")


class InvalidOrderData(ValueError):
    pass


def to_cents(value) -> int:
    """Convert a SAR amount as sent by clients ("299.5", 299.5, None) to halalas."""
    if value in (None, ""):
        return 0
    try:
        return int(round(float(value) * 100))
    except (TypeError, ValueError):
        return 0


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


def new_session_id() -> str:
    return "MSH" + _base36(int(time.time() * 1000)) + secrets.token_hex(3)


def mock_transaction_id(failed: bool = False) -> str:
    return f"MOCKTXN{int(time.time() * 1000)}" + ("FAIL" if failed else "")


def _whole(value, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidOrderData(f"invalid {field}") from None


def normalize_order_data(data: Optional[Dict]) -> Dict:
    """Bring client-shaped order data (SAR floats, ``price``/``name`` items) to the stored shape.

    Raises ``InvalidOrderData`` when a numeric field or an item cannot be read.
    """
    if not data:
        return {}
    if not isinstance(data, dict):
        raise InvalidOrderData("order data must be an object")
    out = {k: data.get(k) for k in CUSTOMER_FIELDS if data.get(k)}
    customer = data.get("customer") or {}
    if isinstance(customer, dict):
        out.setdefault("customer_name", customer.get("name"))
        out.setdefault("customer_phone", customer.get("phone"))
        out.setdefault("customer_email", customer.get("email"))
    if data.get("language") in ("ar", "en"):
        out["language"] = data["language"]
    if data.get("payment_method"):
        out["payment_method"] = data["payment_method"]

    for field, legacy in (
        ("subtotal_cents", "subtotal"),
        ("tax_cents", "tax"),
        ("shipping_cents", "shipping_cost"),
        ("total_cents", "total"),
    ):
        if data.get(field) is not None:
            out[field] = _whole(data[field], field)
        elif data.get(legacy) not in (None, ""):
            out[field] = to_cents(data[legacy])
    if data.get("tax_rate"):
        out["tax_rate"] = _whole(data["tax_rate"], "tax_rate")

    raw_items = data.get("items") or []
    if not isinstance(raw_items, list):
        raise InvalidOrderData("items must be a list")
    items = []
    for item in raw_items:
        if not isinstance(item, dict):
            raise InvalidOrderData("invalid item")
        qty = max(_whole(item.get("quantity") or 1, "quantity"), 1)
        price = _whole(item["price_cents"], "price_cents") if "price_cents" in item else to_cents(item.get("price"))
        total = item.get("total_cents")
        if total is not None:
            total = _whole(total, "total_cents")
        else:
            total = to_cents(item["total"]) if item.get("total") not in (None, "") else price * qty
        items.append(
            {
                "product_id": item.get("product_id", item.get("id")),
                "name_ar": item.get("name_ar") or item.get("name") or "",
                "name_en": item.get("name_en") or item.get("name") or "",
                "size": item.get("size") or "",
                "quantity": qty,
                "price_cents": price,
                "total_cents": total,
            }
        )
    if items:
        out["items"] = items
    return {k: v for k, v in out.items() if v not in (None, "")}


def assemble_order(order_id: str, *sources: Optional[Dict]) -> Dict:
    """Merge order data field by field; the first source with a value wins."""
    order = {"order_id": order_id}
    for source in sources:
        for key, value in (source or {}).items():
            if key == "order_id" or value in (None, "", []):
                continue
            order.setdefault(key, value)
    order.setdefault("language", "ar")
    order.setdefault("items", [])
    if "subtotal_cents" not in order:
        order["subtotal_cents"] = sum(i["total_cents"] for i in order["items"])
    computed = checkout.compute_totals(order["subtotal_cents"], bool(order["items"]))
    for key in ("tax_rate",) + TOTAL_FIELDS:
        order.setdefault(key, computed[key])
    return order


# Sessions


def create_payment_session(
    order_id: str,
    amount_cents: int,
    return_url: Optional[str],
    order_data: Optional[Dict],
    host_url: str,
) -> Dict:
    host_url = host_url.rstrip("/")
    if settings.stripe_configured():
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe_session = stripe.checkout.Session.create(
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": settings.CURRENCY.lower(),
                        "product_data": {"name": f"Order {order_id}"},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            customer_email=(order_data or {}).get("customer_email") or None,
            client_reference_id=order_id,
            metadata={"order_id": order_id},
            success_url=return_url or f"{host_url}/order/{order_id}",
            cancel_url=f"{host_url}/cancel?order_id={order_id}",
        )
        session_id, url, provider = stripe_session.id, stripe_session.url, "stripe"
    else:
        session_id = new_session_id()
        url = f"{host_url}/payment-hosted-mock/{session_id}"
        provider = "mock"

    db.insert_session(
        {
            "session_id": session_id,
            "order_id": order_id,
            "amount_cents": amount_cents,
            "return_url": return_url,
            "order_data": order_data,
            "provider": provider,
        }
    )
    logger.info("Payment session %s (%s) created for order %s", session_id, provider, order_id)
    return {"success": True, "sessionId": session_id, "url": url}


def payload_from_stripe_session(obj: Dict) -> Dict:
    metadata = obj.get("metadata") or {}
    return {
        "order_id": metadata.get("order_id") or obj.get("client_reference_id"),
        "transaction_id": obj.get("payment_intent") or obj.get("id"),
        "status": "success" if obj.get("payment_status") == "paid" else obj.get("payment_status"),
        "amount": (obj.get("amount_total") or 0) / 100,
        "payment_method": "card",
        "sessionId": obj.get("id"),
        "customer_email": (obj.get("customer_details") or {}).get("email") or obj.get("customer_email"),
    }


# Webhook


def settle_order(stored: Dict, record: Dict) -> Optional[Dict]:
    """Move a stored order to ``paid``, or record why the payment cannot settle it.

    Returns ``None`` when the order is paid, otherwise the webhook result to send back.
    """
    order_id = stored["order_id"]
    transaction_id = record["transaction_id"]
    if record["amount_cents"] != stored["total_cents"]:
        db.record_payment(dict(record, status="amount_mismatch", note=f"expected {stored['total_cents']}"))
        mailer.append_log(
            "webhook-processed",
            {
                "order_id": order_id,
                "transaction_id": transaction_id,
                "status": "amount_mismatch",
                "amount_cents": record["amount_cents"],
                "expected_cents": stored["total_cents"],
            },
        )
        logger.warning(
            "Payment %s for order %s paid %s halalas, expected %s",
            transaction_id, order_id, record["amount_cents"], stored["total_cents"],
        )
        return {"success": False, "code": 409, "message": "Paid amount does not match the order total"}

    if stored["status"] in RELEASED_STATUSES:
        try:
            db.reserve_stock(
                (item["product_id"], item["quantity"]) for item in stored["items"] if item.get("product_id")
            )
        except db.OutOfStockError as exc:
            db.update_order_status(order_id, "stock_conflict", transaction_id)
            db.record_payment(dict(record, status="stock_conflict", failures=exc.items or exc.unknown))
            mailer.append_log(
                "webhook-processed",
                {"order_id": order_id, "transaction_id": transaction_id, "status": "stock_conflict", "items": exc.items},
            )
            logger.warning("Order %s was paid after its stock was released and sold out", order_id)
            return {"success": False, "code": 409, "message": "Items are no longer in stock"}
        logger.info("Stock reserved again for %s order %s", stored["status"], order_id)

    db.update_order_status(order_id, "paid", transaction_id)
    return None


def process_webhook_payload(payload: Dict) -> Dict:
    """Apply a gateway notification once per transaction id."""
    payload = payload or {}
    order_id = payload.get("order_id")
    transaction_id = payload.get("transaction_id")
    status = payload.get("status")
    if not order_id or not transaction_id or not status:
        return {"success": False, "code": 400, "message": "Missing required fields"}

    if db.payment_exists(transaction_id):
        logger.info("Duplicate transaction ignored: %s", transaction_id)
        return {"success": True, "duplicate": True}

    session_id = payload.get("sessionId")
    payment_method = payload.get("payment_method")
    stored = db.get_order(order_id)

    if str(status).lower() != "success":
        db.record_payment(
            {
                "order_id": order_id,
                "transaction_id": transaction_id,
                "status": str(status),
                "amount_cents": to_cents(payload.get("amount")),
                "payment_method": payment_method,
                "session_id": session_id,
            }
        )
        if stored and stored["status"] == "pending":
            db.update_order_status(order_id, "payment_failed", transaction_id)
            checkout.release_order_stock(stored)
        mailer.append_log("webhook-processed", {"order_id": order_id, "transaction_id": transaction_id, "status": status})
        return {"success": True, "recorded_as": "non-success"}

    session = db.get_session(session_id) if session_id else None
    try:
        order = assemble_order(
            order_id,
            normalize_order_data(payload),
            stored,
            normalize_order_data(session["order_data"]) if session else None,
        )
    except InvalidOrderData as exc:
        return {"success": False, "code": 400, "message": str(exc)}
    amount_cents = to_cents(payload.get("amount")) or order["total_cents"]
    record = {
        "order_id": order_id,
        "transaction_id": transaction_id,
        "amount_cents": amount_cents,
        "payment_method": payment_method,
        "session_id": session_id,
        "customer_email": order.get("customer_email"),
    }
    if stored:
        refused = settle_order(stored, record)
        if refused:
            return refused

    if not str(order.get("customer_email") or "").strip():
        db.record_payment(dict(record, status="email_failed", note="missing_customer_email"))
        mailer.append_log(
            "webhook-processed",
            {"order_id": order_id, "transaction_id": transaction_id, "status": "email_failed", "reason": "missing_customer_email"},
        )
        return {"success": False, "code": 422, "message": "Missing customer email in payment/session data"}

    failed = mailer.deliver_invoices(order, kind="payment")
    if not failed:
        db.record_payment(dict(record, status="success"))
        mailer.append_log(
            "webhook-processed",
            {"order_id": order_id, "transaction_id": transaction_id, "status": "success", "amount_cents": amount_cents},
        )
        logger.info("Payment %s recorded and invoices delivered for order %s", transaction_id, order_id)
        return {"success": True}

    db.record_payment(dict(record, status="email_failed", failures=failed))
    logger.warning("Email delivery failed, payment %s marked email_failed for order %s", transaction_id, order_id)
    return {"success": False, "code": 502, "message": "Email delivery failed", "failures": failed}


# Order placed notifications


def notify_order_placed(order: Dict) -> bool:
    failed = mailer.deliver_invoices(order, kind="order")
    if not failed:
        return True
    db.record_payment(
        {
            "order_id": order["order_id"],
            "status": "email_failed",
            "amount_cents": order["total_cents"],
            "payment_method": order.get("payment_method"),
            "customer_email": order.get("customer_email"),
            "note": "order_placed",
            "failures": failed,
        }
    )
    return False


def dispatch_order_emails(app, order: Dict):
    """Send the order-placed emails without holding up the request when ASYNC_EMAILS is on."""

    def run():
        with app.app_context():
            try:
                notify_order_placed(order)
            except Exception as exc:
                logger.exception("Order email dispatch crashed for %s", order["order_id"])
                db.record_payment(
                    {
                        "order_id": order["order_id"],
                        "status": "email_failed",
                        "amount_cents": order["total_cents"],
                        "payment_method": order.get("payment_method"),
                        "customer_email": order.get("customer_email"),
                        "note": "order_placed",
                        "failures": [{"error": str(exc)}],
                    }
                )

    if settings.ASYNC_EMAILS:
        worker = threading.Thread(target=run, name=f"order-mail-{order['order_id']}", daemon=True)
        worker.start()
        return worker
    run()
    return None


# Resend / retry


def order_for_resend(order_id: str, payment: Optional[Dict] = None) -> Dict:
    session = db.latest_session_for_order(order_id)
    return assemble_order(
        order_id,
        db.get_order(order_id),
        normalize_order_data(session["order_data"]) if session else None,
        {"customer_email": (payment or {}).get("customer_email")},
    )


def resend_invoice(order_id: str) -> Dict:
    """Re-render, save and send both invoices once, reporting per-recipient errors."""
    order = order_for_resend(order_id)
    messages = mailer.build_invoice_messages(order, kind="payment")
    saved = mailer.save_invoice_copies(order_id, messages)
    errors = []
    for message in messages:
        try:
            mailer.send_email(message["to"], message["subject"], message["html"], message["from_name"])
        except Exception as exc:
            errors.append({"to": message["to"], "error": str(exc)})
    if errors:
        mailer.append_log("email-errors", {"resend": order_id, "errors": errors})
    return {"success": True, "savedFiles": saved, "emailErrors": errors or None}


def resend_invoice_from_payment(payment: Dict) -> Dict:
    order_id = payment.get("order_id")
    if not order_id:
        return {"success": False, "message": "missing payment or order_id"}
    order = order_for_resend(order_id, payment)
    kind = "order" if payment.get("note") == "order_placed" else "payment"
    failed = mailer.deliver_invoices(order, kind=kind)
    if not failed:
        db.mark_payment(payment["id"], "success")
        mailer.append_log("email-retry", {"order_id": order_id, "transaction_id": payment.get("transaction_id"), "result": "success"})
        return {"success": True}
    mailer.append_log(
        "email-retry",
        {"order_id": order_id, "transaction_id": payment.get("transaction_id"), "result": "failed", "failures": failed},
    )
    return {"success": False, "failures": failed}


def retry_failed_emails_once(limit: int = 10, order_id: Optional[str] = None) -> Dict:
    targets = db.list_payments(status="email_failed", order_id=order_id, limit=limit)
    results: List[Dict] = []
    for payment in reversed(targets):
        result = resend_invoice_from_payment(payment)
        results.append(
            {"order_id": payment["order_id"], "transaction_id": payment.get("transaction_id"), "result": result}
        )
    return {"attempted": len(results), "results": results}


class RetryWorker(threading.Thread):
    """Fixed-interval scan of email_failed payments."""

    def __init__(self, app, interval: int, limit: int = 20):
        super().__init__(name="email-retry", daemon=True)
        self.app = app
        self.interval = interval
        self.limit = limit
        self.stopped = threading.Event()

    def run(self):
        while not self.stopped.is_set():
            with self.app.app_context():
                try:
                    summary = retry_failed_emails_once(self.limit)
                    mailer.append_log("email-retry", {"attempted": summary["attempted"]})
                except Exception:
                    logger.exception("Email retry pass failed")
            self.stopped.wait(self.interval)

    def stop(self):
        self.stopped.set()


def start_retry_worker(app) -> Optional[RetryWorker]:
    if not settings.EMAIL_RETRY_ENABLED:
        logger.info("Email retry worker is disabled (EMAIL_RETRY_ENABLED=false)")
        return None
    worker = RetryWorker(app, settings.EMAIL_RETRY_INTERVAL)
    worker.start()
    logger.info("Email retry worker enabled; interval=%ss", settings.EMAIL_RETRY_INTERVAL)
    return worker
