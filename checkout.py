import logging
import re
import secrets
import time
from typing import Dict, List, Tuple

import db
import settings

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
REQUIRED_FIELDS = ("customer_name", "customer_email", "customer_phone", "city", "address")
PAYMENT_METHODS = ("cash", "card")


class CheckoutError(Exception):
    """Raised with a TEXT key describing why the order was refused."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(key)


def cart_key(pid, size: str = "") -> str:
    return f"{int(pid)}:{size or ''}"


def split_key(key: str) -> Tuple[int, str]:
    pid, _, size = key.partition(":")
    return int(pid), size


def cart_lines(cart: Dict[str, int]):
    """Resolve a session cart into priced lines using stored product prices."""
    lines = []
    subtotal = 0
    for key, qty in cart.items():
        pid, size = split_key(key)
        product = db.get_product(pid)
        if not product:
            continue
        unit = product["final_price_cents"]
        line_total = unit * qty
        subtotal += line_total
        lines.append(
            {
                "key": key,
                "product": product,
                "size": size,
                "qty": qty,
                "unit_cents": unit,
                "line_total": line_total,
            }
        )
    return lines, subtotal


def compute_totals(subtotal_cents: int, has_items: bool = True) -> Dict[str, int]:
    # Half-up rounding to the halala.
    tax = (subtotal_cents * settings.TAX_RATE + 50) // 100
    if not has_items or subtotal_cents >= settings.FREE_SHIPPING_CENTS:
        shipping = 0
    else:
        shipping = settings.SHIPPING_FEE_CENTS
    return {
        "subtotal_cents": subtotal_cents,
        "tax_rate": settings.TAX_RATE,
        "tax_cents": tax,
        "shipping_cents": shipping,
        "total_cents": subtotal_cents + tax + shipping,
    }


def clean_customer(form) -> Dict[str, str]:
    def value(*names):
        for name in names:
            v = form.get(name)
            if v:
                return str(v).strip()
        return ""

    return {
        "customer_name": value("customer_name", "fullName", "name")[:120],
        "customer_email": value("customer_email", "email")[:254],
        "customer_phone": value("customer_phone", "phone")[:40],
        "city": value("city")[:80],
        "address": value("address")[:300],
        "zip_code": value("zip_code", "zip")[:20],
        "notes": value("notes")[:800],
    }


def validate_checkout(customer: Dict[str, str], lines: List[Dict], payment_method: str):
    if not lines:
        raise CheckoutError("err_empty_cart")
    if any(not customer.get(f) for f in REQUIRED_FIELDS):
        raise CheckoutError("err_required")
    if not EMAIL_RE.match(customer["customer_email"]):
        raise CheckoutError("err_email")
    if payment_method not in PAYMENT_METHODS:
        raise CheckoutError("err_payment_method")


def new_order_id() -> str:
    stamp = str(int(time.time() * 1000))[-5:]
    return f"ORD{stamp}{secrets.randbelow(1000):03d}"


def lines_from_items(items: List[Dict]) -> List[Dict]:
    """Price externally supplied items ({id|product_id, quantity, size}) from the catalogue."""
    if not isinstance(items, list):
        raise CheckoutError("err_invalid_items")
    lines, unknown = [], []
    for item in items:
        if not isinstance(item, dict):
            raise CheckoutError("err_invalid_items")
        try:
            qty = max(int(item.get("quantity") or 1), 1)
        except (TypeError, ValueError):
            raise CheckoutError("err_invalid_items") from None
        pid = item.get("product_id", item.get("id"))
        try:
            product = db.get_product(int(pid))
        except (TypeError, ValueError):
            product = None
        if not product:
            unknown.append(pid)
            continue
        unit = product["final_price_cents"]
        lines.append(
            {
                "key": cart_key(product["id"], item.get("size", "")),
                "product": product,
                "size": str(item.get("size") or ""),
                "qty": qty,
                "unit_cents": unit,
                "line_total": unit * qty,
            }
        )
    if unknown:
        raise db.OutOfStockError([], unknown)
    return lines


def place_order(customer: Dict[str, str], lines: List[Dict], payment_method: str, lang: str) -> Dict:
    """Reserve stock for ``lines`` and persist a pending order.

    Raises ``db.OutOfStockError`` when any line cannot be satisfied; nothing is
    decremented in that case.
    """
    subtotal = sum(line["line_total"] for line in lines)
    order = dict(customer)
    order.update(compute_totals(subtotal, bool(lines)))
    order.update(
        {
            "language": lang if lang in ("ar", "en") else "ar",
            "payment_method": payment_method,
            "status": "pending",
            "transaction_id": None,
            "items": [
                {
                    "product_id": line["product"]["id"],
                    "name_ar": line["product"]["name_ar"],
                    "name_en": line["product"]["name_en"],
                    "size": line["size"],
                    "quantity": line["qty"],
                    "price_cents": line["unit_cents"],
                    "total_cents": line["line_total"],
                }
                for line in lines
            ],
        }
    )

    reserved = [(line["product"]["id"], line["qty"]) for line in lines]
    db.reserve_stock(reserved)
    for _ in range(5):
        order["order_id"] = new_order_id()
        if db.insert_order(order):
            logger.info("Order %s placed (%s, %s halalas)", order["order_id"], payment_method, order["total_cents"])
            return db.get_order(order["order_id"])
    db.release_stock(reserved)
    raise RuntimeError("could not allocate an order id")


def release_order_stock(order: Dict):
    db.release_stock(
        (item["product_id"], item["quantity"]) for item in order["items"] if item.get("product_id")
    )
