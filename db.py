import json
import logging
import os
import sqlite3
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import settings
from texts import PRODUCTS_SEED

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = [
    "sku",
    "name_ar",
    "name_en",
    "price_cents",
    "discount",
    "initial_stock",
    "current_stock",
    "image",
    "category",
    "badge",
    "description_ar",
    "description_en",
]

ORDER_FIELDS = [
    "order_id",
    "customer_name",
    "customer_email",
    "customer_phone",
    "address",
    "city",
    "zip_code",
    "notes",
    "language",
    "subtotal_cents",
    "tax_rate",
    "tax_cents",
    "shipping_cents",
    "total_cents",
    "payment_method",
    "status",
    "transaction_id",
]


class OutOfStockError(Exception):
    def __init__(self, items: List[Dict], unknown: Optional[List] = None):
        self.items = items
        self.unknown = unknown or []
        super().__init__("Some items are out of stock")


def db_path() -> str:
    return os.path.join(settings.DATA_DIR, "shop.db")


def get_db():
    conn = sqlite3.connect(db_path(), timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def now_iso() -> str:
    return datetime.utcnow().isoformat()


def init_db(seed: bool = True):
    os.makedirs(settings.DATA_DIR, exist_ok=True)
    conn = get_db()
    cur = conn.cursor()
    cur.executescript(
        """
        CREATE TABLE IF NOT EXISTS products (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sku TEXT UNIQUE NOT NULL,
            name_ar TEXT NOT NULL,
            name_en TEXT NOT NULL,
            price_cents INTEGER NOT NULL,
            discount INTEGER NOT NULL DEFAULT 0,
            initial_stock INTEGER NOT NULL DEFAULT 0,
            current_stock INTEGER NOT NULL DEFAULT 0 CHECK (current_stock >= 0),
            image TEXT NOT NULL DEFAULT '',
            category TEXT NOT NULL DEFAULT '',
            badge TEXT NOT NULL DEFAULT '',
            description_ar TEXT NOT NULL DEFAULT '',
            description_en TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id TEXT UNIQUE NOT NULL,
            customer_name TEXT NOT NULL,
            customer_email TEXT NOT NULL DEFAULT '',
            customer_phone TEXT NOT NULL DEFAULT '',
            address TEXT NOT NULL DEFAULT '',
            city TEXT NOT NULL DEFAULT '',
            zip_code TEXT NOT NULL DEFAULT '',
            notes TEXT NOT NULL DEFAULT '',
            language TEXT NOT NULL DEFAULT 'ar',
            subtotal_cents INTEGER NOT NULL,
            tax_rate INTEGER NOT NULL,
            tax_cents INTEGER NOT NULL,
            shipping_cents INTEGER NOT NULL,
            total_cents INTEGER NOT NULL,
            payment_method TEXT NOT NULL,
            status TEXT NOT NULL,
            transaction_id TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS order_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id TEXT NOT NULL,
            product_id INTEGER,
            name_ar TEXT NOT NULL DEFAULT '',
            name_en TEXT NOT NULL DEFAULT '',
            size TEXT NOT NULL DEFAULT '',
            quantity INTEGER NOT NULL,
            price_cents INTEGER NOT NULL,
            total_cents INTEGER NOT NULL
        );
        CREATE TABLE IF NOT EXISTS payments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id TEXT,
            transaction_id TEXT,
            status TEXT NOT NULL,
            amount_cents INTEGER NOT NULL DEFAULT 0,
            payment_method TEXT,
            session_id TEXT,
            customer_email TEXT,
            note TEXT,
            failures TEXT,
            processed_at TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS payment_sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT UNIQUE NOT NULL,
            order_id TEXT NOT NULL,
            amount_cents INTEGER NOT NULL,
            return_url TEXT,
            order_data TEXT,
            provider TEXT NOT NULL DEFAULT 'mock',
            created_at TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS consents (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            payload TEXT NOT NULL,
            source TEXT,
            received_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_payments_txn ON payments(transaction_id);
        CREATE INDEX IF NOT EXISTS idx_payments_status ON payments(status);
        """
    )
    conn.commit()

    if seed:
        stamp = now_iso()
        for item in PRODUCTS_SEED:
            cur.execute(
                """
                INSERT INTO products (
                    sku, name_ar, name_en, price_cents, discount, initial_stock,
                    current_stock, image, category, badge, description_ar,
                    description_en, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(sku) DO NOTHING
                """,
                tuple(item[f] for f in PRODUCT_FIELDS) + (stamp, stamp),
            )
        conn.commit()
    conn.close()


# Products


def effective_price_cents(product) -> int:
    discount = max(0, min(100, int(product["discount"] or 0)))
    return (int(product["price_cents"]) * (100 - discount) + 50) // 100


def product_to_dict(row) -> Dict:
    if row is None:
        return None
    d = dict(row)
    d["final_price_cents"] = effective_price_cents(row)
    return d


def list_products(query: str = "", category: str = "all") -> List[Dict]:
    conn = get_db()
    rows = conn.execute("SELECT * FROM products ORDER BY id").fetchall()
    conn.close()
    query = (query or "").strip().lower()
    category = (category or "all").lower()
    items = []
    for row in rows:
        if category != "all" and (row["category"] or "").lower() != category:
            continue
        if query:
            haystack = [row["name_ar"], row["name_en"], row["sku"], row["category"]]
            if not any(query in (value or "").lower() for value in haystack):
                continue
        items.append(product_to_dict(row))
    return items


def get_product(pid: int) -> Optional[Dict]:
    conn = get_db()
    row = conn.execute("SELECT * FROM products WHERE id = ?", (pid,)).fetchone()
    conn.close()
    return product_to_dict(row)


def create_product(data: Dict) -> int:
    stamp = now_iso()
    conn = get_db()
    try:
        cur = conn.execute(
            f"""
            INSERT INTO products ({", ".join(PRODUCT_FIELDS)}, created_at, updated_at)
            VALUES ({", ".join("?" for _ in PRODUCT_FIELDS)}, ?, ?)
            """,
            tuple(data.get(f, "") for f in PRODUCT_FIELDS) + (stamp, stamp),
        )
        conn.commit()
        return cur.lastrowid
    finally:
        conn.close()


def update_product(pid: int, data: Dict) -> bool:
    updates = {k: v for k, v in data.items() if k in PRODUCT_FIELDS}
    if not updates:
        return get_product(pid) is not None
    updates["updated_at"] = now_iso()
    assignments = ", ".join(f"{k} = ?" for k in updates)
    conn = get_db()
    try:
        cur = conn.execute(
            f"UPDATE products SET {assignments} WHERE id = ?",
            tuple(updates.values()) + (pid,),
        )
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()


def delete_product(pid: int) -> bool:
    conn = get_db()
    cur = conn.execute("DELETE FROM products WHERE id = ?", (pid,))
    conn.commit()
    conn.close()
    return cur.rowcount > 0


def _merge_quantities(items: Iterable[Tuple[int, int]]) -> Dict[int, int]:
    merged: Dict[int, int] = {}
    for pid, qty in items:
        merged[int(pid)] = merged.get(int(pid), 0) + max(int(qty), 1)
    return merged


def reserve_stock(items: Iterable[Tuple[int, int]]):
    """Decrement stock for every (product_id, quantity) pair or for none.

    Each decrement is guarded by ``current_stock >= quantity`` so a row that
    changed underneath us fails the update instead of going negative.
    """
    wanted = _merge_quantities(items)
    conn = get_db()
    try:
        conn.execute("BEGIN IMMEDIATE")
        out_of_stock, unknown = [], []
        for pid, qty in wanted.items():
            row = conn.execute(
                "SELECT id, name_en, current_stock FROM products WHERE id = ?", (pid,)
            ).fetchone()
            if row is None:
                unknown.append(pid)
            elif row["current_stock"] < qty:
                out_of_stock.append(
                    {"id": pid, "name": row["name_en"], "available": row["current_stock"], "requested": qty}
                )
        if out_of_stock or unknown:
            logger.info("Stock reservation refused: short=%s unknown=%s", out_of_stock, unknown)
            conn.rollback()
            raise OutOfStockError(out_of_stock, unknown)

        for pid, qty in wanted.items():
            cur = conn.execute(
                "UPDATE products SET current_stock = current_stock - ?, updated_at = ? "
                "WHERE id = ? AND current_stock >= ?",
                (qty, now_iso(), pid, qty),
            )
            if cur.rowcount != 1:
                conn.rollback()
                raise OutOfStockError([{"id": pid, "requested": qty}])
        conn.commit()
    finally:
        conn.close()


def release_stock(items: Iterable[Tuple[int, int]]):
    conn = get_db()
    for pid, qty in _merge_quantities(items).items():
        conn.execute(
            "UPDATE products SET current_stock = current_stock + ?, updated_at = ? WHERE id = ?",
            (qty, now_iso(), pid),
        )
    conn.commit()
    conn.close()


# Orders


def insert_order(order: Dict) -> bool:
    stamp = now_iso()
    conn = get_db()
    try:
        conn.execute(
            f"""
            INSERT INTO orders ({", ".join(ORDER_FIELDS)}, created_at, updated_at)
            VALUES ({", ".join("?" for _ in ORDER_FIELDS)}, ?, ?)
            """,
            tuple(order.get(f) for f in ORDER_FIELDS) + (stamp, stamp),
        )
        for item in order["items"]:
            conn.execute(
                """
                INSERT INTO order_items (
                    order_id, product_id, name_ar, name_en, size, quantity, price_cents, total_cents
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order["order_id"],
                    item.get("product_id"),
                    item.get("name_ar", ""),
                    item.get("name_en", ""),
                    item.get("size", ""),
                    item["quantity"],
                    item["price_cents"],
                    item["total_cents"],
                ),
            )
        conn.commit()
        return True
    except sqlite3.IntegrityError:
        conn.rollback()
        return False
    finally:
        conn.close()


def get_order(order_id: str) -> Optional[Dict]:
    conn = get_db()
    row = conn.execute("SELECT * FROM orders WHERE order_id = ?", (order_id,)).fetchone()
    if row is None:
        conn.close()
        return None
    items = conn.execute(
        "SELECT product_id, name_ar, name_en, size, quantity, price_cents, total_cents "
        "FROM order_items WHERE order_id = ? ORDER BY id",
        (order_id,),
    ).fetchall()
    conn.close()
    order = dict(row)
    order["items"] = [dict(i) for i in items]
    return order


def update_order_status(order_id: str, status: str, transaction_id: Optional[str] = None) -> bool:
    conn = get_db()
    cur = conn.execute(
        "UPDATE orders SET status = ?, transaction_id = COALESCE(?, transaction_id), updated_at = ? "
        "WHERE order_id = ?",
        (status, transaction_id, now_iso(), order_id),
    )
    conn.commit()
    conn.close()
    return cur.rowcount > 0


# Payments


def payment_exists(transaction_id: str) -> bool:
    if not transaction_id:
        return False
    conn = get_db()
    row = conn.execute(
        "SELECT 1 FROM payments WHERE transaction_id = ? LIMIT 1", (transaction_id,)
    ).fetchone()
    conn.close()
    return row is not None


def record_payment(record: Dict) -> int:
    failures = record.get("failures")
    conn = get_db()
    cur = conn.execute(
        """
        INSERT INTO payments (
            order_id, transaction_id, status, amount_cents, payment_method,
            session_id, customer_email, note, failures, processed_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.get("order_id"),
            record.get("transaction_id"),
            record["status"],
            int(record.get("amount_cents") or 0),
            record.get("payment_method"),
            record.get("session_id"),
            record.get("customer_email"),
            record.get("note"),
            json.dumps(failures, ensure_ascii=False) if failures else None,
            record.get("processed_at") or now_iso(),
        ),
    )
    conn.commit()
    conn.close()
    return cur.lastrowid


def _payment_to_dict(row) -> Dict:
    d = dict(row)
    d["failures"] = json.loads(d["failures"]) if d.get("failures") else None
    return d


def list_payments(status: Optional[str] = None, order_id: Optional[str] = None, limit: int = 200) -> List[Dict]:
    clauses, params = [], []
    if status:
        clauses.append("LOWER(status) = ?")
        params.append(status.lower())
    if order_id:
        clauses.append("order_id = ?")
        params.append(order_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    conn = get_db()
    rows = conn.execute(
        f"SELECT * FROM payments {where} ORDER BY id DESC LIMIT ?", tuple(params) + (limit,)
    ).fetchall()
    conn.close()
    return [_payment_to_dict(r) for r in rows]


def mark_payment(payment_id: int, status: str) -> bool:
    conn = get_db()
    cur = conn.execute(
        "UPDATE payments SET status = ?, processed_at = ? WHERE id = ?",
        (status, now_iso(), payment_id),
    )
    conn.commit()
    conn.close()
    return cur.rowcount > 0


# Payment sessions


def insert_session(session: Dict):
    conn = get_db()
    conn.execute(
        """
        INSERT INTO payment_sessions (
            session_id, order_id, amount_cents, return_url, order_data, provider, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(session_id) DO UPDATE SET
            order_id=excluded.order_id,
            amount_cents=excluded.amount_cents,
            return_url=excluded.return_url,
            order_data=excluded.order_data
        """,
        (
            session["session_id"],
            session["order_id"],
            session["amount_cents"],
            session.get("return_url"),
            json.dumps(session.get("order_data"), ensure_ascii=False) if session.get("order_data") else None,
            session.get("provider", "mock"),
            now_iso(),
        ),
    )
    conn.commit()
    conn.close()


def _session_to_dict(row) -> Optional[Dict]:
    if row is None:
        return None
    d = dict(row)
    try:
        d["order_data"] = json.loads(d["order_data"]) if d["order_data"] else None
    except ValueError:
        d["order_data"] = None
    return d


def get_session(session_id: str) -> Optional[Dict]:
    conn = get_db()
    row = conn.execute(
        "SELECT * FROM payment_sessions WHERE session_id = ?", (session_id,)
    ).fetchone()
    conn.close()
    return _session_to_dict(row)


def latest_session_for_order(order_id: str) -> Optional[Dict]:
    conn = get_db()
    row = conn.execute(
        "SELECT * FROM payment_sessions WHERE order_id = ? ORDER BY id DESC LIMIT 1", (order_id,)
    ).fetchone()
    conn.close()
    return _session_to_dict(row)


# Consents


def insert_consent(payload: Dict, source: str = "banner") -> int:
    conn = get_db()
    cur = conn.execute(
        "INSERT INTO consents (payload, source, received_at) VALUES (?, ?, ?)",
        (json.dumps(payload, ensure_ascii=False), source, now_iso()),
    )
    conn.commit()
    conn.close()
    return cur.lastrowid


def list_consents(limit: int = 100) -> List[Dict]:
    conn = get_db()
    rows = conn.execute("SELECT * FROM consents ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
    conn.close()
    result = []
    for row in rows:
        d = dict(row)
        d["payload"] = json.loads(d["payload"])
        result.append(d)
    return result
