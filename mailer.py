import json
import logging
import os
import smtplib
import time
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr
from typing import Dict, List, Optional

import requests
from flask import render_template

import settings

logger = logging.getLogger(__name__)


class MailConfigError(RuntimeError):
    pass


def append_log(name: str, payload):
    """Append a timestamped line to DATA_DIR/<name>.log for later inspection."""
    entry = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False, default=str)
    try:
        os.makedirs(settings.DATA_DIR, exist_ok=True)
        with open(os.path.join(settings.DATA_DIR, f"{name}.log"), "a", encoding="utf-8") as fh:
            fh.write(f"[{datetime.utcnow().isoformat()}] {entry}\n")
    except OSError as exc:
        logger.warning("Could not write %s.log: %s", name, exc)


def sender_name(lang: str) -> str:
    return settings.EMAIL_SENDER_NAME_AR if lang == "ar" else settings.EMAIL_SENDER_NAME


def _send_smtp(to_email: str, subject: str, html: str, from_name: str):
    if not (settings.EMAIL_USER and settings.EMAIL_APP_PASSWORD):
        raise MailConfigError("missing EMAIL_USER or EMAIL_APP_PASSWORD")
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = formataddr((from_name, settings.EMAIL_USER))
    msg["To"] = to_email
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")
    with smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=60) as smtp:
        smtp.login(settings.EMAIL_USER, settings.EMAIL_APP_PASSWORD)
        smtp.send_message(msg)


def _send_brevo(to_email: str, subject: str, html: str, from_name: str):
    if not settings.BREVO_API_KEY:
        raise MailConfigError("missing BREVO_API_KEY")
    response = requests.post(
        settings.BREVO_API_URL,
        headers={
            "api-key": settings.BREVO_API_KEY,
            "accept": "application/json",
            "content-type": "application/json",
        },
        json={
            "sender": {"name": from_name, "email": settings.EMAIL_USER or settings.SUPPORT_EMAIL},
            "to": [{"email": to_email}],
            "subject": subject,
            "htmlContent": html,
        },
        timeout=30,
    )
    response.raise_for_status()


def send_email(to_email: str, subject: str, html: str, from_name: Optional[str] = None):
    """Deliver one HTML message through the configured provider; raises on failure."""
    if not to_email:
        raise ValueError("missing recipient")
    from_name = from_name or settings.EMAIL_SENDER_NAME
    if settings.MAIL_PROVIDER == "brevo":
        _send_brevo(to_email, subject, html, from_name)
    else:
        _send_smtp(to_email, subject, html, from_name)


def send_with_retry(message: Dict, attempts: Optional[int] = None, delay: Optional[float] = None) -> Dict:
    attempts = attempts or settings.EMAIL_RETRY_ATTEMPTS
    delay = settings.EMAIL_RETRY_DELAY if delay is None else delay
    error = None
    for attempt in range(1, attempts + 1):
        try:
            send_email(message["to"], message["subject"], message["html"], message.get("from_name"))
            return {"success": True, "attempt": attempt}
        except (smtplib.SMTPException, OSError, requests.RequestException, MailConfigError, ValueError) as exc:
            error = str(exc)
            append_log("email-send-fail", {"attempt": attempt, "to": message["to"], "error": error})
            logger.warning("Email to %s failed (attempt %s/%s): %s", message["to"], attempt, attempts, error)
            if attempt < attempts:
                time.sleep(delay)
    return {"success": False, "attempt": attempts, "error": error}


# Invoices


def format_money(cents) -> str:
    return f"{(cents or 0) / 100:.2f}"


def invoice_context(order: Dict) -> Dict:
    lang = order.get("language") or "ar"
    created = order.get("created_at")
    try:
        order_date = datetime.fromisoformat(created).strftime("%d/%m/%Y") if created else None
    except ValueError:
        order_date = None
    return {
        "order": order,
        "lang": lang,
        "items": order.get("items") or [],
        "money": format_money,
        "order_date": order_date or datetime.utcnow().strftime("%d/%m/%Y"),
        "support_phone": settings.SUPPORT_PHONE,
        "support_email": settings.SUPPORT_EMAIL,
        "business_name": sender_name(lang),
        "current_year": datetime.utcnow().year,
    }


def build_invoice_messages(order: Dict, kind: str = "payment") -> List[Dict]:
    """Render the customer invoice and the owner notification for an order.

    ``kind`` is ``"order"`` when the order was just placed and ``"payment"``
    once the gateway confirmed it; only the subjects differ.
    """
    ctx = invoice_context(order)
    lang = ctx["lang"]
    oid = order["order_id"]
    if kind == "order":
        subjects = (
            (f"تأكيد الطلب رقم {oid}", f"طلب جديد #{oid}")
            if lang == "ar"
            else (f"Order Confirmation #{oid}", f"New Order #{oid}")
        )
    else:
        subjects = (
            (f"تأكيد الدفع - طلب رقم {oid}", f"تم الدفع - طلب رقم {oid}")
            if lang == "ar"
            else (f"Payment Confirmation - Order #{oid}", f"Payment Received - Order #{oid}")
        )
    customer_template = "emails/customer_ar.html" if lang == "ar" else "emails/customer_en.html"
    return [
        {
            "role": "customer",
            "to": order.get("customer_email") or "",
            "subject": subjects[0],
            "html": render_template(customer_template, **ctx),
            "from_name": ctx["business_name"],
        },
        {
            "role": "owner",
            "to": settings.OWNER_EMAIL,
            "subject": subjects[1],
            "html": render_template("emails/owner.html", **ctx),
            "from_name": ctx["business_name"],
        },
    ]


def save_invoice_copies(order_id: str, messages: List[Dict]) -> Dict[str, str]:
    folder = os.path.join(settings.DATA_DIR, "emails")
    os.makedirs(folder, exist_ok=True)
    saved = {}
    for message in messages:
        path = os.path.join(folder, f"{order_id}-{message['role']}.html")
        try:
            with open(path, "w", encoding="utf-8") as fh:
                fh.write(message["html"])
            saved[message["role"]] = path
        except OSError as exc:
            logger.warning("Failed to write %s email file: %s", message["role"], exc)
    return saved


def deliver_invoices(order: Dict, kind: str = "payment") -> List[Dict]:
    """Save and send both invoices; returns the failed sends (empty on success)."""
    messages = build_invoice_messages(order, kind)
    save_invoice_copies(order["order_id"], messages)
    failed = []
    for message in messages:
        result = send_with_retry(message)
        if not result["success"]:
            failed.append({"to": message["to"], "result": result})
    if failed:
        append_log("email-errors", {"order_id": order["order_id"], "failures": failed})
    return failed


# Contact form


def send_contact_messages(data: Dict) -> None:
    lang = data.get("language") or "ar"
    name = sender_name(lang)
    owner_html = render_template(
        "emails/contact_ar.html" if lang == "ar" else "emails/contact_en.html", data=data
    )
    send_email(
        settings.OWNER_EMAIL,
        f"رسالة جديدة: {data['subject']}" if lang == "ar" else f"New Contact Message: {data['subject']}",
        owner_html,
        name,
    )
    confirmation_html = render_template("emails/contact_confirmation.html", data=data, lang=lang)
    send_email(
        data["email"],
        "تم استلام رسالتك - مياسه ستيل" if lang == "ar" else "Message Received - Mayasah Style",
        confirmation_html,
        name,
    )
