"""Rule-based shop assistant used by the contact page chat widget.

Replies are plain text; the widget renders them with line breaks. Inventory
questions are answered from the live catalogue, everything else from a fixed
keyword table in Arabic and English.
"""
import re
from typing import Dict, List, Optional, Tuple

import db
import settings
from mailer import format_money
from texts import SIZES

STOCK_KEYWORDS = ["متوفر", "available", "stock", "مخزون", "توفر", "كمية"]
PRODUCT_KEYWORDS = ["منتجات", "products", "عباية", "abaya"]

# (intent, keywords) evaluated in order; the first hit wins.
FAQ_KEYWORDS = {
    "ar": [
        ("product", ["المنتج", "المنتجات", "عبايات"]),
        ("price", ["السعر", "الأسعار", "التكلفة", "كم"]),
        ("shipping", ["الشحن", "التوصيل", "الموصل", "الوصول"]),
        ("size", ["المقاس", "المقاسات", "القياس", "القياسات"]),
        ("payment", ["الدفع", "الطريقة", "كيف"]),
        ("returns", ["الاسترجاع", "التبديل", "الاستبدال", "الرجوع"]),
        ("hours", ["ساعات", "العمل", "الوقت", "متى"]),
        ("location", ["العنوان", "الموقع", "أين", "المكان"]),
        ("quality", ["الجودة", "الخامات", "المواد", "النسيج"]),
        ("tracking", ["التتبع", "الطلب", "أين طلبي", "متى يصل"]),
        ("discounts", ["الخصم", "العرض", "التخفيض", "الخصومات"]),
        ("thanks", ["شكر", "ممتاز", "حلو", "أحسنت"]),
        ("website", ["الإنترنت", "أونلاين", "التسوق"]),
        ("contact", ["التواصل", "الخدمة", "المساعدة", "الدعم"]),
    ],
    "en": [
        ("product", ["product", "abayas"]),
        ("price", ["price", "cost", "how much", "expensive"]),
        ("shipping", ["shipping", "delivery", "ship", "arrive"]),
        ("size", ["size", "sizes", "measurement", "fit"]),
        ("payment", ["payment", "pay", "how to pay", "method"]),
        ("returns", ["return", "exchange", "refund", "change"]),
        ("hours", ["hours", "work", "time", "when"]),
        ("location", ["address", "location", "where", "place"]),
        ("quality", ["quality", "material", "fabric", "texture"]),
        ("tracking", ["track", "order", "where is my order", "when will it arrive"]),
        ("discounts", ["discount", "offer", "sale", "promotion"]),
        ("thanks", ["thank", "great", "good", "nice"]),
        ("website", ["website", "online", "internet", "shop"]),
        ("contact", ["contact", "service", "help", "support"]),
    ],
}

REPLIES = {
    "ar": {
        "product": "نوفر مجموعة متنوعة من العبايات الأنيقة: كلاسيكية، مطرزة، وعصرية.\n"
        "جميع منتجاتنا مصنوعة من أجود الخامات. تصفحي المنتجات من صفحة \"المنتجات\".",
        "price": "أسعار العبايات تبدأ من {min_price} ر.س وتختلف حسب التصميم والخامة.\n"
        "نقدم عروضاً وخصومات دورية، والأسعار الحالية في صفحة المنتجات.",
        "shipping": "نوفر شحناً سريعاً وآمناً:\n"
        "• شحن مجاني للطلبات من {free_shipping} ر.س فأكثر\n"
        "• رسوم الشحن لباقي الطلبات {shipping_fee} ر.س\n"
        "• مدة التوصيل 3-5 أيام عمل لجميع مدن المملكة",
        "size": "المقاسات المتوفرة: {sizes}\n"
        "اختاري المقاس من صفحة المنتج، وإذا لم تكوني متأكدة نساعدك في تحديده.",
        "payment": "طرق الدفع المتاحة:\n"
        "• الدفع عند الاستلام\n"
        "• البطاقات البنكية عبر صفحة دفع آمنة\n"
        "جميع المعاملات مشفرة.",
        "returns": "سياسة الاسترجاع والتبديل:\n"
        "• الاسترجاع خلال 14 يوماً من الاستلام\n"
        "• التبديل مجاني خلال 7 أيام\n"
        "• يجب أن يكون المنتج بحالته الأصلية وغير مستخدم",
        "hours": "ساعات العمل:\n"
        "• الأحد - الخميس: 9 صباحاً - 10 مساءً\n"
        "• الجمعة - السبت: 10 صباحاً - 11 مساءً\n"
        "للتواصل: {phone}",
        "location": "موقعنا في جدة، المملكة العربية السعودية، ونوصل لجميع مدن المملكة.",
        "quality": "نحرص على الجودة: أقمشة مستوردة فاخرة، خياطة دقيقة، وضمان على جميع المنتجات.",
        "tracking": "بعد إتمام الطلب تصلك رسالة تأكيد على بريدك الإلكتروني برقم الطلب.\n"
        "مدة التوصيل 3-5 أيام عمل، ولمتابعة طلبك تواصلي معنا برقم الطلب.",
        "discounts": "تظهر الخصومات الحالية على بطاقات المنتجات مباشرة،\n"
        "والشحن مجاني للطلبات من {free_shipping} ر.س فأكثر.",
        "thanks": "شكراً لك! يسعدنا أن نكون في خدمتك، ولا تترددي في السؤال عن أي شيء.",
        "website": "تسوقي معنا بسهولة: صور واضحة لكل منتج، وصف تفصيلي، ودفع آمن من راحة منزلك.",
        "contact": "نحن هنا لمساعدتك:\n"
        "• الهاتف والواتساب: {phone}\n"
        "• البريد الإلكتروني: {email}\n"
        "• نموذج التواصل في هذه الصفحة",
        "default": "شكراً لسؤالك! يمكنني مساعدتك في:\n"
        "• المنتجات والأسعار والمخزون\n"
        "• الشحن والتوصيل\n"
        "• المقاسات المتوفرة\n"
        "• طرق الدفع وسياسة الاسترجاع\n"
        "• ساعات العمل والعروض\n"
        "كيف يمكنني مساعدتك اليوم؟",
    },
    "en": {
        "product": "We offer a range of elegant abayas: classic, embroidered and modern.\n"
        "Browse them all from the \"Products\" page.",
        "price": "Our abayas start from {min_price} SAR depending on design and fabric.\n"
        "Current prices and offers are on the products page.",
        "shipping": "We provide fast and secure shipping:\n"
        "• Free shipping on orders of {free_shipping} SAR or more\n"
        "• {shipping_fee} SAR shipping for other orders\n"
        "• Delivery in 3-5 business days across Saudi Arabia",
        "size": "Available sizes: {sizes}\n"
        "Pick your size on the product page. If you're unsure, we can help you choose.",
        "payment": "Available payment methods:\n"
        "• Cash on delivery\n"
        "• Cards through a secure payment page\n"
        "All transactions are encrypted.",
        "returns": "Return and exchange policy:\n"
        "• Returns within 14 days of receipt\n"
        "• Free exchange within 7 days\n"
        "• Items must be unused and in original condition",
        "hours": "Working hours:\n"
        "• Sunday - Thursday: 9am - 10pm\n"
        "• Friday - Saturday: 10am - 11pm\n"
        "Phone: {phone}",
        "location": "We are based in Jeddah, Saudi Arabia, and deliver across the Kingdom.",
        "quality": "Quality first: fine imported fabrics, precise tailoring and a quality guarantee on every piece.",
        "tracking": "After ordering you receive a confirmation email with your order number.\n"
        "Delivery takes 3-5 business days; contact us with the order number to follow up.",
        "discounts": "Current discounts are shown on each product card,\n"
        "and shipping is free on orders of {free_shipping} SAR or more.",
        "thanks": "Thank you! We're happy to help. Ask us anything else you need.",
        "website": "Shop with ease: clear photos, detailed descriptions and secure payment from home.",
        "contact": "We're here to help:\n"
        "• Phone / WhatsApp: {phone}\n"
        "• Email: {email}\n"
        "• The contact form on this page",
        "default": "Thanks for your question! I can help with:\n"
        "• Products, prices and stock\n"
        "• Shipping and delivery\n"
        "• Available sizes\n"
        "• Payment methods and returns\n"
        "• Working hours and offers\n"
        "How can I help you today?",
    },
}

QUICK_QUESTIONS = {"products": "products", "shipping": "shipping", "sizes": "size", "contact": "contact"}


def _lang(lang: Optional[str]) -> str:
    return lang if lang in ("ar", "en") else "ar"


def _name(product: Dict, lang: str) -> str:
    return product["name_ar"] if lang == "ar" else product["name_en"]


def _price_line(product: Dict, lang: str) -> str:
    final = format_money(product["final_price_cents"])
    was = format_money(product["price_cents"])
    if lang == "ar":
        if product["discount"]:
            return f"{final} ريال (بدلاً من {was}، خصم {product['discount']}%)"
        return f"{final} ريال"
    if product["discount"]:
        return f"{final} SAR (was {was}, {product['discount']}% off)"
    return f"{final} SAR"


def _stock_line(product: Dict, lang: str) -> str:
    stock = product["current_stock"]
    if stock > 0:
        return f"{stock} متوفر" if lang == "ar" else f"{stock} available"
    return "نفذت الكمية" if lang == "ar" else "Sold out"


def stock_status(lang: str, products: List[Dict]) -> str:
    lines = ["حالة المخزون" if lang == "ar" else "Stock status"]
    for i, product in enumerate(products, 1):
        lines.append(f"{i}. {_name(product, lang)}: {_stock_line(product, lang)}")
    return "\n".join(lines)


def product_list(lang: str, products: List[Dict]) -> str:
    lines = ["منتجاتنا" if lang == "ar" else "Our products"]
    for i, product in enumerate(products, 1):
        lines.append(f"{i}. {_name(product, lang)}: {_price_line(product, lang)} / {_stock_line(product, lang)}")
    return "\n".join(lines)


def product_details(lang: str, product: Dict) -> str:
    lines = [_name(product, lang)]
    if product["current_stock"] > 0:
        lines.append(("متوفر: {} قطعة" if lang == "ar" else "Available: {} pcs").format(product["current_stock"]))
        lines.append(("السعر: " if lang == "ar" else "Price: ") + _price_line(product, lang))
    else:
        lines.append("نفذت الكمية" if lang == "ar" else "Sold out")
    return "\n".join(lines)


def _mentions(text: str, product: Dict) -> bool:
    for name in (product["name_ar"], product["name_en"], product["sku"]):
        if name and name.lower() in text:
            return True
    return re.search(rf"(?<!\d){product['id']}(?!\d)", text) is not None


def inventory_reply(text: str, lang: str) -> Optional[Tuple[str, str]]:
    if any(kw in text for kw in STOCK_KEYWORDS):
        return "stock", stock_status(lang, db.list_products())
    if any(kw in text for kw in PRODUCT_KEYWORDS):
        return "products", product_list(lang, db.list_products())
    for product in db.list_products():
        if _mentions(text, product):
            return "product_details", product_details(lang, product)
    return None


def faq_reply(intent: str, lang: str) -> str:
    products = db.list_products()
    min_price = min((p["final_price_cents"] for p in products), default=0)
    return REPLIES[lang][intent].format(
        min_price=format_money(min_price),
        free_shipping=format_money(settings.FREE_SHIPPING_CENTS),
        shipping_fee=format_money(settings.SHIPPING_FEE_CENTS),
        sizes=", ".join(SIZES),
        phone=settings.SUPPORT_PHONE,
        email=settings.SUPPORT_EMAIL,
    )


def reply(message: str, lang: Optional[str] = None) -> Dict[str, str]:
    lang = _lang(lang)
    text = (message or "").strip().lower()
    if not text:
        return {"intent": "default", "reply": faq_reply("default", lang)}

    found = inventory_reply(text, lang)
    if found:
        return {"intent": found[0], "reply": found[1]}

    # Customers often type in the other language than the page they are on.
    other = "en" if lang == "ar" else "ar"
    for table in (FAQ_KEYWORDS[lang], FAQ_KEYWORDS[other]):
        for intent, keywords in table:
            if any(kw in text for kw in keywords):
                return {"intent": intent, "reply": faq_reply(intent, lang)}
    return {"intent": "default", "reply": faq_reply("default", lang)}


def quick_reply(question: str, lang: Optional[str] = None) -> Optional[Dict[str, str]]:
    lang = _lang(lang)
    intent = QUICK_QUESTIONS.get(question)
    if intent is None:
        return None
    if intent == "products":
        return {"intent": "products", "reply": product_list(lang, db.list_products())}
    return {"intent": intent, "reply": faq_reply(intent, lang)}
