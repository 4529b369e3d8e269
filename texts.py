TEXT = {
    "en": {
        "brand": "Mayasah Style",
        "tagline": "Abayas cut with care, made for every day",
        "cta": "Browse the collection",
        "nav_home": "Home",
        "nav_products": "Products",
        "nav_contact": "Contact",
        "language": "العربية",
        "featured": "Our Abayas",
        "add_to_cart": "Add to cart",
        "view": "View",
        "size": "Size",
        "quantity": "Quantity",
        "sold_out": "Sold out",
        "left": "left",
        "off": "off",
        "cart": "Cart",
        "checkout": "Checkout",
        "empty_cart": "Your cart is empty for now.",
        "remove": "Remove",
        "subtotal": "Subtotal",
        "vat": "VAT (15%)",
        "shipping": "Shipping",
        "free": "Free",
        "total": "Total",
        "currency": "SAR",
        "full_name": "Full name",
        "email": "Email",
        "phone": "Phone",
        "city": "City",
        "address": "Address",
        "zip": "Zip code",
        "notes": "Order notes",
        "payment_method": "Payment method",
        "pay_cash": "Cash on delivery",
        "pay_card": "Card (secure payment page)",
        "place_order": "Place order",
        "order_number": "Order number",
        "order_received": "Thank you, your order has been received",
        "order_paid": "Payment complete",
        "order_failed": "Payment was not completed",
        "order_pending": "Awaiting payment",
        "cancel": "Payment canceled",
        "back": "Back to store",
        "contact_title": "Contact us",
        "name": "Name",
        "subject": "Subject",
        "message": "Message",
        "send": "Send",
        "chat_title": "Smart assistant",
        "chat_placeholder": "Type your question...",
        "footer_note": "Here to help, shop with comfort and confidence",
        "err_empty_cart": "Your cart is empty.",
        "err_required": "Please fill in all required fields.",
        "err_email": "Please enter a valid email address.",
        "err_payment_method": "Please choose a payment method.",
        "err_out_of_stock": "Some items are out of stock.",
        "err_unknown_product": "Product not found.",
        "err_invalid_items": "Order items are not valid.",
        "err_payment_session": "We could not start the payment, please try again.",
        "only_available": "Only {stock} available",
        "unable_to_check": "Unable to check stock",
        "added_to_cart": "Added to cart",
        "contact_required": "Please fill in all required fields",
        "contact_sent": "Your message has been sent successfully",
        "contact_failed": "Failed to send message. Please try again or contact us.",
        "cookie_title": "We Use Cookies",
        "cookie_text": "We use essential cookies to operate our website and optional cookies to analyze visits and personalize advertisements.",
        "cookie_accept": "Accept All",
        "cookie_reject": "Reject All",
        "cookie_save": "Save Preferences",
        "cookie_analytics": "Analytics",
        "cookie_marketing": "Marketing",
        "cookie_saved": "Cookie preferences saved successfully",
        "admin_title": "Products dashboard",
        "admin_login": "Sign in",
        "admin_logout": "Sign out",
        "admin_password": "Password",
        "admin_bad_login": "Invalid login details",
        "admin_search": "Search products",
        "admin_all": "All",
        "admin_active": "Active products",
        "admin_low_stock": "Low stock",
        "admin_add": "Add product",
        "admin_save": "Save",
        "admin_delete": "Delete",
        "admin_saved": "Product saved",
        "admin_deleted": "Product deleted",
        "admin_save_failed": "Could not save the product",
        "admin_uploaded": "Image uploaded",
        "admin_upload_failed": "Could not upload the image",
        "admin_empty": "No products yet.",
    },
    "ar": {
        "brand": "مياسه ستيل",
        "tagline": "عبايات مفصّلة بعناية، لكل يوم",
        "cta": "تسوّق الآن",
        "nav_home": "الرئيسية",
        "nav_products": "المنتجات",
        "nav_contact": "تواصل",
        "language": "English",
        "featured": "عباياتنا",
        "add_to_cart": "أضف للسلة",
        "view": "عرض",
        "size": "القياس",
        "quantity": "الكمية",
        "sold_out": "نفذت الكمية",
        "left": "متبقي",
        "off": "خصم",
        "cart": "السلة",
        "checkout": "إتمام الطلب",
        "empty_cart": "السلة فاضية حالياً.",
        "remove": "حذف",
        "subtotal": "المجموع الفرعي",
        "vat": "ضريبة القيمة المضافة (15%)",
        "shipping": "الشحن",
        "free": "مجاني",
        "total": "المجموع الكلي",
        "currency": "ر.س",
        "full_name": "الاسم الكامل",
        "email": "البريد الإلكتروني",
        "phone": "رقم الهاتف",
        "city": "المدينة",
        "address": "العنوان",
        "zip": "الرمز البريدي",
        "notes": "ملاحظات الطلب",
        "payment_method": "طريقة الدفع",
        "pay_cash": "الدفع عند الاستلام",
        "pay_card": "البطاقة (صفحة دفع آمنة)",
        "place_order": "تأكيد الطلب",
        "order_number": "رقم الطلب",
        "order_received": "شكراً لك، تم استلام طلبك",
        "order_paid": "تم إكمال الدفع",
        "order_failed": "لم تكتمل عملية الدفع",
        "order_pending": "بانتظار الدفع",
        "cancel": "تم إلغاء الدفع",
        "back": "العودة للمتجر",
        "contact_title": "تواصل معنا",
        "name": "الاسم",
        "subject": "الموضوع",
        "message": "الرسالة",
        "send": "إرسال",
        "chat_title": "المساعد الذكي",
        "chat_placeholder": "اكتب سؤالك...",
        "footer_note": "موجودين دائمًا لخدمتك، تسوّق بثقة وراحة",
        "err_empty_cart": "السلة فارغة.",
        "err_required": "يرجى ملء جميع الحقول المطلوبة.",
        "err_email": "يرجى إدخال عنوان بريد إلكتروني صحيح.",
        "err_payment_method": "يرجى اختيار طريقة الدفع.",
        "err_out_of_stock": "بعض المنتجات غير متوفرة بالكمية المطلوبة.",
        "err_unknown_product": "المنتج غير موجود.",
        "err_invalid_items": "بيانات المنتجات في الطلب غير صحيحة.",
        "err_payment_session": "تعذر بدء عملية الدفع، حاول مرة أخرى.",
        "only_available": "متوفر فقط {stock} قطعة",
        "unable_to_check": "تعذر التحقق من المخزون",
        "added_to_cart": "تمت الإضافة للسلة",
        "contact_required": "يرجى ملء جميع الحقول المطلوبة",
        "contact_sent": "تم إرسال رسالتك بنجاح",
        "contact_failed": "فشل في إرسال الرسالة. يرجى المحاولة مرة أخرى أو التواصل معنا.",
        "cookie_title": "نحن نستخدم ملفات تعريف الارتباط",
        "cookie_text": "نستخدم ملفات تعريف الارتباط الضرورية لتشغيل موقعنا، وملفات اختيارية لتحليل الزيارات وتخصيص الإعلانات.",
        "cookie_accept": "قبول الكل",
        "cookie_reject": "رفض الكل",
        "cookie_save": "حفظ التفضيلات",
        "cookie_analytics": "تحليلية",
        "cookie_marketing": "تسويقية",
        "cookie_saved": "تم حفظ تفضيلات ملفات تعريف الارتباط بنجاح",
        "admin_title": "لوحة المنتجات",
        "admin_login": "تسجيل الدخول",
        "admin_logout": "تسجيل الخروج",
        "admin_password": "كلمة المرور",
        "admin_bad_login": "بيانات تسجيل الدخول غير صحيحة",
        "admin_search": "ابحث في المنتجات",
        "admin_all": "الكل",
        "admin_active": "المنتجات النشطة",
        "admin_low_stock": "مخزون منخفض",
        "admin_add": "إضافة منتج جديد",
        "admin_save": "حفظ",
        "admin_delete": "حذف",
        "admin_saved": "تم حفظ المنتج",
        "admin_deleted": "تم حذف المنتج",
        "admin_save_failed": "تعذر حفظ المنتج",
        "admin_uploaded": "تم رفع الصورة بنجاح",
        "admin_upload_failed": "تعذر رفع الصورة",
        "admin_empty": "لا توجد منتجات بعد.",
    },
}

SIZES = ["XS", "S", "M", "L", "XL", "XXL"]

CATEGORIES = [
    ("classic", "Classic", "كلاسيك"),
    ("embroidered", "Embroidered", "مطرزة"),
    ("modern", "Modern", "عصرية"),
]

PRODUCTS_SEED = [
    {
        "sku": "ABY-001",
        "name_en": "Classic Black Abaya",
        "name_ar": "عباية سوداء كلاسيكية",
        "price_cents": 29900,
        "discount": 15,
        "initial_stock": 50,
        "current_stock": 50,
        "image": "images/abaya1.jpg",
        "category": "classic",
        "badge": "",
        "description_en": "Timeless cut in soft crepe, for every occasion.",
        "description_ar": "قصة خالدة من الكريب الناعم تناسب كل المناسبات.",
    },
    {
        "sku": "ABY-002",
        "name_en": "Abaya with Golden Embroidery",
        "name_ar": "عباية مطرزة بالخيط الذهبي",
        "price_cents": 44900,
        "discount": 0,
        "initial_stock": 30,
        "current_stock": 30,
        "image": "images/abaya2.jpg",
        "category": "embroidered",
        "badge": "new",
        "description_en": "Hand-finished gold thread along the sleeves and hem.",
        "description_ar": "تطريز بالخيط الذهبي على الأكمام والأطراف.",
    },
    {
        "sku": "ABY-003",
        "name_en": "Modern Navy Abaya",
        "name_ar": "عباية كحلي بتصميم عصري",
        "price_cents": 34900,
        "discount": 0,
        "initial_stock": 40,
        "current_stock": 40,
        "image": "images/abaya3.jpg",
        "category": "modern",
        "badge": "",
        "description_en": "Clean lines in deep navy with a relaxed fit.",
        "description_ar": "خطوط بسيطة بلون كحلي عميق وقصة مريحة.",
    },
    {
        "sku": "ABY-004",
        "name_en": "Gray Abaya with Silver Details",
        "name_ar": "عباية رمادية بتفاصيل فضية",
        "price_cents": 39900,
        "discount": 10,
        "initial_stock": 35,
        "current_stock": 35,
        "image": "images/abaya4.jpg",
        "category": "modern",
        "badge": "",
        "description_en": "Soft gray with subtle silver trims.",
        "description_ar": "رمادي ناعم مع لمسات فضية هادئة.",
    },
]


def t(lang: str, key: str, **kwargs) -> str:
    table = TEXT.get(lang) or TEXT["ar"]
    value = table.get(key, key)
    return value.format(**kwargs) if kwargs else value
