"""
Localized user-facing messages.

Error responses carry a stable ``error`` code plus a message picked from the
caller's ``Accept-Language``. Access messages mirror what the course page
shows for each access reason.
"""
SUPPORTED_LOCALES = ("ar", "en")

MESSAGES = {
    "ar": {
        "signature_invalid": "توقيع الإشعار غير صالح",
        "webhook_misconfigured": "إعدادات بوابة الدفع غير مكتملة",
        "payload_malformed": "بيانات الإشعار غير صالحة",
        "payment_not_found": "لم يتم العثور على عملية الدفع",
        "amount_mismatch": "المبلغ المدفوع لا يطابق قيمة الطلب",
        "already_processed": "تمت معالجة هذا الإشعار من قبل",
        "gateway_error": "حدث خطأ في الاتصال ببوابة الدفع، يرجى المحاولة مرة أخرى",
        "invalid_transition": "لا يمكن تنفيذ هذه العملية على الدفع في حالته الحالية ({current})",
        "enrollment_race_resolved": "تم التسجيل في الدورة بالفعل",
        "concurrent_modification": "يتم تحديث عملية الدفع حالياً، يرجى المحاولة مرة أخرى",
        "not_authenticated": "يجب تسجيل الدخول أولاً",
        "access_denied": "ليس لديك صلاحية للوصول إلى هذا المورد",
        "course_not_found": "الدورة غير موجودة",
        "enrollment_free_course": "هذه الدورة مجانية ولا تحتاج إلى دفع",
        "enrollment_already_enrolled": "أنت مسجل في هذه الدورة بالفعل",
        "enrollment_own_course": "لا يمكنك شراء دورتك الخاصة",
        "enrollment_not_published": "هذه الدورة غير متاحة حالياً",
        "enrollment_role_not_allowed": "التسجيل في الدورات متاح للطلاب فقط",
        "enrollment_payment_required": "هذه دورة مدفوعة ويجب شراؤها أولاً",
        "pending_payment_exists": "لديك عملية دفع معلقة لهذه الدورة، يرجى الانتظار {minutes} دقيقة أو إكمال الدفع",
        "webhook_event_not_found": "لم يتم العثور على الإشعار",
        "internal_error": "حدث خطأ غير متوقع",
    },
    "en": {
        "signature_invalid": "Invalid notification signature",
        "webhook_misconfigured": "Payment gateway is not configured",
        "payload_malformed": "Malformed notification payload",
        "payment_not_found": "Payment not found",
        "amount_mismatch": "Paid amount does not match the order",
        "already_processed": "Notification already processed",
        "gateway_error": "Could not reach the payment gateway, please try again",
        "invalid_transition": "This action is not allowed while the payment is {current}",
        "enrollment_race_resolved": "Already enrolled in this course",
        "concurrent_modification": "The payment is being updated, please retry",
        "not_authenticated": "Please sign in first",
        "access_denied": "You are not allowed to access this resource",
        "course_not_found": "Course not found",
        "enrollment_free_course": "This course is free and needs no payment",
        "enrollment_already_enrolled": "You are already enrolled in this course",
        "enrollment_own_course": "You cannot buy your own course",
        "enrollment_not_published": "This course is not available right now",
        "enrollment_role_not_allowed": "Only students can enroll in courses",
        "enrollment_payment_required": "This is a paid course, purchase it first",
        "pending_payment_exists": "You have a pending payment for this course, wait {minutes} minutes or complete it",
        "webhook_event_not_found": "Notification not found",
        "internal_error": "An unexpected error occurred",
    },
}

ACCESS_MESSAGES = {
    "ar": {
        "enrolled": {
            "title": "مرحباً بك في الدورة",
            "description": "يمكنك الآن الوصول إلى جميع دروس الدورة ومتابعة تقدمك.",
        },
        "free_course": {
            "title": "دورة مجانية",
            "description": "هذه الدورة مجانية ومتاحة لجميع المستخدمين.",
            "action_text": "ابدأ التعلم",
            "action_type": "enrollment",
        },
        "admin_access": {
            "title": "وصول إداري",
            "description": "لديك صلاحية الوصول الكامل لهذه الدورة كمدير للنظام.",
        },
        "professor_owns": {
            "title": "دورتك التعليمية",
            "description": "هذه دورتك الخاصة. يمكنك إدارة المحتوى ومتابعة الطلاب.",
        },
        "payment_required": {
            "title": "دورة مدفوعة",
            "description": "هذه دورة مدفوعة بسعر {price}. يجب شراء الدورة للوصول إلى المحتوى.",
            "action_text": "اشتري بـ {price}",
            "action_type": "payment",
        },
        "not_published": {
            "title": "دورة غير منشورة",
            "description": "هذه الدورة غير متاحة حالياً. يرجى المحاولة لاحقاً.",
            "action_text": "تواصل مع الدعم",
            "action_type": "contact",
        },
        "not_authenticated": {
            "title": "يجب تسجيل الدخول",
            "description": "يجب تسجيل الدخول أولاً للوصول إلى محتوى الدورة.",
            "action_text": "تسجيل الدخول",
            "action_type": "login",
        },
        "not_found": {
            "title": "الدورة غير موجودة",
            "description": "لم يتم العثور على الدورة المطلوبة.",
            "action_text": "تصفح الدورات",
            "action_type": "contact",
        },
    },
    "en": {
        "enrolled": {
            "title": "Welcome to the course",
            "description": "You can now access every lesson and track your progress.",
        },
        "free_course": {
            "title": "Free course",
            "description": "This course is free and open to every user.",
            "action_text": "Start learning",
            "action_type": "enrollment",
        },
        "admin_access": {
            "title": "Administrator access",
            "description": "You have full access to this course as an administrator.",
        },
        "professor_owns": {
            "title": "Your course",
            "description": "This is your course. You can manage content and follow students.",
        },
        "payment_required": {
            "title": "Paid course",
            "description": "This course costs {price}. Purchase it to access the content.",
            "action_text": "Buy for {price}",
            "action_type": "payment",
        },
        "not_published": {
            "title": "Course not published",
            "description": "This course is not available right now. Please try again later.",
            "action_text": "Contact support",
            "action_type": "contact",
        },
        "not_authenticated": {
            "title": "Sign in required",
            "description": "Sign in first to access the course content.",
            "action_text": "Sign in",
            "action_type": "login",
        },
        "not_found": {
            "title": "Course not found",
            "description": "The requested course could not be found.",
            "action_text": "Browse courses",
            "action_type": "contact",
        },
    },
}


def resolve_locale(accept_language: str | None, default: str = "ar") -> str:
    """Pick the first supported language tag from an Accept-Language header."""
    if not accept_language:
        return default
    for part in accept_language.split(","):
        tag = part.split(";")[0].strip().lower()
        primary = tag.split("-")[0]
        if primary in SUPPORTED_LOCALES:
            return primary
    return default


def translate(code: str, locale: str, **params) -> str:
    catalog = MESSAGES.get(locale, MESSAGES["en"])
    template = catalog.get(code) or MESSAGES["en"].get(code) or code
    try:
        return template.format(**params)
    except KeyError:
        return template


def access_message(reason: str, locale: str, price: str = "") -> dict:
    catalog = ACCESS_MESSAGES.get(locale, ACCESS_MESSAGES["en"])
    entry = catalog.get(reason, catalog["not_found"])
    return {key: value.format(price=price) for key, value in entry.items()}
