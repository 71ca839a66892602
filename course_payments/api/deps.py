from fastapi import Request
from course_payments.core.messages import resolve_locale
from course_payments.services.access import AccessResolver
from course_payments.services.checkout import CheckoutService
from course_payments.services.reconciliation import ReconciliationEngine
from course_payments.services.webhook_processor import WebhookProcessor


def get_reconciliation_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.reconciliation_engine


def get_webhook_processor(request: Request) -> WebhookProcessor:
    return request.app.state.webhook_processor


def get_checkout_service(request: Request) -> CheckoutService:
    return request.app.state.checkout_service


def get_access_resolver(request: Request) -> AccessResolver:
    return request.app.state.access_resolver


def get_locale(request: Request) -> str:
    return resolve_locale(request.headers.get("accept-language"), request.app.state.settings.DEFAULT_LOCALE)
