import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from course_payments.api.v1 import routes_admin, routes_course, routes_health, routes_payment, routes_webhook
from course_payments.core.config import Settings, get_settings
from course_payments.core.exceptions import PaymentError
from course_payments.core.messages import resolve_locale, translate
from course_payments.db.session import build_engine, build_session_factory, init_db
from course_payments.services.access import access_resolver
from course_payments.services.checkout import CheckoutService
from course_payments.services.enrollment import enrollment_materializer
from course_payments.services.gateway_client import PaymobGatewayClient
from course_payments.services.reconciliation import ReconciliationEngine
from course_payments.services.signature import SignatureVerifier
from course_payments.services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    logger.info(f"starting {settings.APP_NAME} ({settings.ENV})")
    if settings.ENV == "development":
        await init_db(app.state.db_engine)
    if not app.state.signature_verifier.configured:
        logger.critical("PAYMOB_HMAC_SECRET is not set, gateway webhooks will be refused")
    yield
    logger.info("shutting down")
    await app.state.gateway_client.aclose()
    await app.state.db_engine.dispose()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(settings: Settings | None = None,
               gateway_client: PaymobGatewayClient | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Course purchase reconciliation against the payment gateway",
        lifespan=lifespan
    )

    # wired once here and injected through app.state, no module-level engine or gateway client
    db_engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
    app.state.db_engine = db_engine
    app.state.session_factory = build_session_factory(db_engine)

    gateway_client = gateway_client or PaymobGatewayClient(settings)
    verifier = SignatureVerifier(settings.PAYMOB_HMAC_SECRET, settings.WEBHOOK_SIGNATURE_SCHEME)
    engine = ReconciliationEngine(gateway_client, settings, enrollment_materializer)
    app.state.settings = settings
    app.state.gateway_client = gateway_client
    app.state.signature_verifier = verifier
    app.state.reconciliation_engine = engine
    app.state.webhook_processor = WebhookProcessor(engine, verifier)
    app.state.checkout_service = CheckoutService(engine, settings)
    app.state.access_resolver = access_resolver

    for router in (routes_health.router, routes_webhook.router, routes_payment.router,
                   routes_course.router, routes_admin.router):
        app.include_router(router, prefix=settings.API_V1_PREFIX)

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, ex: PaymentError):
        locale = resolve_locale(request.headers.get("accept-language"), settings.DEFAULT_LOCALE)
        if ex.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {ex.message}")
        return JSONResponse(status_code=ex.status_code,
                            content={"error": ex.code, "message": translate(ex.code, locale, **ex.params)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, ex: Exception):
        # the trace stays in the logs, callers only get the generic message
        logger.error(f"unhandled error on {request.method} {request.url.path}: {ex}", exc_info=ex)
        locale = resolve_locale(request.headers.get("accept-language"), settings.DEFAULT_LOCALE)
        return JSONResponse(status_code=500,
                            content={"error": "internal_error", "message": translate("internal_error", locale)})

    @app.get("/")
    async def root():
        return {"message": f"{settings.APP_NAME} is running"}

    return app


app = create_app()
