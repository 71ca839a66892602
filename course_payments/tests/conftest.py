from decimal import Decimal
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from course_payments.core.auth import Principal, Role
from course_payments.core.config import Settings
from course_payments.db.base import Base
from course_payments.db.session import build_session_factory
from course_payments.models import Course, Payment, PaymentStatus
from course_payments.services.reconciliation import ReconciliationEngine
from course_payments.services.signature import SignatureVerifier
from course_payments.services.webhook_processor import WebhookProcessor
from course_payments.tests.helpers import (ADMIN_ID, HMAC_SECRET, OTHER_STUDENT_ID, PROFESSOR_ID, STUDENT_ID,
                                           FakeGateway)


@pytest.fixture
def test_settings():
    return Settings(
        ENV="test",
        DATABASE_URL="sqlite+aiosqlite://",
        PAYMOB_API_KEY="test_api_key",
        PAYMOB_HMAC_SECRET=HMAC_SECRET,
        PAYMOB_IFRAME_BASE_URL="https://gateway.test/iframes",
        PAYMOB_IFRAME_ID="777",
        PAYMOB_INTEGRATION_ID_ONLINE_CARD=11,
        PAYMOB_INTEGRATION_ID_MOBILE_WALLET=12,
        WEBHOOK_SIGNATURE_SCHEME="raw_body",
        GATEWAY_MAX_ATTEMPTS=2,
        GATEWAY_RETRY_WAIT_SECONDS=0,
        ABANDONED_PAYMENT_CLEANUP_MINUTES=30,
        RECONCILIATION_MAX_CAS_ATTEMPTS=3,
        CANCEL_STAMPS_COMPLETED_AT=True,
        DEFAULT_LOCALE="ar",
    )


@pytest.fixture
async def db_engine(tmp_path):
    """
    File-backed sqlite engine, one database per test.
    Function-scoped so it lives in the same event loop as the test.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments_test.db'}", echo=False, future=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine):
    """Factory to create several independent sessions in one test."""
    return build_session_factory(db_engine)


@pytest.fixture
async def db_session(db_session_factory):
    async with db_session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def engine(fake_gateway, test_settings):
    return ReconciliationEngine(fake_gateway, test_settings)


@pytest.fixture
def processor(engine):
    return WebhookProcessor(engine, SignatureVerifier(HMAC_SECRET))


@pytest.fixture
def student():
    return Principal(user_id=STUDENT_ID, role=Role.STUDENT, name="Sara Ahmed", email="sara@example.com")


@pytest.fixture
def other_student():
    return Principal(user_id=OTHER_STUDENT_ID, role=Role.STUDENT)


@pytest.fixture
def admin():
    return Principal(user_id=ADMIN_ID, role=Role.ADMIN)


@pytest.fixture
def professor():
    return Principal(user_id=PROFESSOR_ID, role=Role.PROFESSOR)


@pytest.fixture
async def seeded_courses(db_session_factory):
    """A paid published course, a free one and an unpublished draft, all owned by the same professor."""
    async with db_session_factory() as session:
        paid = Course(title="Organic Chemistry", price=Decimal("500.00"), currency="EGP",
                      is_published=True, professor_id=PROFESSOR_ID)
        free = Course(title="Study Skills", price=None, currency="EGP",
                      is_published=True, professor_id=PROFESSOR_ID)
        draft = Course(title="Physics Draft", price=Decimal("300.00"), currency="EGP",
                       is_published=False, professor_id=PROFESSOR_ID)
        session.add_all([paid, free, draft])
        await session.commit()
        return {"paid": paid.id, "free": free.id, "draft": draft.id}


@pytest.fixture
def make_payment(db_session_factory, seeded_courses):
    """Insert a payment directly in the given status and return its id."""
    async def _make_payment(status: PaymentStatus = PaymentStatus.PENDING, user_id: str = STUDENT_ID,
                            course_key: str = "paid", amount: Decimal = Decimal("500.00"), **fields):
        async with db_session_factory() as session:
            payment = Payment(user_id=user_id, course_id=seeded_courses[course_key], amount=amount,
                              currency="EGP", status=status, payment_method="CARD", **fields)
            session.add(payment)
            await session.commit()
            return payment.id
    return _make_payment
