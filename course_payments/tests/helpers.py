import hashlib
import hmac
import json
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from course_payments.core.exceptions import GatewayError
from course_payments.services.gateway_client import GatewayCheckout

HMAC_SECRET = "test_hmac_secret"
PROFESSOR_ID = "prof-1"
STUDENT_ID = "student-1"
OTHER_STUDENT_ID = "student-2"
ADMIN_ID = "admin-1"


class FakeGateway:
    """Stands in for PaymobGatewayClient inside the services."""

    def __init__(self):
        self.calls = []
        self.fail = False
        self.closed = False

    async def create_checkout(self, merchant_order_id, amount_cents, currency, item_name, billing,
                              payment_method=None):
        self.calls.append({
            "merchant_order_id": merchant_order_id,
            "amount_cents": amount_cents,
            "currency": currency,
            "item_name": item_name,
            "billing": billing,
            "payment_method": payment_method,
        })
        if self.fail:
            raise GatewayError("gateway unavailable")
        order_id = str(9000 + len(self.calls))
        return GatewayCheckout(order_id=order_id,
                               payment_key=f"key-{order_id}",
                               redirect_url=f"https://gateway.test/iframes/777?payment_token=key-{order_id}")

    async def aclose(self):
        self.closed = True


def transaction_payload(merchant_order_id: str, amount_cents: int = 50000, success: bool = True,
                        pending: bool = False, refunded: bool = False, transaction_id: int = 1001,
                        currency: str = "EGP", source_type: str | None = "card") -> dict:
    obj = {
        "id": transaction_id,
        "amount_cents": amount_cents,
        "currency": currency,
        "success": success,
        "pending": pending,
        "is_refunded": refunded,
        "order": {"id": 5550, "merchant_order_id": merchant_order_id},
    }
    if source_type is not None:
        obj["source_data"] = {"type": source_type, "sub_type": "MasterCard", "pan": "2346"}
    return {"type": "TRANSACTION", "obj": obj}


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode()


def sign(body: bytes, secret: str = HMAC_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


async def load(session_factory: async_sessionmaker[AsyncSession], model, key):
    """Read a row through a fresh session, so the result reflects what was committed."""
    async with session_factory() as session:
        return await session.get(model, key)
