import logging
import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed
from course_payments.core.auth import Principal
from course_payments.core.config import Settings
from course_payments.core.exceptions import GatewayError

logger = logging.getLogger(__name__)


class BillingData(BaseModel):
    first_name: str = "مستخدم"
    last_name: str = "غير محدد"
    email: str = "noemail@example.com"
    phone_number: str = "+201000000000"
    apartment: str = "N/A"
    floor: str = "N/A"
    street: str = "N/A"
    building: str = "N/A"
    shipping_method: str = "N/A"
    postal_code: str = "N/A"
    city: str = "Cairo"
    state: str = "Cairo"
    country: str = "EG"

    @classmethod
    def from_principal(cls, principal: Principal | None) -> "BillingData":
        if principal is None:
            return cls()
        data = {}
        if principal.name:
            first, _, last = principal.name.strip().partition(" ")
            if first:
                data["first_name"] = first
            if last.strip():
                data["last_name"] = last.strip()
        if principal.email:
            data["email"] = principal.email
        if principal.phone:
            data["phone_number"] = principal.phone
        return cls(**data)


class GatewayCheckout(BaseModel):
    order_id: str
    payment_key: str
    redirect_url: str


class PaymobGatewayClient:
    """
    Outbound calls to the payment gateway.
    Built once at startup and handed to the services that need it.
    Every call has a bounded timeout and is retried once on transport errors.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.PAYMOB_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
        self._post_with_retry = retry(
            stop=stop_after_attempt(settings.GATEWAY_MAX_ATTEMPTS),
            wait=wait_fixed(settings.GATEWAY_RETRY_WAIT_SECONDS),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )(self._post_once)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post_once(self, path: str, payload: dict) -> httpx.Response:
        return await self._client.post(path, json=payload)

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            response = await self._post_with_retry(path, payload)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException:
            logger.error(f"gateway timeout on {path}")
            raise GatewayError(f"Payment gateway timed out on {path}")
        except httpx.HTTPStatusError as e:
            logger.error(f"gateway returned {e.response.status_code} on {path}: {e.response.text[:200]}")
            raise GatewayError(f"Payment gateway returned {e.response.status_code} on {path}")
        except httpx.HTTPError as e:
            logger.error(f"gateway request to {path} failed: {e}")
            raise GatewayError(f"Payment gateway request to {path} failed")
        except ValueError:
            logger.error(f"gateway returned a non-JSON body on {path}")
            raise GatewayError(f"Payment gateway returned an invalid response on {path}")

    @staticmethod
    def _require(data: dict, key: str, path: str):
        value = data.get(key)
        if value in (None, ""):
            raise GatewayError(f"Payment gateway response from {path} has no {key}")
        return value

    async def authenticate(self) -> str:
        data = await self._post("/auth/tokens", {"api_key": self.settings.PAYMOB_API_KEY})
        return self._require(data, "token", "/auth/tokens")

    async def create_order(self, auth_token: str, amount_cents: int, currency: str,
                           merchant_order_id: str, items: list[dict]) -> str:
        data = await self._post("/ecommerce/orders", {
            "auth_token": auth_token,
            "delivery_needed": False,
            "amount_cents": amount_cents,
            "currency": currency,
            "merchant_order_id": merchant_order_id,
            "items": items,
        })
        return str(self._require(data, "id", "/ecommerce/orders"))

    async def get_payment_key(self, auth_token: str, amount_cents: int, currency: str, order_id: str,
                              billing: BillingData, integration_id: int) -> str:
        data = await self._post("/acceptance/payment_keys", {
            "auth_token": auth_token,
            "amount_cents": amount_cents,
            "expiration": self.settings.PAYMENT_SESSION_EXPIRY_MINUTES * 60,
            "order_id": order_id,
            "billing_data": billing.model_dump(),
            "currency": currency,
            "integration_id": integration_id,
            "lock_order_when_paid": True,
        })
        return self._require(data, "token", "/acceptance/payment_keys")

    def integration_id_for(self, payment_method: str | None) -> int:
        # notifications report wallet payments as source_data.type "wallet"
        if (payment_method or "").upper() in ("MOBILE_WALLET", "WALLET"):
            return self.settings.PAYMOB_INTEGRATION_ID_MOBILE_WALLET
        return self.settings.PAYMOB_INTEGRATION_ID_ONLINE_CARD

    def redirect_url_for(self, payment_key: str) -> str:
        base = self.settings.PAYMOB_IFRAME_BASE_URL.rstrip("/")
        return f"{base}/{self.settings.PAYMOB_IFRAME_ID}?payment_token={payment_key}"

    async def create_checkout(self, merchant_order_id: str, amount_cents: int, currency: str,
                              item_name: str, billing: BillingData,
                              payment_method: str | None = None) -> GatewayCheckout:
        token = await self.authenticate()
        order_id = await self.create_order(token, amount_cents, currency, merchant_order_id, items=[{
            "name": item_name,
            "amount_cents": amount_cents,
            "description": item_name,
            "quantity": 1,
        }])
        payment_key = await self.get_payment_key(token, amount_cents, currency, order_id,
                                                 billing, self.integration_id_for(payment_method))
        logger.info(f"gateway order {order_id} created for merchant order {merchant_order_id}")
        return GatewayCheckout(order_id=order_id,
                               payment_key=payment_key,
                               redirect_url=self.redirect_url_for(payment_key))
