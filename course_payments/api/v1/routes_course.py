from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from course_payments.api.deps import get_access_resolver, get_checkout_service, get_locale
from course_payments.core.auth import Principal, get_current_principal, get_optional_principal
from course_payments.core.messages import access_message
from course_payments.db.session import get_db_session
from course_payments.schemas.access import AccessMessage, AccessReason, AccessResponse, EnrollmentResponse
from course_payments.services.access import AccessResolver
from course_payments.services.checkout import CheckoutService

router = APIRouter(prefix="/courses")


def format_price(price, currency: str | None) -> str:
    if price is None:
        return ""
    return f"{price:,.0f} {currency or 'EGP'}"


@router.get("/{course_id}/access", response_model=AccessResponse)
async def get_course_access(
        course_id: str,
        principal: Principal | None = Depends(get_optional_principal),
        locale: str = Depends(get_locale),
        db: AsyncSession = Depends(get_db_session),
        resolver: AccessResolver = Depends(get_access_resolver)):
    result = await resolver.resolve_access(db,
                                           principal.user_id if principal else None,
                                           principal.role if principal else None,
                                           course_id)
    price = format_price(result.price, result.currency) if result.reason == AccessReason.PAYMENT_REQUIRED else ""
    message = AccessMessage(**access_message(result.reason.value, locale, price=price))
    return AccessResponse(course_id=course_id, message=message, **result.model_dump())


@router.post("/{course_id}/enroll", response_model=EnrollmentResponse, status_code=201)
async def enroll_in_free_course(
        course_id: str,
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db_session),
        checkout: CheckoutService = Depends(get_checkout_service)):
    return await checkout.enroll_free_course(db, principal, course_id)
