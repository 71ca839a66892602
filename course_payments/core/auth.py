"""
Authenticated principal as forwarded by the upstream auth layer.

Session handling lives in front of this service; it forwards the resolved
user as ``X-User-*`` headers.
"""
from enum import Enum
from fastapi import Depends, Header
from pydantic import BaseModel
from course_payments.core.exceptions import AccessDenied, NotAuthenticated


class Role(str, Enum):
    STUDENT = "STUDENT"
    PROFESSOR = "PROFESSOR"
    ADMIN = "ADMIN"


class Principal(BaseModel):
    user_id: str
    role: Role
    name: str | None = None
    email: str | None = None
    phone: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


async def get_optional_principal(
        x_user_id: str | None = Header(None, alias="X-User-Id"),
        x_user_role: str | None = Header(None, alias="X-User-Role"),
        x_user_name: str | None = Header(None, alias="X-User-Name"),
        x_user_email: str | None = Header(None, alias="X-User-Email"),
        x_user_phone: str | None = Header(None, alias="X-User-Phone")) -> Principal | None:
    if not x_user_id or not x_user_role:
        return None
    try:
        role = Role(x_user_role.upper())
    except ValueError:
        raise NotAuthenticated()
    return Principal(user_id=x_user_id, role=role, name=x_user_name,
                     email=x_user_email, phone=x_user_phone)


async def get_current_principal(principal: Principal | None = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise NotAuthenticated()
    return principal


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise AccessDenied()
    return principal
