from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from billing_backoffice.client import BillingClient
from billing_backoffice.exceptions import ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from billing_backoffice.models import UserInfo, UserRole
from billing_backoffice.security import decode_access_token

# Без заголовка Authorization отвечаем 401, а не 403 FastAPI.
bearer_scheme = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    sub: str | None = None  # 'sub' (subject) - id пользователя


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


def get_billing_client(request: Request) -> BillingClient:
    return request.app.state.billing_client


async def get_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> str:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Not authenticated")
    return credentials.credentials


async def get_current_user(
    token: Annotated[str, Depends(get_token)],
    client: Annotated[BillingClient, Depends(get_billing_client)],
) -> UserInfo:
    """
    "Сторож" защищённых эндпоинтов.

    1. Отклоняет токены из чёрного списка (после logout).
    2. Проверяет подпись и срок действия.
    3. Загружает пользователя по claim `sub`.
    """
    if await client.is_token_blacklisted(token):
        raise UnauthorizedError("Token has been revoked")
    payload = TokenData(**decode_access_token(token))
    if payload.sub is None:
        raise UnauthorizedError("Could not validate credentials")
    try:
        return await client.get_user(payload.sub)
    except (NotFoundError, ValidationError) as e:
        raise UnauthorizedError("Could not validate credentials") from e


async def require_admin(user: Annotated[UserInfo, Depends(get_current_user)]) -> UserInfo:
    if user.role is not UserRole.ADMIN:
        raise ForbiddenError("Administrator role required")
    return user
