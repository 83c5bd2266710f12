from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from billing_backoffice.config import AuthConfig, get_settings
from billing_backoffice.exceptions import UnauthorizedError

# Контекст для хеширования паролей (pbkdf2_sha256, без внешнего backend).
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def get_password_hash(password: str) -> str:
    """Создает хеш из обычного пароля."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, auth: Optional[AuthConfig] = None) -> str:
    """Создает новый JWT-токен."""
    auth = auth or get_settings().auth
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=auth.access_token_expire_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, auth.secret_key, algorithm=auth.algorithm)


def decode_access_token(token: str, auth: Optional[AuthConfig] = None) -> dict:
    auth = auth or get_settings().auth
    try:
        return jwt.decode(token, auth.secret_key, algorithms=[auth.algorithm])
    except JWTError as e:
        raise UnauthorizedError("Could not validate credentials") from e


def token_expiry(token: str, default_ttl: timedelta = timedelta(hours=1)) -> datetime:
    """
    Момент истечения токена из claim `exp` без проверки подписи.
    Если claim отсутствует или токен не разбирается, берём now + default_ttl.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        claims = {}
    exp = claims.get("exp")
    if isinstance(exp, (int, float)):
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    return datetime.now(timezone.utc) + default_ttl
