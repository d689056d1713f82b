"""
Authentication service for dashboard accounts and API keys
"""
from datetime import datetime, timezone, timedelta
from typing import Optional
import logging
import secrets

from jose import jwt, JWTError
import bcrypt
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from gateway.core.config import settings
from gateway.models import User, APIKey

logger = logging.getLogger(__name__)


def generate_api_key() -> str:
    """
    Generate a new secret key.

    32 random bytes = 64 hex characters after the prefix.
    """
    return f"{settings.API_KEY_PREFIX}{secrets.token_hex(32)}"


class AuthService:
    """Passwords, session tokens and key issuance"""

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(
            password.encode('utf-8'),
            bcrypt.gensalt()
        ).decode('utf-8')

    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
        to_encode.update({"exp": expire, "type": "access"})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> Optional[dict]:
        try:
            return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            return None

    @staticmethod
    async def authenticate_user(db: AsyncSession, email: str, password: str) -> Optional[User]:
        user = await AuthService.get_user_by_email(db, email)

        if not user or not user.hashed_password:
            logger.warning(f"Login failed, unknown user: {email}")
            return None

        if not AuthService.verify_password(password, user.hashed_password):
            logger.warning(f"Login failed, bad password: {email}")
            return None

        return user

    @staticmethod
    async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def create_user(
        db: AsyncSession,
        email: str,
        password: str,
        name: Optional[str] = None,
        is_admin: bool = False,
    ) -> User:
        user = User(
            email=email,
            name=name,
            hashed_password=AuthService.hash_password(password),
            is_admin=is_admin,
        )
        db.add(user)
        await db.flush()
        return user

    @staticmethod
    async def create_api_key(
        db: AsyncSession,
        user: User,
        name: str,
        rate_limit: Optional[int] = None,
    ) -> APIKey:
        """Issue a new key for a user. The full key is only ever returned here."""
        api_key = APIKey(
            user_id=user.id,
            key=generate_api_key(),
            name=name,
            rate_limit=rate_limit or settings.DEFAULT_KEY_RATE_LIMIT,
        )
        db.add(api_key)
        await db.flush()
        return api_key

    @staticmethod
    def create_token(user: User) -> str:
        return AuthService.create_access_token({"sub": user.id, "email": user.email})


async def seed_admin_user(db: AsyncSession) -> Optional[User]:
    """
    Create the administrator account from ADMIN_EMAIL / ADMIN_PASS.

    Does nothing when ADMIN_PASS is unset or the account already exists.
    A new admin gets one default API key.
    """
    password = settings.admin_password
    if not password:
        return None

    existing = await AuthService.get_user_by_email(db, settings.ADMIN_EMAIL)
    if existing:
        return existing

    user = await AuthService.create_user(
        db,
        email=settings.ADMIN_EMAIL,
        password=password,
        name=settings.ADMIN_NAME,
        is_admin=True,
    )
    await AuthService.create_api_key(db, user, name="Default Key")
    await db.commit()
    logger.info(f"Created admin user: {settings.ADMIN_EMAIL}")
    return user
