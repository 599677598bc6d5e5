"""
Accounts: registration, login and profile lookup.

The admin capability is the `is_admin` column; it is never set through
registration and is only read back into the caller's Principal at request
time.
"""

from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from campus_market.core.logging import get_logger
from campus_market.core.security import create_access_token, hash_password, verify_password
from campus_market.models.user import User
from campus_market.schemas.user import UserCreate, UserLogin

logger = get_logger(__name__)


async def _find_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def register_user(db: AsyncSession, user_data: UserCreate) -> User:
    """Create an account. 409 if the email or username is taken."""
    result = await db.execute(
        select(User.email, User.username).where(
            or_(User.email == user_data.email, User.username == user_data.username)
        )
    )
    for email, username in result.all():
        if email == user_data.email:
            logger.warning("registration_failed", reason="email_exists", email=user_data.email)
            raise ConflictError("Email already registered")
        if username == user_data.username:
            logger.warning("registration_failed", reason="username_exists", username=user_data.username)
            raise ConflictError("Username already taken")

    user = User(
        email=user_data.email,
        username=user_data.username,
        full_name=user_data.full_name.strip() if user_data.full_name else None,
        hashed_password=hash_password(user_data.password),
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("user_registered", user_id=user.id, username=user.username)
    return user


async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> str:
    """Check credentials and issue a bearer token for the account."""
    user = await _find_by_email(db, login_data.email)

    if user is None or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_failed", email=login_data.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        logger.warning("login_refused_inactive", user_id=user.id)
        raise ForbiddenError("Account is deactivated")

    token = create_access_token(data={"sub": str(user.id)})
    logger.info("user_logged_in", user_id=user.id, is_admin=user.is_admin)
    return token


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user
