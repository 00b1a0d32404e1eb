"""
User Service — customer lookup/registration by email.

Users are created on their first purchase attempt and are idempotent by
email: registering the same address twice returns the original row
(the first name given wins).
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import User
from domain.errors import UserNotFound
from stores import user_store
from utils.validators import normalize_email, normalize_name

logger = logging.getLogger(__name__)


async def get_or_create_user(db: AsyncSession, name: str, email: str) -> User:
    """
    Return the user registered under `email`, creating it if needed.

    Raises:
        InvalidEmail, ValidationError (empty name)
    """
    email = normalize_email(email)
    name = normalize_name(name)

    user = await user_store.get_by_email(db, email)
    if user is not None:
        return user

    try:
        user = await user_store.insert(db, name=name, email=email)
        await db.commit()
    except IntegrityError:
        # Concurrent registration of the same email won the insert
        await db.rollback()
        user = await user_store.get_by_email(db, email)
        if user is None:
            raise
        return user

    logger.info(f"  👤 User registered: #{user.id} <{email}>")
    return user


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await user_store.get(db, user_id)
    if user is None:
        raise UserNotFound(user_id)
    return user
