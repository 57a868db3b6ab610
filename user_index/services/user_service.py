import asyncio
import hashlib
import logging
import uuid

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from user_index.cache.layer import CacheLayer
from user_index.core.errors import (
    NoFieldsToUpdateError,
    SyncQueueUnavailableError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from user_index.jobs.scheduler import UserSyncScheduler
from user_index.models import (
    User,
    UserCreate,
    UserRecord,
    UserResponse,
    UserUpdate,
    get_utc_now,
)
from user_index.services.search import PrefixSearchReader

logger = logging.getLogger(__name__)


def _pw_prehash(password: str) -> bytes:
    # bcrypt truncates at 72 bytes; a SHA-256 digest keeps every byte significant
    return hashlib.sha256(password.encode("utf-8")).digest()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_pw_prehash(password), bcrypt.gensalt()).decode("utf-8")


def email_cache_key(email: str) -> str:
    return f"user:email:{email}"


def escape_like(text: str) -> str:
    """Make ``%`` and ``_`` match literally in a LIKE pattern escaped with ``\\``."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class UserService:
    def __init__(
        self,
        db: AsyncSession,
        cache: CacheLayer,
        search: PrefixSearchReader,
        scheduler: UserSyncScheduler,
    ):
        self.db = db
        self.cache = cache
        self.search = search
        self.scheduler = scheduler

    async def _notify_user_changed(self, user: User) -> None:
        # The user row is already committed; a queue outage only delays the index
        try:
            await self.scheduler.schedule_user_sync(UserRecord.from_user(user))
        except SyncQueueUnavailableError as e:
            logger.warning(f"User {user.email} not queued for index sync: {e}")

    async def _find_by_email(self, email: str) -> User | None:
        result = await self.db.exec(select(User).where(User.email == email))
        return result.first()

    async def create_user(self, data: UserCreate) -> User:
        if await self._find_by_email(data.email):
            raise UserAlreadyExistsError(f"Email {data.email} already exists")

        password_hash = await asyncio.to_thread(hash_password, data.password)
        user = User(name=data.name, email=data.email, password_hash=password_hash)
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError as e:
            # A concurrent signup won the unique email index
            await self.db.rollback()
            raise UserAlreadyExistsError(f"Email {data.email} already exists") from e
        await self.db.refresh(user)

        await self._notify_user_changed(user)
        return user

    async def get_user_by_email(self, email: str) -> UserResponse | None:
        logger.debug(f"Fetching user by email: {email}")

        async def loader():
            user = await self._find_by_email(email)
            if user is None:
                return None
            return UserResponse.model_validate(user).model_dump(mode="json")

        value = await self.cache.get(email_cache_key(email), loader=loader)
        return UserResponse.model_validate(value) if value is not None else None

    async def update_user(self, user_id: uuid.UUID, data: UserUpdate) -> User:
        fields = data.model_dump(exclude_unset=True, exclude_none=True)
        if "name" in fields:
            fields["name"] = fields["name"].strip()
            if not fields["name"]:
                raise NoFieldsToUpdateError("Name must not be blank")
        if not fields:
            raise NoFieldsToUpdateError("No fields to update")

        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError(f"User with id {user_id} not found")

        user.sqlmodel_update(fields)
        user.updated_at = get_utc_now()
        await self.db.commit()
        await self.db.refresh(user)

        await self.cache.delete(email_cache_key(user.email))
        await self._notify_user_changed(user)
        return user

    async def search_users_by_email(self, query: str, limit: int = 10) -> list[UserRecord]:
        """
        Prefix matches from the index, or a case-insensitive substring scan
        of the users table when the index has nothing (cold cache, outage).
        """
        if not query:
            return []

        records = await self.search.search(query, limit)
        if records:
            return records

        logger.debug(f"Index returned nothing for {query!r}, querying database")
        pattern = f"%{escape_like(query)}%"
        result = await self.db.exec(
            select(User)
            .where(col(User.email).ilike(pattern, escape="\\"))
            .order_by(User.email)
            .limit(limit)
        )
        return [UserRecord.from_user(user) for user in result.all()]
