import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from pydantic import ValidationError
from redis.asyncio import Redis, RedisError

from user_index.core.config import Settings
from user_index.core.errors import IndexReadError
from user_index.models import UserRecord

logger = logging.getLogger(__name__)

MAX_CODE_POINT = 0x10FFFF
SURROGATE_START = 0xD800
SURROGATE_END = 0xDFFF


def prefix_upper_bound(prefix: str) -> Optional[str]:
    """
    Smallest string greater than every string starting with ``prefix``.

    The last code point is incremented by one. A code point already at
    U+10FFFF is dropped and the increment carries into the one before it.
    Surrogates are skipped because they have no UTF-8 encoding, so Redis
    never holds them. Returns None when no upper bound exists (empty prefix
    or every code point at the maximum).

    UTF-8 byte order matches code point order, so the bound agrees with the
    byte-wise comparison Redis applies to sorted-set members.
    """
    chars = list(prefix)
    while chars:
        code_point = ord(chars.pop())
        if code_point < MAX_CODE_POINT:
            code_point += 1
            if SURROGATE_START <= code_point <= SURROGATE_END:
                code_point = SURROGATE_END + 1
            chars.append(chr(code_point))
            return "".join(chars)
    return None


def lex_range(prefix: str) -> tuple[str, str]:
    """ZRANGEBYLEX min/max arguments matching every member starting with prefix."""
    if not prefix:
        return "-", "+"
    upper = prefix_upper_bound(prefix)
    return f"[{prefix}", f"({upper}" if upper is not None else "+"


@dataclass(frozen=True)
class IndexKeys:
    emails_key: str = "users:emails"
    info_prefix: str = "user:"

    @classmethod
    def from_settings(cls, settings: Settings) -> "IndexKeys":
        return cls(
            emails_key=settings.users_emails_key,
            info_prefix=settings.user_info_prefix,
        )

    def info_key(self, email: str) -> str:
        return f"{self.info_prefix}{email}"


class EmailIndexStore:
    """
    Sorted-set email index plus one JSON record per email.

    Every member of the sorted set carries score 0, so Redis orders them
    lexicographically and prefix lookups become ZRANGEBYLEX scans.

    The index accelerates autocomplete but is never the source of truth:
    Redis errors are logged and counted, reads come back empty and writes
    report False instead of raising.
    """

    def __init__(self, redis: Redis, keys: IndexKeys | None = None):
        self.redis = redis
        self.keys = keys or IndexKeys()
        self.stats = {"errors": 0}

    def _serialize(self, record: UserRecord) -> str:
        return record.model_dump_json()

    def _deserialize(self, raw: str | None) -> UserRecord | None:
        if raw is None:
            return None
        try:
            return UserRecord.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable user record: {e}")
            return None

    def _failed(self, operation: str, error: RedisError) -> None:
        logger.error(f"Redis {operation} error: {error}")
        self.stats["errors"] += 1

    async def upsert(self, record: UserRecord) -> bool:
        """Write the record and its index entry together. Idempotent."""
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zadd(self.keys.emails_key, {record.email: 0})
                pipe.set(self.keys.info_key(record.email), self._serialize(record))
                await pipe.execute()
            return True
        except RedisError as e:
            self._failed("UPSERT", e)
            return False

    async def remove(self, email: str) -> bool:
        """Drop the index entry and the record. No-op when absent."""
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zrem(self.keys.emails_key, email)
                pipe.delete(self.keys.info_key(email))
                await pipe.execute()
            return True
        except RedisError as e:
            self._failed("REMOVE", e)
            return False

    async def range_by_prefix(self, prefix: str, limit: int) -> list[str]:
        if limit <= 0:
            return []
        lower, upper = lex_range(prefix)
        try:
            return await self.redis.zrangebylex(
                self.keys.emails_key, lower, upper, start=0, num=limit
            )
        except RedisError as e:
            self._failed("ZRANGEBYLEX", e)
            return []

    async def get_records(self, emails: list[str]) -> list[UserRecord | None]:
        """Batch lookup; positions line up with ``emails``."""
        if not emails:
            return []
        try:
            raw = await self.redis.mget([self.keys.info_key(e) for e in emails])
        except RedisError as e:
            self._failed("MGET", e)
            return []
        return [self._deserialize(value) for value in raw]

    async def all_emails(self, strict: bool = False) -> list[str]:
        """Every indexed email. With ``strict``, a Redis error raises IndexReadError."""
        try:
            return await self.redis.zrange(self.keys.emails_key, 0, -1)
        except RedisError as e:
            self._failed("ZRANGE", e)
            if strict:
                raise IndexReadError(f"Could not read the email index: {e}") from e
            return []

    async def count(self) -> int:
        try:
            return await self.redis.zcard(self.keys.emails_key)
        except RedisError as e:
            self._failed("ZCARD", e)
            return 0

    async def reconcile(
        self, records: Iterable[UserRecord], stale_emails: Iterable[str]
    ) -> bool:
        """
        Upsert every record and remove every stale email in one MULTI/EXEC,
        so readers never observe a half-applied rebuild.
        """
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for record in records:
                    pipe.zadd(self.keys.emails_key, {record.email: 0})
                    pipe.set(
                        self.keys.info_key(record.email), self._serialize(record)
                    )
                for email in stale_emails:
                    pipe.zrem(self.keys.emails_key, email)
                    pipe.delete(self.keys.info_key(email))
                await pipe.execute()
            return True
        except RedisError as e:
            self._failed("RECONCILE", e)
            return False
