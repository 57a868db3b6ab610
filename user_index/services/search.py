from user_index.cache.index_store import EmailIndexStore
from user_index.models import UserRecord


class PrefixSearchReader:
    """Email autocomplete served from the sorted index.

    An empty result may just mean a cold cache or an outage; falling back to
    the database is up to the caller.
    """

    def __init__(self, store: EmailIndexStore):
        self.store = store

    async def search(self, prefix: str, limit: int) -> list[UserRecord]:
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")

        emails = await self.store.range_by_prefix(prefix, limit)
        if not emails:
            return []
        records = await self.store.get_records(emails)
        # A key whose record vanished mid-read is skipped, not reported
        return [record for record in records if record is not None]
