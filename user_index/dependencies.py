from fastapi import Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from user_index.cache.layer import CacheLayer
from user_index.database import get_db
from user_index.jobs.scheduler import UserSyncScheduler
from user_index.services.search import PrefixSearchReader
from user_index.services.user_service import UserService


# Collaborators are built once in the lifespan and parked on app.state
def get_cache(request: Request) -> CacheLayer:
    return request.app.state.cache


def get_search_reader(request: Request) -> PrefixSearchReader:
    return request.app.state.search_reader


def get_scheduler(request: Request) -> UserSyncScheduler:
    return request.app.state.scheduler


def get_user_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheLayer = Depends(get_cache),
    search: PrefixSearchReader = Depends(get_search_reader),
    scheduler: UserSyncScheduler = Depends(get_scheduler),
) -> UserService:
    return UserService(db, cache, search, scheduler)
