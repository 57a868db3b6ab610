import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status

from user_index.core.config import SettingsDep
from user_index.core.errors import (
    NoFieldsToUpdateError,
    SyncLockUnavailableError,
    SyncQueueUnavailableError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from user_index.dependencies import get_scheduler, get_user_service
from user_index.jobs.scheduler import UserSyncScheduler
from user_index.models import UserCreate, UserRecord, UserResponse, UserUpdate
from user_index.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/search", response_model=list[UserRecord])
async def search_users(
    settings: SettingsDep,
    q: str = Query(default="", max_length=255),
    limit: int | None = Query(default=None, ge=1),
    service: UserService = Depends(get_user_service),
):
    """Email autocomplete"""
    limit = min(limit or settings.search_default_limit, settings.search_max_limit)
    return await service.search_users_by_email(q, limit)


@router.get("/email/{email}", response_model=UserResponse)
async def get_user_by_email(
    email: str, service: UserService = Depends(get_user_service)
):
    user = await service.get_user_by_email(email)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User with email {email} not found",
        )
    return user


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate, service: UserService = Depends(get_user_service)
):
    """Sign up a new user"""
    try:
        return await service.create_user(user_data)
    except UserAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    user_data: UserUpdate,
    service: UserService = Depends(get_user_service),
):
    try:
        return await service.update_user(user_id, user_data)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except NoFieldsToUpdateError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        )


@router.post("/sync", status_code=status.HTTP_202_ACCEPTED)
async def trigger_user_sync(
    scheduler: UserSyncScheduler = Depends(get_scheduler),
):
    """Ask for a full index rebuild; debounced and lock-guarded"""
    try:
        scheduled = await scheduler.schedule_full_sync()
    except (SyncLockUnavailableError, SyncQueueUnavailableError) as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)
        )
    return {"scheduled": scheduled}
