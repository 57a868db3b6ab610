import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


class UserBase(SQLModel):
    """Base model with shared fields"""

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)


class User(UserBase, table=True):
    """Database model"""

    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    email: str = Field(max_length=255, unique=True, index=True)
    password_hash: str
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime | None = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class UserCreate(UserBase):
    """Schema for signing up a user"""

    password: str = Field(min_length=8, max_length=128)


class UserUpdate(SQLModel):
    """Schema for updating a user - all fields optional"""

    name: str | None = Field(default=None, max_length=100)


class UserResponse(UserBase):
    """Schema for user responses"""

    id: uuid.UUID
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class UserRecord(SQLModel):
    """Denormalized user fields kept in the cache tier, one per email."""

    id: str
    name: str
    email: str

    @classmethod
    def from_user(cls, user: User) -> "UserRecord":
        return cls(id=str(user.id), name=user.name, email=user.email)
