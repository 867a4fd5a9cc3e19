from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .common import UtcDatetime, new_id


UserRole = Literal["donor", "hospital", "blood_bank", "admin"]
HOSPITAL_ROLES: tuple[str, ...] = ("hospital", "blood_bank")


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(min_length=2)
    role: UserRole = Field(default="donor")
    phone_number: str | None = Field(default=None, pattern=r"^\+?[\d\s\-()]+$")

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class User(BaseModel):
    """Stored account; ``password`` holds the bcrypt hash."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id", default_factory=new_id)
    email: EmailStr
    name: str
    password: str
    role: UserRole
    phone_number: str | None = None
    is_active: bool = True
    last_login: UtcDatetime | None = None
    created_at: UtcDatetime

    def public(self) -> "UserPublic":
        return UserPublic.model_validate(self.model_dump(exclude={"password"}))


class UserPublic(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    email: EmailStr
    name: str
    role: UserRole
    phone_number: str | None = None
    is_active: bool = True
    last_login: UtcDatetime | None = None
    created_at: UtcDatetime


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuthResponse(Token):
    user: UserPublic
    message: str = "Authenticated"
