from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from ..enums import UserRole
from .user import UserPublic


class RegisterRequest(BaseModel):
    email: EmailStr
    username: str = Field(min_length=2, max_length=50)
    password: str = Field(min_length=6)
    role: UserRole = UserRole.STUDENT

    @field_validator("role")
    @classmethod
    def no_self_made_admins(cls, value: UserRole) -> UserRole:
        if value == UserRole.ADMIN:
            raise ValueError("Admin accounts cannot be self-registered.")
        return value


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserPublic
