from datetime import datetime
from uuid import uuid4

from sqlmodel import Field, SQLModel

from ..clock import utcnow
from ..enums import UserRole


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    email: str = Field(index=True, unique=True)
    username: str = Field(index=True, unique=True)
    hashed_password: str
    role: UserRole = Field(default=UserRole.STUDENT)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_privileged(self) -> bool:
        return self.role in (UserRole.TEACHER, UserRole.ADMIN)
