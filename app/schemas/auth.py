from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class AuthenticatedUser(BaseModel):
    id: str
    email: str = ""

    @classmethod
    def from_supabase(cls, user: Any) -> "AuthenticatedUser":
        return cls(id=str(user.id), email=getattr(user, "email", None) or "")


class UserProfile(BaseModel):
    id: str
    email: str = ""
    role: Role = Role.USER
    name: str | None = None
    phone: str | None = None

    @classmethod
    def default_for(cls, user: AuthenticatedUser) -> "UserProfile":
        return cls(id=user.id, email=user.email, role=Role.USER)

    @classmethod
    def from_row(cls, row: dict, user: AuthenticatedUser) -> "UserProfile":
        """Normalize a `user_profiles` row; unknown roles fall back to `user`."""
        try:
            role = Role(row.get("role") or Role.USER)
        except ValueError:
            role = Role.USER
        return cls(
            id=user.id,
            email=row.get("email") or user.email,
            role=role,
            name=row.get("name"),
            phone=row.get("phone"),
        )

    def to_row(self) -> dict:
        return {
            "user_id": self.id,
            "email": self.email,
            "role": self.role.value,
            "name": self.name,
            "phone": self.phone,
        }


class SessionSnapshot(BaseModel):
    state: SessionState
    user: AuthenticatedUser | None = None
    profile: UserProfile | None = None
    is_admin: bool = False
    loading: bool = False
    loading_error: bool = False


class AuthSession(BaseModel):
    access_token: str = ""
    refresh_token: str = ""
    token_type: str = "bearer"
    user: AuthenticatedUser | None = None
    profile: UserProfile | None = None
    is_admin: bool = False


class StatusOut(BaseModel):
    status: str
    detail: str | None = Field(None)
