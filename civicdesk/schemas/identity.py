"""
Canonical Identity Schema

Who is acting. Citizens report and comment; agents also triage.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class Role(str, Enum):
    """
    Identity roles. Permissions are granted per role in core.permissions.
    """
    CITIZEN = "citizen"     # Can report problems and comment
    AGENT = "agent"         # Municipality agent: can also change status


class Identity(BaseModel):
    """
    A registered person, as seen by the rest of the system.

    The email is fixed at registration. Only name and avatar change.
    """
    id: UUID = Field(
        ...,
        description="Unique identifier"
    )

    name: str = Field(
        ...,
        min_length=1,
        description="Public display name"
    )

    email: EmailStr = Field(
        ...,
        description="Login email (immutable after registration)"
    )

    role: Role = Field(
        default=Role.CITIZEN,
        description="Permission level"
    )

    avatar: Optional[str] = Field(
        default=None,
        description="Avatar image reference (http(s) URL or data: URL)"
    )

    created_at: datetime = Field(
        ...,
        description="When this identity registered"
    )

    schema_version: int = Field(
        default=1,
        description="Schema version"
    )


class StoredIdentity(Identity):
    """
    Identity plus credentials, as kept by the identity store.

    Never returned from the API.
    """
    password_hash: str = Field(
        ...,
        description="Argon2 password hash"
    )

    def public(self) -> Identity:
        return Identity(**self.model_dump(exclude={"password_hash"}))


class SessionRecord(BaseModel):
    """
    The logged-in identity, as persisted under the session key.

    Avatars are left out: data URLs are too large for a cookie.
    """
    identity_id: UUID
    name: str
    email: str
    role: Role

    @classmethod
    def for_identity(cls, identity: Identity) -> "SessionRecord":
        return cls(
            identity_id=identity.id,
            name=identity.name,
            email=identity.email,
            role=identity.role,
        )
