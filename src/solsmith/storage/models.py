"""Persisted user and keypair records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from solsmith.core.types import PatternKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyRecord(BaseModel):
    """One generated keypair. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    public_identifier: str
    secret_material: str
    created_at: datetime = Field(default_factory=utcnow)
    pattern_kind: PatternKind
    pattern_value: str


class UserIdentity(BaseModel):
    """Sender details used to create or refresh a profile."""

    user_id: str
    display_name: str = "User"
    username: Optional[str] = None
    language_tag: str = "en"


class UserProfile(BaseModel):
    user_id: str
    display_name: str = "User"
    username: Optional[str] = None
    language_tag: str = "en"
    created_at: datetime = Field(default_factory=utcnow)
    last_interaction_at: datetime = Field(default_factory=utcnow)
    wallets: list[KeyRecord] = Field(default_factory=list)

    @classmethod
    def from_identity(cls, identity: UserIdentity) -> UserProfile:
        now = utcnow()
        return cls(
            user_id=identity.user_id,
            display_name=identity.display_name,
            username=identity.username,
            language_tag=identity.language_tag,
            created_at=now,
            last_interaction_at=now,
        )

    def has_wallet(self, public_identifier: str) -> bool:
        return any(w.public_identifier == public_identifier for w in self.wallets)
