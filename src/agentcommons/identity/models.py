"""
Identity Data Model

An identity is a stable fingerprint bound to an append-only history of
Ed25519 public keys, exactly one of which is active at any time.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyHistoryEntry(BaseModel):
    """One public key in an identity's history.

    Attributes:
        public_key: Lowercase hex Ed25519 public key.
        activated_at: When the key became active.
        superseded_at: When the key was rotated out, or None while active.
    """

    public_key: str = Field(..., description="Hex Ed25519 public key")
    activated_at: datetime = Field(default_factory=utcnow)
    superseded_at: Optional[datetime] = Field(default=None)

    @property
    def is_active(self) -> bool:
        return self.superseded_at is None


class Identity(BaseModel):
    """A persistent agent identity.

    The fingerprint is derived from the first bound key and never changes;
    ``current_public_key`` always equals the single active history entry.
    """

    fingerprint: str = Field(..., description="Stable identity fingerprint")
    current_public_key: str = Field(..., description="Active hex public key")
    key_history: list[KeyHistoryEntry] = Field(default_factory=list)
    last_rotation_timestamp: Optional[float] = Field(
        default=None, description="Delegation timestamp of the last committed rotation"
    )
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_single_active_key(self) -> "Identity":
        active = [entry for entry in self.key_history if entry.is_active]
        if len(active) != 1:
            raise ValueError("Identity must have exactly one active key")
        if active[0].public_key != self.current_public_key:
            raise ValueError("Active key history entry must match current_public_key")
        return self

    @classmethod
    def new(cls, fingerprint: str, public_key: str, now: Optional[datetime] = None) -> "Identity":
        """Create a fresh identity with a single active key."""
        now = now or utcnow()
        return cls(
            fingerprint=fingerprint,
            current_public_key=public_key,
            key_history=[KeyHistoryEntry(public_key=public_key, activated_at=now)],
            created_at=now,
        )

    @property
    def active_entry(self) -> KeyHistoryEntry:
        return next(entry for entry in self.key_history if entry.is_active)

    def has_key(self, public_key: str) -> bool:
        """Return True if *public_key* appears anywhere in the history."""
        return any(entry.public_key == public_key for entry in self.key_history)

    def rotated(
        self,
        new_public_key: str,
        now: datetime,
        rotation_timestamp: float,
    ) -> "Identity":
        """Return a copy with *new_public_key* active and the old key superseded.

        Store implementations use this to build the post-rotation record they
        commit atomically.
        """
        history = [
            entry.model_copy(update={"superseded_at": now}) if entry.is_active else entry
            for entry in self.key_history
        ]
        history.append(KeyHistoryEntry(public_key=new_public_key, activated_at=now))
        return self.model_copy(
            update={
                "current_public_key": new_public_key,
                "key_history": history,
                "last_rotation_timestamp": rotation_timestamp,
            }
        )


class DelegationProof(BaseModel):
    """A rotation request: the current key authorizes ``new_public_key``."""

    fingerprint: str
    new_public_key: str
    timestamp: Union[int, float]
    delegation_signature: str
