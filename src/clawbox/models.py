"""
Pydantic models for secrets, actors, and audit records.

The vault stores values encrypted; everything in this module is the
metadata that travels alongside them. None of these models ever holds a
plaintext secret value except ExportedSecret, which exists only for the
duration of an explicit export.
"""

from __future__ import annotations

import os
import socket
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Current UTC time truncated to whole seconds (storage precision)."""
    return datetime.now(timezone.utc).replace(microsecond=0)


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


class AccessLevel(IntEnum):
    """Ordered sensitivity tiers for a secret.

    The vault only records the level. Deciding what an actor may do with
    a Sensitive or Critical secret belongs to clawbox.policy.
    """

    PUBLIC = 0
    NORMAL = 1
    SENSITIVE = 2
    CRITICAL = 3

    @classmethod
    def parse(cls, value: Union[str, int, "AccessLevel"]) -> "AccessLevel":
        """Parse a level from its name (any case) or integer value.

        Raises:
            ValueError: If the value names no level.
        """
        if isinstance(value, AccessLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown access level: {value}") from None

    @property
    def label(self) -> str:
        return self.name.lower()


class SetOptions(BaseModel):
    """Options accepted by Vault.set()."""

    access: AccessLevel = AccessLevel.NORMAL
    tags: list[str] = Field(default_factory=list)
    note: Optional[str] = None
    ttl: Optional[timedelta] = None


class SecretInfo(BaseModel):
    """Secret metadata, never the value."""

    path: str
    access: AccessLevel = AccessLevel.NORMAL
    tags: list[str] = Field(default_factory=list)
    note: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    expires_at: Optional[datetime] = None
    created_by: str = "human"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at


class ExportedSecret(BaseModel):
    """A decrypted secret produced by Vault.export()."""

    path: str
    value: str
    access: AccessLevel = AccessLevel.NORMAL
    tags: list[str] = Field(default_factory=list)
    note: Optional[str] = None


# ---------------------------------------------------------------------------
# Actors and sources
# ---------------------------------------------------------------------------


class HumanActor(BaseModel):
    """A person at a device."""

    kind: Literal["human"] = "human"
    device: str = Field(default_factory=socket.gethostname)


class AIActor(BaseModel):
    """An AI agent acting on someone's behalf."""

    kind: Literal["ai"] = "ai"
    agent: str


class AppActor(BaseModel):
    """A local application."""

    kind: Literal["app"] = "app"
    name: str


Actor = Annotated[
    Union[HumanActor, AIActor, AppActor], Field(discriminator="kind")
]

_ACTOR_IDENTIFIER_FIELD = {"human": "device", "ai": "agent", "app": "name"}


def make_actor(actor_type: str, identifier: Optional[str] = None) -> Actor:
    """Build an actor variant from its type name and identifier.

    Raises:
        ValueError: If actor_type is not human, ai, or app.
    """
    actor_type = actor_type.lower()
    if actor_type == "human":
        return HumanActor(device=identifier) if identifier else HumanActor()
    if actor_type == "ai":
        return AIActor(agent=identifier or "unknown")
    if actor_type == "app":
        return AppActor(name=identifier or "unknown")
    raise ValueError(f"Unknown actor type: {actor_type}")


class ActorInfo(BaseModel):
    """Flattened actor as stored in the audit log."""

    actor_type: str
    identifier: str

    @classmethod
    def from_actor(cls, actor: Actor) -> "ActorInfo":
        field = _ACTOR_IDENTIFIER_FIELD[actor.kind]
        return cls(actor_type=actor.kind, identifier=getattr(actor, field))

    @classmethod
    def human(cls) -> "ActorInfo":
        return cls.from_actor(HumanActor())


class CLISource(BaseModel):
    """Operation issued from the command line."""

    kind: Literal["cli"] = "cli"
    pwd: str = Field(default_factory=os.getcwd)


class AppSource(BaseModel):
    kind: Literal["app"] = "app"


class APISource(BaseModel):
    kind: Literal["api"] = "api"


Source = Annotated[
    Union[CLISource, AppSource, APISource], Field(discriminator="kind")
]


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class Action(str, Enum):
    """Operations recorded in the audit log."""

    INIT = "init"
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    EXPORT = "export"
    UNLOCK = "unlock"
    LOCK = "lock"


class AuditEntry(BaseModel):
    """A single audit record.

    ``hash`` and ``prev_hash`` are assigned by the ledger when the entry
    is appended; entries built by callers leave them empty.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=utcnow)
    actor: ActorInfo = Field(default_factory=ActorInfo.human)
    action: Action
    key_path: str
    success: bool
    error_message: Optional[str] = None
    source: Source = Field(default_factory=AppSource)
    hash: Optional[str] = None
    prev_hash: Optional[str] = None


class AuditFilter(BaseModel):
    """Criteria for AuditLedger.query(). Unset fields match everything."""

    key_path: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    actor_type: Optional[str] = None
    action: Optional[Action] = None
    limit: Optional[int] = None
