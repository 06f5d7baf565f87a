"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own shape.

Layer rule: no imports from api/, audit/, or fleet/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    """The fixed set of roles. Values are the wire and storage form."""

    ADMIN = "ADMIN"
    CONDUCTOR = "CONDUCTOR"  # driver
    CLIENTE = "CLIENTE"  # customer

    @property
    def authority(self) -> str:
        return f"ROLE_{self.value}"


@dataclass(frozen=True)
class Identity:
    """An authenticable principal.

    driver_id / client_id are weak, exclusive links to a Driver or Client
    profile. A CONDUCTOR without driver_id (or CLIENTE without client_id) is a
    valid transient state; ownership checks simply fail until it is linked.

    is_active=False is the soft-delete state. Tokens issued before the flag
    flipped stop working on the next request (auth/gate.py re-checks it).

    Frozen: an AuthContext attached to a request cannot be edited through it.
    Use dataclasses.replace() to derive a changed copy.
    """

    username: str
    role: Role
    hashed_password: str = field(default="", repr=False)
    id: int | None = None
    driver_id: int | None = None
    client_id: int | None = None
    is_active: bool = True
    created_at: str = ""


@dataclass(frozen=True)
class AuthContext:
    """Request-scoped security context attached once by the authentication gate.

    identity is None for anonymous requests. Frozen so nothing downstream can
    swap the principal after attachment.
    """

    identity: Identity | None = None
    authorities: tuple[str, ...] = ()

    @classmethod
    def anonymous(cls) -> AuthContext:
        return cls()

    @classmethod
    def for_identity(cls, identity: Identity) -> AuthContext:
        return cls(identity=identity, authorities=(identity.role.authority,))

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    @property
    def role(self) -> Role | None:
        return self.identity.role if self.identity is not None else None

    @property
    def username(self) -> str | None:
        return self.identity.username if self.identity is not None else None
