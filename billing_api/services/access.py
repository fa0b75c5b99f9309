# billing_api/services/access.py
"""
Caller identity and ownership scoping.

Authentication itself happens upstream; by the time a request reaches the
billing core all we need is who is acting and whether they are privileged.
"""

from dataclasses import dataclass
from typing import Optional

from billing_api import config


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str = config.DEFAULT_ROLE

    @property
    def is_privileged(self) -> bool:
        return self.role == config.ADMIN_ROLE


@dataclass(frozen=True)
class Scope:
    """Which bills a query may see: one owner's, or everyone's (owner_id=None)."""

    owner_id: Optional[str] = None

    @classmethod
    def for_actor(cls, actor: Actor) -> "Scope":
        if actor.is_privileged:
            return cls()
        return cls(owner_id=actor.user_id)

    @classmethod
    def owner(cls, owner_id: str) -> "Scope":
        return cls(owner_id=owner_id)

    def apply(self, stmt, owner_column):
        if self.owner_id is None:
            return stmt
        return stmt.where(owner_column == self.owner_id)
