# billing_api/api/deps.py

import re
from typing import Optional

from fastapi import Header

from billing_api import config
from billing_api.errors import AuthenticationError, ValidationError
from billing_api.services.access import Actor, Scope

ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    """
    Identity of the caller, as established by the authentication layer in
    front of this service (X-User-Id / X-User-Role).
    """
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError("Access denied. No user identity provided.")
    return Actor(user_id=x_user_id.strip(), role=(x_user_role or config.DEFAULT_ROLE).strip())


def scope_for(actor: Actor) -> Scope:
    return Scope.for_actor(actor)


def check_id(value: str, label: str = "bill") -> str:
    if not ID_PATTERN.match(value or ""):
        raise ValidationError(f"Invalid {label} ID format")
    return value
