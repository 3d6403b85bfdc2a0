from enum import Enum
from typing import Dict, FrozenSet

from pydantic import BaseModel

from courier_quotes.core.errors import PermissionDenied


class Actor(BaseModel):
    """The authenticated caller. Authentication itself happens upstream."""

    id: str
    role: str
    name: str | None = None


class Capability(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    SEND = "send"
    CONVERT = "convert"
    DELETE = "delete"
    VIEW_PRICING = "view_pricing"
    EDIT_PRICING = "edit_pricing"
    RECONCILE = "reconcile"


QUOTE_EDITORS = frozenset({"admin", "superadmin", "sales"})

ROLE_CAPABILITIES: Dict[Capability, FrozenSet[str]] = {
    Capability.CREATE: QUOTE_EDITORS,
    Capability.EDIT: QUOTE_EDITORS,
    Capability.SEND: QUOTE_EDITORS,
    Capability.CONVERT: QUOTE_EDITORS,
    Capability.DELETE: frozenset({"admin", "superadmin"}),
    Capability.VIEW_PRICING: frozenset({"admin", "superadmin", "sales", "finance"}),
    Capability.EDIT_PRICING: QUOTE_EDITORS,
    Capability.RECONCILE: frozenset({"admin", "superadmin"}),
}


def has_capability(actor: Actor, capability: Capability) -> bool:
    # Any authenticated actor may view quotes
    if capability is Capability.VIEW:
        return bool(actor.id)
    return actor.role in ROLE_CAPABILITIES.get(capability, frozenset())


def require_capability(actor: Actor, capability: Capability) -> None:
    if not has_capability(actor, capability):
        raise PermissionDenied(capability.value, actor.role)
