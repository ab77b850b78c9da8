"""
Capability evaluator for console actions.

Three tiers, first match wins:
1. administrators are always allowed
2. a resource mask, when present, decides alone (it shadows the actor mask)
3. otherwise the actor's own mask decides

The evaluator is a pure function: no I/O, no caching, no validation.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union


class Capability(enum.IntFlag):
    """Project permission bits."""

    NONE = 0
    RUN_TASKS = 1
    UPDATE_PROJECT = 2
    MANAGE_RESOURCES = 4
    MANAGE_USERS = 8
    ALL = RUN_TASKS | UPDATE_PROJECT | MANAGE_RESOURCES | MANAGE_USERS


# single-bit members in bit order
CAPABILITIES: tuple[Capability, ...] = (
    Capability.RUN_TASKS,
    Capability.UPDATE_PROJECT,
    Capability.MANAGE_RESOURCES,
    Capability.MANAGE_USERS,
)

_DOMAIN = int(Capability.ALL)

CapabilityLike = Union[Capability, int]
MaskLike = Union[int, Iterable[Union[str, int]], None]


@dataclass(frozen=True)
class Actor:
    is_admin: bool = False
    permission_mask: int = 0
    user_id: Optional[str] = None


@dataclass(frozen=True)
class Resource:
    # None: no override, defer to the actor mask. 0: explicitly nothing.
    permission_mask: Optional[int] = None
    kind: Optional[str] = None
    ident: Optional[str] = None


ANONYMOUS = Actor(is_admin=False, permission_mask=0, user_id=None)
NO_RESOURCE = Resource()


@dataclass(frozen=True)
class Decision:
    allow: bool
    tier: str
    capability: int
    held: Optional[int] = None

    def __bool__(self) -> bool:
        return self.allow


def evaluate(actor: Actor, resource: Optional[Resource], capability: CapabilityLike) -> Decision:
    need = int(capability)
    if actor.is_admin:
        return Decision(allow=True, tier="admin", capability=need)

    if resource is not None and resource.permission_mask is not None:
        held = int(resource.permission_mask) & _DOMAIN
        return Decision(allow=(held & need) == need, tier="resource", capability=need, held=held)

    held = int(actor.permission_mask) & _DOMAIN
    return Decision(allow=(held & need) == need, tier="actor", capability=need, held=held)


def can_perform(actor: Actor, resource: Optional[Resource], capability: CapabilityLike) -> bool:
    """Return True when ``actor`` holds every bit of ``capability`` for ``resource``."""
    return evaluate(actor, resource, capability).allow


def parse_capability(name: str) -> Capability:
    """Resolve a capability by case-insensitive name (``"manage_users"``)."""
    key = (name or "").strip().upper().replace("-", "_")
    try:
        cap = Capability[key]
    except KeyError:
        raise ValueError(f"unknown_capability:{name}") from None
    if cap == Capability.NONE:
        raise ValueError(f"unknown_capability:{name}")
    return cap


def to_mask(value: MaskLike) -> int:
    """Fold an int, or an iterable of names/ints, into an in-domain mask."""
    if value is None:
        return 0
    if isinstance(value, int):
        return int(value) & _DOMAIN
    if isinstance(value, str):
        return int(parse_capability(value))
    mask = 0
    for item in value:
        mask |= int(item) if isinstance(item, int) else int(parse_capability(item))
    return mask & _DOMAIN


def capability_names(mask: int) -> List[str]:
    return [cap.name.lower() for cap in CAPABILITIES if int(mask) & cap]


def is_valid_capability(capability: CapabilityLike) -> bool:
    """A requestable capability is non-zero and lies inside the domain."""
    value = int(capability)
    return value > 0 and (value & ~_DOMAIN) == 0


__all__ = [
    "ANONYMOUS",
    "Actor",
    "CAPABILITIES",
    "Capability",
    "Decision",
    "NO_RESOURCE",
    "Resource",
    "can_perform",
    "capability_names",
    "evaluate",
    "is_valid_capability",
    "parse_capability",
    "to_mask",
]
