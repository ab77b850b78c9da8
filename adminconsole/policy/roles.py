"""Project roles, custom roles and per-template role grants."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Optional

from .capability import Capability


class ProjectRole(str, enum.Enum):
    """Built-in roles a project member can hold."""

    OWNER = "owner"
    MANAGER = "manager"
    TASK_RUNNER = "task_runner"
    GUEST = "guest"


ROLE_PERMISSIONS: Dict[ProjectRole, int] = {
    ProjectRole.OWNER: int(Capability.ALL),
    ProjectRole.MANAGER: int(Capability.RUN_TASKS | Capability.MANAGE_RESOURCES),
    ProjectRole.TASK_RUNNER: int(Capability.RUN_TASKS),
    ProjectRole.GUEST: int(Capability.NONE),
}


class RoleValidationError(ValueError):
    pass


class UnknownRole(KeyError):
    pass


@dataclass(frozen=True)
class Role:
    """Custom role. ``project_id=None`` makes it available to every project."""

    slug: str
    name: str
    permissions: int = 0
    project_id: Optional[str] = None

    def __post_init__(self):
        if not self.slug:
            raise RoleValidationError("Role slug cannot be empty")
        if not self.name:
            raise RoleValidationError("Role name cannot be empty")


@dataclass(frozen=True)
class TemplateRolePerm:
    project_id: str
    template_id: str
    role_slug: str
    permissions: int = 0


def builtin_role(slug: str) -> Optional[ProjectRole]:
    try:
        return ProjectRole(slug)
    except ValueError:
        return None


def role_permissions(slug: str, custom: Optional[Role] = None) -> int:
    """
    Permission mask for a role slug.

    A custom role with the same slug takes precedence over the built-in
    role. Raises UnknownRole when neither exists.
    """
    if custom is not None:
        return int(custom.permissions) & int(Capability.ALL)
    role = builtin_role(slug)
    if role is None:
        raise UnknownRole(slug)
    return ROLE_PERMISSIONS[role]


def template_permissions(project_mask: int, grant: Optional[TemplateRolePerm]) -> int:
    """
    A template grant adds to the member's project mask, it never removes.
    Grants belong to custom roles; built-in roles pass ``grant=None``.
    """
    if grant is None:
        return project_mask
    return (project_mask | int(grant.permissions)) & int(Capability.ALL)


__all__ = [
    "ProjectRole",
    "ROLE_PERMISSIONS",
    "Role",
    "RoleValidationError",
    "TemplateRolePerm",
    "UnknownRole",
    "builtin_role",
    "role_permissions",
    "template_permissions",
]
