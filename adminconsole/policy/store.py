from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .capability import Actor, Capability, NO_RESOURCE, Resource
from .roles import (
    Role,
    TemplateRolePerm,
    UnknownRole,
    builtin_role,
    role_permissions,
    template_permissions,
)


class UnknownUser(KeyError):
    pass


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    is_admin: bool = False
    permission_mask: int = 0


class PermissionStore:
    """
    In-memory users, memberships, custom roles and template grants.

    Produces the Actor/Resource values the capability evaluator consumes.
    Shared between request handlers, so every access goes through the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: Dict[str, UserRecord] = {}
        self._members: Dict[Tuple[str, str], str] = {}
        self._roles: Dict[Tuple[Optional[str], str], Role] = {}
        self._template_roles: Dict[Tuple[str, str, str], TemplateRolePerm] = {}

    # users -----------------------------------------------------------------
    def add_user(self, user_id: str, *, is_admin: bool = False, permission_mask: int = 0) -> UserRecord:
        record = UserRecord(
            user_id=user_id,
            is_admin=bool(is_admin),
            permission_mask=int(permission_mask) & int(Capability.ALL),
        )
        with self._lock:
            self._users[user_id] = record
        return record

    def get_user(self, user_id: str) -> UserRecord:
        with self._lock:
            try:
                return self._users[user_id]
            except KeyError:
                raise UnknownUser(user_id) from None

    # roles -----------------------------------------------------------------
    def add_role(self, role: Role) -> Role:
        with self._lock:
            self._roles[(role.project_id, role.slug)] = role
        return role

    def get_role(self, slug: str, project_id: Optional[str] = None) -> Optional[Role]:
        """Project role first, then global custom role."""
        with self._lock:
            if project_id is not None and (project_id, slug) in self._roles:
                return self._roles[(project_id, slug)]
            return self._roles.get((None, slug))

    def _role_known(self, slug: str, project_id: str) -> bool:
        return builtin_role(slug) is not None or self.get_role(slug, project_id) is not None

    # membership ------------------------------------------------------------
    def set_member_role(self, project_id: str, user_id: str, role_slug: str) -> None:
        with self._lock:
            self.get_user(user_id)
            if not self._role_known(role_slug, project_id):
                raise UnknownRole(role_slug)
            self._members[(project_id, user_id)] = role_slug

    def remove_member(self, project_id: str, user_id: str) -> bool:
        with self._lock:
            return self._members.pop((project_id, user_id), None) is not None

    def member_role(self, project_id: str, user_id: str) -> Optional[str]:
        with self._lock:
            return self._members.get((project_id, user_id))

    # template grants -------------------------------------------------------
    def set_template_role(self, project_id: str, template_id: str, role_slug: str, permissions: int) -> TemplateRolePerm:
        grant = TemplateRolePerm(
            project_id=project_id,
            template_id=template_id,
            role_slug=role_slug,
            permissions=int(permissions) & int(Capability.ALL),
        )
        with self._lock:
            # only custom roles carry template grants
            if self.get_role(role_slug, project_id) is None:
                raise UnknownRole(role_slug)
            self._template_roles[(project_id, template_id, role_slug)] = grant
        return grant

    # resolution ------------------------------------------------------------
    def project_permissions(self, project_id: str, user_id: str) -> Optional[int]:
        """Member's project mask, or None when the user is not a member."""
        with self._lock:
            slug = self._members.get((project_id, user_id))
            if slug is None:
                return None
            return role_permissions(slug, self.get_role(slug, project_id))

    def template_permissions(self, project_id: str, template_id: str, user_id: str) -> int:
        with self._lock:
            slug = self._members.get((project_id, user_id))
            if slug is None:
                return 0
            custom = self.get_role(slug, project_id)
            base = role_permissions(slug, custom)
            if custom is None:
                return base
            return template_permissions(base, self._template_roles.get((project_id, template_id, slug)))

    def actor_for(self, user_id: str, project_id: Optional[str] = None) -> Actor:
        user = self.get_user(user_id)
        if project_id is None:
            return Actor(is_admin=user.is_admin, permission_mask=user.permission_mask, user_id=user_id)
        mask = self.project_permissions(project_id, user_id)
        return Actor(is_admin=user.is_admin, permission_mask=mask or 0, user_id=user_id)

    def resource_for(self, project_id: Optional[str], template_id: Optional[str], user_id: Optional[str]) -> Resource:
        if project_id is None or template_id is None:
            return NO_RESOURCE
        mask = self.template_permissions(project_id, template_id, user_id) if user_id else 0
        return Resource(permission_mask=mask, kind="template", ident=template_id)

    def clear(self) -> None:
        with self._lock:
            self._users.clear()
            self._members.clear()
            self._roles.clear()
            self._template_roles.clear()


STORE = PermissionStore()

__all__ = ["PermissionStore", "STORE", "UnknownUser", "UserRecord"]
