# adminconsole/policy/pep.py
"""
Capability enforcement point.

Resolves the current actor (session state) and the current resource
(route context), asks the evaluator, and gates an endpoint or a UI
affordance on the answer.

Security:
- unresolved identity falls back to ANONYMOUS (non-admin, empty mask)
- X-Console-User header identity only in test mode, never in prod
"""
from __future__ import annotations

import logging
import re
from typing import Dict, Optional, Tuple, Union

from fastapi import Depends, HTTPException, Request

from adminconsole.config.settings import Settings, settings
from adminconsole.metrics.registry import METRICS

from .capability import (
    ANONYMOUS,
    CAPABILITIES,
    NO_RESOURCE,
    Actor,
    Capability,
    Decision,
    Resource,
    can_perform,
    capability_names,
    evaluate,
    is_valid_capability,
    parse_capability,
)
from .store import STORE, UnknownUser

log = logging.getLogger(__name__)

USER_HEADER = "X-Console-User"

if settings.is_prod() and settings.AUTH_TEST_MODE:
    raise RuntimeError(
        "FATAL: auth test-mode must be OFF in production. "
        "Set CONSOLE_AUTH_TEST_MODE=0 or remove the variable."
    )

_PROJECT_RE = re.compile(r"/projects?/([^/]+)")
_TEMPLATE_RE = re.compile(r"/templates/([^/]+)")


def _is_test_mode_enabled() -> bool:
    return Settings().test_mode_enabled()


def _audit_enabled() -> bool:
    return bool(Settings().AUDIT_LOG_ENABLE)


def coerce_capability(capability: Union[Capability, int, str]) -> Capability:
    """Accept a member, its int value or its name; reject zero/out-of-domain values."""
    if isinstance(capability, str):
        return parse_capability(capability)
    if not is_valid_capability(capability):
        raise ValueError(f"invalid_capability:{int(capability)}")
    return Capability(int(capability))


def context_from_path(path: str) -> Tuple[Optional[str], Optional[str]]:
    """(project_id, template_id) from a console URL, e.g. /api/v1/projects/7/templates/3."""
    project = _PROJECT_RE.search(path)
    if project is None or project.group(1) in ("new", "restore"):
        return None, None
    template = _TEMPLATE_RE.search(path, project.end())
    return project.group(1), template.group(1) if template else None


def request_context(request: Request) -> Tuple[Optional[str], Optional[str]]:
    params = request.path_params or {}
    if "project_id" in params:
        template_id = params.get("template_id")
        return str(params["project_id"]), str(template_id) if template_id is not None else None
    return context_from_path(request.url.path)


def resolve_user_id(request: Request) -> Optional[str]:
    """
    User id of the caller.

    Priority:
    1. request.state.user_id (set by the authentication layer)
    2. X-Console-User header (test mode only)
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return str(user_id)
    if _is_test_mode_enabled():
        hdr = request.headers.get(USER_HEADER, "").strip()
        if hdr:
            return hdr
    return None


def resolve_actor(request: Request, project_id: Optional[str] = None) -> Actor:
    user_id = resolve_user_id(request)
    if user_id is None:
        return ANONYMOUS
    try:
        return STORE.actor_for(user_id, project_id)
    except UnknownUser:
        log.info("capability_unknown_user", extra={"user_id": user_id, "path": request.url.path})
        return ANONYMOUS


def resolve_resource(request: Request, actor: Actor) -> Resource:
    project_id, template_id = request_context(request)
    return STORE.resource_for(project_id, template_id, actor.user_id)


def check(request: Request, capability: Union[Capability, int]) -> Decision:
    project_id, _ = request_context(request)
    actor = resolve_actor(request, project_id)
    resource = resolve_resource(request, actor)
    decision = evaluate(actor, resource, capability)
    _record(decision, actor, resource, request)
    return decision


def _record(decision: Decision, actor: Actor, resource: Resource, request: Request) -> None:
    result = "allow" if decision.allow else "deny"
    METRICS.inc("adminconsole_capability_eval_total", {"tier": decision.tier, "result": result})
    if not _audit_enabled():
        return
    extra = {
        "user_id": actor.user_id,
        "tier": decision.tier,
        "need": capability_names(decision.capability),
        "held": capability_names(decision.held) if decision.held is not None else None,
        "resource": f"{resource.kind}:{resource.ident}" if resource.kind else None,
        "path": request.url.path,
        "method": request.method,
    }
    if decision.allow:
        log.debug("capability_allow", extra=extra)
    else:
        log.warning("capability_deny", extra=extra)


def forbidden_detail(decision: Decision) -> Dict[str, object]:
    return {
        "error": "forbidden",
        "reason": "capability.missing",
        "capability": capability_names(decision.capability),
    }


def require_capability(capability: Union[Capability, int, str]):
    """
    FastAPI dependency gating an endpoint on one capability.

    A zero or unknown capability is a programming error and fails here,
    when the route is declared, not per request.
    """
    need = coerce_capability(capability)

    async def _dep(request: Request) -> Decision:
        decision = getattr(request.state, "capability_decision", None)
        # already evaluated by the route map for this request
        if decision is None or decision.capability != int(need):
            decision = check(request, need)
        if not decision.allow:
            raise HTTPException(status_code=403, detail=forbidden_detail(decision))
        return decision

    return Depends(_dep)


class CapabilityChecker:
    """UI-side adapter: one actor, one resource, many capability questions."""

    def __init__(self, actor: Optional[Actor], resource: Optional[Resource] = None):
        self.actor = actor or ANONYMOUS
        self.resource = resource or NO_RESOURCE

    @classmethod
    def for_request(cls, request: Request) -> "CapabilityChecker":
        project_id, _ = request_context(request)
        actor = resolve_actor(request, project_id)
        return cls(actor, resolve_resource(request, actor))

    def can(self, capability: Union[Capability, int]) -> bool:
        if int(capability) == 0:
            raise ValueError("capability must be non-zero")
        return can_perform(self.actor, self.resource, capability)

    def snapshot(self) -> Dict[str, bool]:
        return {cap.name.lower(): self.can(cap) for cap in CAPABILITIES}


__all__ = [
    "CapabilityChecker",
    "USER_HEADER",
    "check",
    "coerce_capability",
    "context_from_path",
    "forbidden_detail",
    "request_context",
    "require_capability",
    "resolve_actor",
    "resolve_resource",
    "resolve_user_id",
]
