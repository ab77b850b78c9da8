from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel

from adminconsole.policy.capability import CAPABILITIES, Capability, capability_names, to_mask
from adminconsole.policy.pep import CapabilityChecker, require_capability, resolve_user_id
from adminconsole.policy.roles import UnknownRole
from adminconsole.policy.store import STORE, UnknownUser


router = APIRouter(prefix="/api/v1", tags=["capabilities"])


class MemberRoleBody(BaseModel):
    role: str


class TemplateRoleBody(BaseModel):
    permissions: list[str] = []


@router.get("/capabilities")
def list_capabilities():
    return [{"name": cap.name.lower(), "value": int(cap)} for cap in CAPABILITIES]


@router.get("/me/capabilities")
def my_capabilities(request: Request):
    return CapabilityChecker.for_request(request).snapshot()


@router.get("/projects/{project_id}/role")
def project_role(project_id: str, request: Request):
    user_id = resolve_user_id(request)
    slug = STORE.member_role(project_id, user_id) if user_id else None
    if slug is None:
        raise HTTPException(status_code=404, detail={"error": "not_a_member"})
    mask = STORE.project_permissions(project_id, user_id) or 0
    return {"role": slug, "permissions": mask, "capabilities": capability_names(mask)}


@router.get("/projects/{project_id}/capabilities")
def project_capabilities(project_id: str, request: Request):
    return CapabilityChecker.for_request(request).snapshot()


@router.get("/projects/{project_id}/templates/{template_id}/capabilities")
def template_capabilities(project_id: str, template_id: str, request: Request):
    return CapabilityChecker.for_request(request).snapshot()


@router.put(
    "/projects/{project_id}/members/{user_id}",
    status_code=204,
    dependencies=[require_capability(Capability.MANAGE_USERS)],
)
def set_member(project_id: str, user_id: str, body: MemberRoleBody):
    try:
        STORE.set_member_role(project_id, user_id, body.role)
    except UnknownUser:
        raise HTTPException(status_code=404, detail={"error": "user_not_found"})
    except UnknownRole:
        raise HTTPException(status_code=400, detail={"error": "unknown_role", "role": body.role})
    return Response(status_code=204)


@router.delete(
    "/projects/{project_id}/members/{user_id}",
    status_code=204,
    dependencies=[require_capability(Capability.MANAGE_USERS)],
)
def remove_member(project_id: str, user_id: str):
    if not STORE.remove_member(project_id, user_id):
        raise HTTPException(status_code=404, detail={"error": "member_not_found"})
    return Response(status_code=204)


@router.put(
    "/projects/{project_id}/templates/{template_id}/roles/{role_slug}",
    status_code=204,
    dependencies=[require_capability(Capability.MANAGE_USERS)],
)
def set_template_role(project_id: str, template_id: str, role_slug: str, body: TemplateRoleBody):
    try:
        mask = to_mask(body.permissions)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"error": "unknown_capability", "message": str(exc)})
    try:
        STORE.set_template_role(project_id, template_id, role_slug, mask)
    except UnknownRole:
        raise HTTPException(status_code=400, detail={"error": "unknown_role", "role": role_slug})
    return Response(status_code=204)
