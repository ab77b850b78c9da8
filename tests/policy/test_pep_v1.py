"""Enforcement point: identity resolution, route context, endpoint gating."""
from __future__ import annotations

import importlib
import logging

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from adminconsole.policy.capability import ANONYMOUS, Actor, Capability, Resource
from adminconsole.policy.pep import (
    CapabilityChecker,
    coerce_capability,
    context_from_path,
    require_capability,
)


def _app() -> FastAPI:
    app = FastAPI()

    @app.post("/projects/{project_id}/settings", dependencies=[require_capability(Capability.UPDATE_PROJECT)])
    def update_project(project_id: str):
        return {"ok": True}

    @app.post(
        "/projects/{project_id}/templates/{template_id}/tasks",
        dependencies=[require_capability("run_tasks")],
    )
    def run_task(project_id: str, template_id: str):
        return {"queued": True}

    @app.post("/tokens", dependencies=[require_capability(Capability.RUN_TASKS)])
    def create_token():
        return {"ok": True}

    return app


def _user(name: str) -> dict:
    return {"X-Console-User": name}


def test_owner_allowed_guest_denied(test_mode, seeded_store):
    client = TestClient(_app())

    assert client.post("/projects/p1/settings", headers=_user("owner")).status_code == 200
    r = client.post("/projects/p1/settings", headers=_user("guest"))
    assert r.status_code == 403
    assert r.json()["detail"] == {
        "error": "forbidden",
        "reason": "capability.missing",
        "capability": ["update_project"],
    }


def test_admin_allowed_without_membership(test_mode, seeded_store):
    client = TestClient(_app())

    assert client.post("/projects/p9/settings", headers=_user("root")).status_code == 200


def test_template_mask_decides_template_routes(test_mode, seeded_store):
    from adminconsole.policy.roles import Role
    from adminconsole.policy.store import STORE

    client = TestClient(_app())
    assert client.post("/projects/p1/templates/t1/tasks", headers=_user("runner")).status_code == 200
    assert client.post("/projects/p1/templates/t1/tasks", headers=_user("guest")).status_code == 403

    STORE.add_role(Role(slug="viewer", name="Viewer", permissions=0))
    STORE.set_member_role("p1", "guest", "viewer")
    STORE.set_template_role("p1", "t1", "viewer", int(Capability.RUN_TASKS))
    assert client.post("/projects/p1/templates/t1/tasks", headers=_user("guest")).status_code == 200
    assert client.post("/projects/p1/templates/t2/tasks", headers=_user("guest")).status_code == 403
    assert client.post("/projects/p1/settings", headers=_user("guest")).status_code == 403


def test_unscoped_route_uses_global_mask(test_mode, seeded_store):
    client = TestClient(_app())

    assert client.post("/tokens", headers=_user("runner")).status_code == 200
    assert client.post("/tokens", headers=_user("owner")).status_code == 403


def test_unknown_or_missing_identity_fails_closed(test_mode, seeded_store):
    client = TestClient(_app())

    assert client.post("/projects/p1/settings").status_code == 403
    assert client.post("/projects/p1/settings", headers=_user("mallory")).status_code == 403


def test_header_ignored_when_test_mode_off(seeded_store):
    client = TestClient(_app())

    assert client.post("/projects/p1/settings", headers=_user("owner")).status_code == 403


def test_header_ignored_in_prod(monkeypatch, seeded_store):
    monkeypatch.setenv("CONSOLE_ENV", "prod")
    client = TestClient(_app())
    monkeypatch.setenv("CONSOLE_AUTH_TEST_MODE", "1")

    assert client.post("/projects/p1/settings", headers=_user("owner")).status_code == 403


def test_request_state_identity(seeded_store):
    app = _app()

    @app.middleware("http")
    async def _auth(request: Request, call_next):
        request.state.user_id = "owner"
        return await call_next(request)

    client = TestClient(app)
    assert client.post("/projects/p1/settings").status_code == 200


def test_deny_is_logged_and_counted(test_mode, seeded_store, caplog):
    from adminconsole.metrics.registry import METRICS

    client = TestClient(_app())
    with caplog.at_level(logging.WARNING, logger="adminconsole.policy.pep"):
        client.post("/projects/p1/settings", headers=_user("guest"))

    denied = [r for r in caplog.records if r.getMessage() == "capability_deny"]
    assert denied and denied[0].user_id == "guest"
    assert denied[0].tier == "actor"
    assert METRICS.get("adminconsole_capability_eval_total", {"tier": "actor", "result": "deny"}) == 1


def test_audit_log_can_be_disabled(monkeypatch, test_mode, seeded_store, caplog):
    monkeypatch.setenv("CONSOLE_AUDIT_LOG_ENABLE", "0")
    client = TestClient(_app())
    with caplog.at_level(logging.DEBUG, logger="adminconsole.policy.pep"):
        client.post("/projects/p1/settings", headers=_user("guest"))

    assert not [r for r in caplog.records if r.getMessage().startswith("capability_")]


@pytest.mark.parametrize("bad", [0, -4, 64, "deploy"])
def test_invalid_capability_rejected_at_declaration(bad):
    with pytest.raises(ValueError):
        require_capability(bad)


def test_coerce_capability():
    assert coerce_capability(8) is Capability.MANAGE_USERS
    assert coerce_capability("run_tasks") is Capability.RUN_TASKS
    assert coerce_capability(Capability.RUN_TASKS | Capability.UPDATE_PROJECT) == 3


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/api/v1/projects/7/templates/3/tasks", ("7", "3")),
        ("/project/7/templates/3", ("7", "3")),
        ("/project/7/history", ("7", None)),
        ("/project/new", (None, None)),
        ("/api/v1/me/capabilities", (None, None)),
        ("/templates/3", (None, None)),
    ],
)
def test_context_from_path(path, expected):
    assert context_from_path(path) == expected


def test_checker_defaults_to_anonymous():
    checker = CapabilityChecker(None)

    assert checker.actor is ANONYMOUS
    assert checker.snapshot() == {
        "run_tasks": False,
        "update_project": False,
        "manage_resources": False,
        "manage_users": False,
    }


def test_checker_snapshot_with_override():
    checker = CapabilityChecker(Actor(permission_mask=15), Resource(permission_mask=1))

    assert checker.can(Capability.RUN_TASKS)
    assert not checker.can(Capability.MANAGE_USERS)
    with pytest.raises(ValueError):
        checker.can(0)


def test_prod_blocks_test_mode_on(monkeypatch):
    from adminconsole.config import settings as settings_module
    from adminconsole.policy import pep

    monkeypatch.setenv("CONSOLE_ENV", "prod")
    monkeypatch.setenv("CONSOLE_AUTH_TEST_MODE", "1")
    importlib.reload(settings_module)
    try:
        with pytest.raises(RuntimeError, match="auth test-mode must be OFF in production"):
            importlib.reload(pep)
    finally:
        monkeypatch.setenv("CONSOLE_ENV", "dev")
        monkeypatch.setenv("CONSOLE_AUTH_TEST_MODE", "0")
        importlib.reload(settings_module)
        importlib.reload(pep)
