import os
import sys

import pytest

repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)


@pytest.fixture(autouse=True)
def _reset_state(monkeypatch):
    monkeypatch.delenv("CONSOLE_ENV", raising=False)
    monkeypatch.delenv("CONSOLE_AUTH_TEST_MODE", raising=False)
    from adminconsole.metrics.registry import METRICS
    from adminconsole.policy.store import STORE

    STORE.clear()
    METRICS.reset()
    yield
    STORE.clear()
    METRICS.reset()


@pytest.fixture
def test_mode(monkeypatch):
    """Accept X-Console-User as the caller identity."""
    monkeypatch.setenv("CONSOLE_ENV", "dev")
    monkeypatch.setenv("CONSOLE_AUTH_TEST_MODE", "1")
    yield


@pytest.fixture
def seeded_store():
    from adminconsole.policy.capability import Capability
    from adminconsole.policy.roles import Role
    from adminconsole.policy.store import STORE

    STORE.add_user("root", is_admin=True)
    STORE.add_user("owner")
    STORE.add_user("runner", permission_mask=int(Capability.RUN_TASKS))
    STORE.add_user("guest")
    STORE.set_member_role("p1", "owner", "owner")
    STORE.set_member_role("p1", "runner", "task_runner")
    STORE.set_member_role("p1", "guest", "guest")
    STORE.add_user("deployer")
    STORE.add_role(Role(slug="deployer", name="Deployer", permissions=int(Capability.RUN_TASKS)))
    STORE.set_member_role("p1", "deployer", "deployer")
    STORE.set_template_role("p1", "t1", "deployer", int(Capability.UPDATE_PROJECT))
    return STORE
