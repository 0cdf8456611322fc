"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
give every test a fresh in-memory identity wiring on the `main` module.
"""
import os
import importlib
import sys
import types
from pathlib import Path
from typing import Iterable, Optional

import pytest

# Load .env only when E2E suite is explicit enabled.
try:
    from dotenv import load_dotenv  # type: ignore
    if os.getenv("RUN_E2E", "0") == "1":
        load_dotenv()
except ImportError:
    pass

# Keep the app on in-memory adapters no matter what the developer shell exports.
if os.getenv("RUN_E2E", "0") != "1":
    for _var in (
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "SUPABASE_ANON_KEY",
        "SUPABASE_JWT_SECRET",
        "CERTCHAIN_ENV",
        "SESSIONS_BACKEND",
    ):
        os.environ.pop(_var, None)

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _main_modules() -> list:
    modules = []
    for name in ("main", "backend.web.main"):
        mod = sys.modules.get(name)
        if mod is None:
            try:
                mod = importlib.import_module(name)  # type: ignore[assignment]
            except ImportError:
                continue
        if mod not in modules:
            modules.append(mod)
    return modules


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Clear toggles that individual tests enable, so they never leak.

    Behavior:
        - Default dev environment unless a test opts into prod explicitly.
        - No proxy trust and no strict CSRF by default.
    """
    for var in ("CERTCHAIN_ENV", "CERTCHAIN_TRUST_PROXY", "STRICT_CSRF", "ROLE_CACHE_TTL_SECONDS"):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def identity(monkeypatch: pytest.MonkeyPatch):
    """Fresh in-memory identity wiring on every loaded `main` alias.

    Why:
        Sessions, role rows and the role cache are module singletons. Tests
        seed them through this fixture; a shared instance across `main` and
        `backend.web.main` avoids drift when tests import different aliases.

    Returns a namespace with the stores and a `login(sub, roles)` helper that
    creates a session and returns its id.
    """
    from identity_access.directory import AdminDirectory, InMemoryDirectoryBackend
    from identity_access.resolver import RoleResolver
    from identity_access.role_cache import EffectiveRoleCache
    from identity_access.role_store import InMemoryRoleAssignmentStore
    from identity_access.stores import SessionStore

    sessions = SessionStore()
    roles = InMemoryRoleAssignmentStore()
    resolver = RoleResolver(roles, EffectiveRoleCache(ttl_seconds=300))
    backend = InMemoryDirectoryBackend()
    directory = AdminDirectory(backend, roles, resolver)

    for mod in _main_modules():
        monkeypatch.setattr(mod, "SESSION_STORE", sessions, raising=False)
        monkeypatch.setattr(mod, "ROLE_STORE", roles, raising=False)
        monkeypatch.setattr(mod, "ROLE_RESOLVER", resolver, raising=False)
        monkeypatch.setattr(mod, "DIRECTORY", directory, raising=False)
        monkeypatch.setattr(mod, "AUTH_CFG", None, raising=False)
        monkeypatch.setattr(mod, "AUTH_CLIENT", None, raising=False)
        if hasattr(mod, "SETTINGS"):
            mod.SETTINGS.override_environment(None)

    def login(sub: str, role_names: Iterable[str] = (), *, name: str = "Test User", email: str = "") -> str:
        if role_names:
            roles.replace(sub, list(role_names))
        return sessions.create(sub=sub, name=name, email=email).session_id

    def add_user(email: str, role_names: Iterable[str] = (), *, user_id: Optional[str] = None, institution_id: Optional[str] = None):
        user = backend.add_user(email, user_id=user_id, institution_id=institution_id)
        if role_names:
            roles.replace(user.id, list(role_names))
        return user

    yield types.SimpleNamespace(
        sessions=sessions,
        roles=roles,
        resolver=resolver,
        backend=backend,
        directory=directory,
        login=login,
        add_user=add_user,
    )
