"""
Admin directory: user accounts and institution staff.

Why:
    Role assignments are mutated only from two admin surfaces: the platform
    user management (super admins) and the per-institution staff screen
    (institution admins of that institution). Both need the same checks:
    authorize the acting principal with the Access Predicate, validate input,
    write through a backend, and fire the role-change event so cached
    effective roles never outlive a mutation.

Backends:
    - `InMemoryDirectoryBackend` for dev and tests.
    - `SupabaseDirectoryBackend` wrapping a supabase-py service client
      (`auth.admin` for accounts, `profiles` and `institution_staff` tables).
    Role rows always go through a `RoleAssignmentStore`.

Security:
    - Never log e-mail addresses; only opaque ids and exception class names.
    - Intended for server-side use with a service-role client only.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple, TypeVar
import logging
import re
import uuid

from .domain import ALLOWED_ROLES, INSTITUTION_ADMIN, INSTRUCTOR, STAFF_ROLES, SUPER_ADMIN, canonical_role, normalize_role
from .resolver import RoleResolver
from .role_store import RoleAssignmentStore
from .roles import has_access, resolve_effective_role

logger = logging.getLogger("certchain.identity_access")

DEFAULT_PER_PAGE = 25
MAX_PER_PAGE = 100

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_splitter = re.compile(r"[^A-Za-z0-9]+")

T = TypeVar("T")


class DirectoryError(Exception):
    """Base error; `status_code` is the HTTP status the web layer maps it to."""

    status_code = 500
    error = "directory_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class DirectoryPermissionError(DirectoryError):
    status_code = 403
    error = "forbidden"


class DirectoryValidationError(DirectoryError):
    status_code = 400
    error = "bad_request"


class DirectoryNotFoundError(DirectoryError):
    status_code = 404
    error = "not_found"


class DirectoryBackendError(DirectoryError):
    status_code = 502
    error = "backend_error"


@dataclass(frozen=True)
class Actor:
    """The authenticated principal performing an admin operation."""

    principal_id: str
    role: str


@dataclass
class DirectoryUser:
    id: str
    email: str
    institution_id: Optional[str] = None
    disabled: bool = False
    created_at: Optional[str] = None
    last_sign_in_at: Optional[str] = None
    roles: Set[str] = field(default_factory=set)

    @property
    def role(self) -> str:
        return resolve_effective_role(self.roles)

    @property
    def display_name(self) -> str:
        return humanize_identifier(self.email) or "Unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.display_name,
            "role": self.role,
            "roles": sorted(self.roles),
            "institution_id": self.institution_id,
            "disabled": self.disabled,
            "created_at": self.created_at,
            "last_sign_in_at": self.last_sign_in_at,
        }


@dataclass(frozen=True)
class StaffMember:
    user_id: str
    institution_id: str
    email: str
    role: str
    disabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "institution_id": self.institution_id,
            "email": self.email,
            "role": self.role,
            "disabled": self.disabled,
        }


def humanize_identifier(s: str) -> str:
    """Turn an e-mail into a display name: "jane.doe@x.org" -> "Jane Doe"."""
    if not s:
        return ""
    s = str(s)
    if "@" in s:
        s = s.split("@", 1)[0]
    parts = [p for p in _splitter.split(s) if p]
    return " ".join(p[:1].upper() + p[1:].lower() for p in parts)


class DirectoryBackend(Protocol):
    def list_users(self, page: int, per_page: int) -> List[DirectoryUser]:
        ...

    def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        ...

    def create_user(self, email: str, institution_id: Optional[str]) -> DirectoryUser:
        ...

    def update_profile(self, user_id: str, patch: Dict[str, Any]) -> None:
        ...

    def delete_user(self, user_id: str) -> None:
        ...

    def institution_of(self, user_id: str) -> Optional[str]:
        ...

    def list_staff_ids(self, institution_id: str) -> List[str]:
        ...

    def link_staff(self, institution_id: str, user_id: str) -> None:
        ...

    def unlink_staff(self, institution_id: str, user_id: str) -> bool:
        ...


# ---------------------------------------------------------------------------
# Validation helpers


def _require_uuid(value: object, field_name: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError, AttributeError):
        raise DirectoryValidationError(f"invalid_{field_name}")


def _optional_uuid(value: object, field_name: str) -> Optional[str]:
    if value is None or value == "":
        return None
    return _require_uuid(value, field_name)


def _require_email(value: object) -> str:
    email = (value or "").strip().lower() if isinstance(value, str) else ""
    if not email or len(email) > 320 or not _EMAIL_RE.match(email):
        raise DirectoryValidationError("invalid_email")
    return email


def _require_user_role(value: object) -> str:
    role = normalize_role(value)
    if role not in ALLOWED_ROLES:
        raise DirectoryValidationError("invalid_role")
    return role


def _require_staff_role(value: object) -> str:
    role = normalize_role(value) or INSTRUCTOR
    if role not in STAFF_ROLES:
        raise DirectoryValidationError("invalid_role")
    return role


def _paging(page: object, per_page: object) -> Tuple[int, int]:
    try:
        p = int(page)  # type: ignore[arg-type]
        pp = int(per_page)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise DirectoryValidationError("invalid_paging")
    if p < 1 or not 1 <= pp <= MAX_PER_PAGE:
        raise DirectoryValidationError("invalid_paging")
    return p, pp


class AdminDirectory:
    """Authorized, validated admin operations over a DirectoryBackend."""

    def __init__(
        self,
        backend: DirectoryBackend,
        roles: RoleAssignmentStore,
        resolver: Optional[RoleResolver] = None,
    ) -> None:
        self.backend = backend
        self.roles = roles
        self.resolver = resolver

    # -- authorization -----------------------------------------------------

    @staticmethod
    def _require_super_admin(actor: Actor) -> None:
        if not has_access(actor.role, SUPER_ADMIN):
            raise DirectoryPermissionError("super_admin_only")

    def _require_institution_manager(self, actor: Actor, institution_id: str) -> None:
        if has_access(actor.role, SUPER_ADMIN):
            return
        if canonical_role(actor.role) == INSTITUTION_ADMIN:
            own = self._call(self.backend.institution_of, actor.principal_id)
            if own is not None and own == institution_id:
                return
        raise DirectoryPermissionError("institution_forbidden")

    # -- plumbing ------------------------------------------------------------

    def _call(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return fn(*args)
        except DirectoryError:
            raise
        except Exception as exc:
            logger.warning("directory backend failed op=%s error=%s", getattr(fn, "__name__", "?"), exc.__class__.__name__)
            raise DirectoryBackendError("backend_unavailable") from exc

    def _with_roles(self, user: DirectoryUser) -> DirectoryUser:
        held = self._call(self.roles.list_role_assignments, user.id)
        return replace(user, roles=set(held))

    def _role_changed(self, user_id: str) -> None:
        if self.resolver is not None:
            self.resolver.invalidate(user_id)

    def _existing_user(self, user_id: str) -> DirectoryUser:
        user = self._call(self.backend.get_user, user_id)
        if user is None:
            raise DirectoryNotFoundError("user_not_found")
        return user

    # -- users (super admin) ----------------------------------------------

    def list_users(
        self,
        actor: Actor,
        *,
        page: object = 1,
        per_page: object = DEFAULT_PER_PAGE,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        """One page of accounts with their effective role.

        `search` filters the fetched page by e-mail substring (case-insensitive).
        """
        self._require_super_admin(actor)
        p, pp = _paging(page, per_page)
        users = [self._with_roles(u) for u in self._call(self.backend.list_users, p, pp)]
        needle = (search or "").strip().lower()
        if needle:
            users = [u for u in users if needle in (u.email or "").lower()]
        return {"page": p, "per_page": pp, "count": len(users), "users": [u.to_dict() for u in users]}

    def create_user(
        self,
        actor: Actor,
        *,
        email: object,
        role: object,
        institution_id: object = None,
    ) -> DirectoryUser:
        self._require_super_admin(actor)
        clean_email = _require_email(email)
        clean_role = _require_user_role(role)
        inst = _optional_uuid(institution_id, "institution_id")
        user = self._call(self.backend.create_user, clean_email, inst)
        self._call(self.roles.replace, user.id, [clean_role])
        self._role_changed(user.id)
        logger.info("directory user created id=%s role=%s", user.id, clean_role)
        return replace(user, roles={clean_role})

    def update_user(
        self,
        actor: Actor,
        user_id: object,
        *,
        role: object = None,
        disabled: Optional[bool] = None,
        institution_id: object = None,
        clear_institution: bool = False,
    ) -> DirectoryUser:
        """Patch an account. A new role replaces every existing assignment."""
        self._require_super_admin(actor)
        uid = _require_uuid(user_id, "user_id")
        new_role = _require_user_role(role) if role is not None else None
        if disabled is not None and not isinstance(disabled, bool):
            raise DirectoryValidationError("invalid_disabled")
        patch: Dict[str, Any] = {}
        if clear_institution:
            patch["institution_id"] = None
        elif institution_id is not None:
            patch["institution_id"] = _require_uuid(institution_id, "institution_id")
        if disabled is not None:
            patch["disabled"] = disabled
        self._existing_user(uid)
        if patch:
            self._call(self.backend.update_profile, uid, patch)
        if new_role is not None:
            self._call(self.roles.replace, uid, [new_role])
            self._role_changed(uid)
            logger.info("directory role replaced id=%s role=%s", uid, new_role)
        return self._with_roles(self._existing_user(uid))

    def delete_user(self, actor: Actor, user_id: object) -> None:
        self._require_super_admin(actor)
        uid = _require_uuid(user_id, "user_id")
        if uid == actor.principal_id:
            raise DirectoryValidationError("cannot_delete_self")
        self._existing_user(uid)
        self._call(self.backend.delete_user, uid)
        self._call(self.roles.replace, uid, [])
        self._role_changed(uid)
        logger.info("directory user deleted id=%s", uid)

    # -- institution staff ------------------------------------------------

    def list_staff(self, actor: Actor, institution_id: object, *, search: Optional[str] = None) -> List[StaffMember]:
        inst = _require_uuid(institution_id, "institution_id")
        self._require_institution_manager(actor, inst)
        staff: List[StaffMember] = []
        for uid in self._call(self.backend.list_staff_ids, inst):
            user = self._call(self.backend.get_user, uid)
            if user is None:
                continue
            user = self._with_roles(user)
            staff.append(StaffMember(user_id=uid, institution_id=inst, email=user.email, role=user.role, disabled=user.disabled))
        needle = (search or "").strip().lower()
        if needle:
            staff = [s for s in staff if needle in (s.email or "").lower()]
        return staff

    def add_staff(
        self,
        actor: Actor,
        institution_id: object,
        *,
        user_id: object = None,
        email: object = None,
        role: object = INSTRUCTOR,
    ) -> StaffMember:
        """Attach an existing account (by id) or invite a new one (by e-mail)."""
        inst = _require_uuid(institution_id, "institution_id")
        self._require_institution_manager(actor, inst)
        staff_role = _require_staff_role(role)
        if user_id:
            uid = _require_uuid(user_id, "user_id")
            user = self._existing_user(uid)
            self._call(self.backend.update_profile, uid, {"institution_id": inst})
        elif email:
            user = self._call(self.backend.create_user, _require_email(email), inst)
            uid = user.id
        else:
            raise DirectoryValidationError("user_id_or_email_required")
        self._call(self.backend.link_staff, inst, uid)
        held = self._call(self.roles.list_role_assignments, uid)
        if staff_role not in held:
            self._call(self.roles.grant, uid, staff_role)
            self._role_changed(uid)
        logger.info("institution staff added institution=%s user=%s", inst, uid)
        return StaffMember(
            user_id=uid,
            institution_id=inst,
            email=user.email,
            role=resolve_effective_role(held | {staff_role}),
            disabled=user.disabled,
        )

    def remove_staff(self, actor: Actor, institution_id: object, user_id: object) -> None:
        """Unlink a staff member. Role rows are left for the user admin to adjust."""
        inst = _require_uuid(institution_id, "institution_id")
        self._require_institution_manager(actor, inst)
        uid = _require_uuid(user_id, "user_id")
        if not self._call(self.backend.unlink_staff, inst, uid):
            raise DirectoryNotFoundError("staff_not_found")
        self._call(self.backend.update_profile, uid, {"institution_id": None})
        logger.info("institution staff removed institution=%s user=%s", inst, uid)


# ---------------------------------------------------------------------------
# Backends


class InMemoryDirectoryBackend:
    """Dict-backed accounts/profiles and staff links for dev and tests."""

    def __init__(self) -> None:
        self._users: Dict[str, DirectoryUser] = {}
        self._staff: Set[Tuple[str, str]] = set()

    def add_user(self, email: str, *, user_id: Optional[str] = None, institution_id: Optional[str] = None) -> DirectoryUser:
        user = DirectoryUser(id=user_id or str(uuid.uuid4()), email=email, institution_id=institution_id)
        self._users[user.id] = user
        return user

    def list_users(self, page: int, per_page: int) -> List[DirectoryUser]:
        ordered = sorted(self._users.values(), key=lambda u: u.email)
        start = (page - 1) * per_page
        return [replace(u) for u in ordered[start:start + per_page]]

    def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        user = self._users.get(user_id)
        return replace(user) if user else None

    def create_user(self, email: str, institution_id: Optional[str]) -> DirectoryUser:
        if any(u.email == email for u in self._users.values()):
            raise DirectoryValidationError("email_exists")
        return replace(self.add_user(email, institution_id=institution_id))

    def update_profile(self, user_id: str, patch: Dict[str, Any]) -> None:
        user = self._users.get(user_id)
        if user is None:
            raise DirectoryNotFoundError("user_not_found")
        if "institution_id" in patch:
            user.institution_id = patch["institution_id"]
        if "disabled" in patch:
            user.disabled = bool(patch["disabled"])

    def delete_user(self, user_id: str) -> None:
        self._users.pop(user_id, None)
        self._staff = {(i, u) for (i, u) in self._staff if u != user_id}

    def institution_of(self, user_id: str) -> Optional[str]:
        user = self._users.get(user_id)
        return user.institution_id if user else None

    def list_staff_ids(self, institution_id: str) -> List[str]:
        return sorted(u for (i, u) in self._staff if i == institution_id)

    def link_staff(self, institution_id: str, user_id: str) -> None:
        self._staff.add((institution_id, user_id))

    def unlink_staff(self, institution_id: str, user_id: str) -> bool:
        key = (institution_id, user_id)
        if key not in self._staff:
            return False
        self._staff.discard(key)
        return True


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    iso = getattr(value, "isoformat", None)
    return iso() if callable(iso) else str(value)


class SupabaseDirectoryBackend:
    """Accounts via `client.auth.admin`, profile data via the `profiles` table.

    The client must be created with the service-role key.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @staticmethod
    def _rows(response: Any) -> List[Dict[str, Any]]:
        data = _field(response, "data")
        return [r for r in (data or []) if isinstance(r, dict)]

    def _profiles(self, ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not ids:
            return {}
        resp = self._client.table("profiles").select("id, email, institution_id, disabled").in_("id", ids).execute()
        return {str(r.get("id")): r for r in self._rows(resp)}

    def _to_user(self, raw: Any, profile: Optional[Dict[str, Any]]) -> DirectoryUser:
        profile = profile or {}
        return DirectoryUser(
            id=str(_field(raw, "id")),
            email=str(_field(raw, "email") or profile.get("email") or ""),
            institution_id=profile.get("institution_id"),
            disabled=bool(profile.get("disabled") or False),
            created_at=_as_text(_field(raw, "created_at")),
            last_sign_in_at=_as_text(_field(raw, "last_sign_in_at")),
        )

    def list_users(self, page: int, per_page: int) -> List[DirectoryUser]:
        raw_users = self._client.auth.admin.list_users(page=page, per_page=per_page) or []
        ids = [str(_field(u, "id")) for u in raw_users]
        profiles = self._profiles(ids)
        return [self._to_user(u, profiles.get(str(_field(u, "id")))) for u in raw_users]

    def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        try:
            resp = self._client.auth.admin.get_user_by_id(user_id)
        except Exception as exc:
            # GoTrue answers 404 with an AuthApiError
            if getattr(exc, "status", None) == 404:
                return None
            raise
        raw = _field(resp, "user")
        if raw is None:
            return None
        return self._to_user(raw, self._profiles([user_id]).get(user_id))

    def create_user(self, email: str, institution_id: Optional[str]) -> DirectoryUser:
        resp = self._client.auth.admin.create_user({"email": email, "email_confirm": False})
        raw = _field(resp, "user")
        user_id = _field(raw, "id") if raw is not None else None
        if not user_id:
            raise DirectoryBackendError("user_create_failed")
        self._client.table("profiles").upsert(
            {"id": str(user_id), "email": email, "institution_id": institution_id, "disabled": False},
            on_conflict="id",
        ).execute()
        return self._to_user(raw, {"institution_id": institution_id, "email": email})

    def update_profile(self, user_id: str, patch: Dict[str, Any]) -> None:
        self._client.table("profiles").update(patch).eq("id", user_id).execute()

    def delete_user(self, user_id: str) -> None:
        self._client.auth.admin.delete_user(user_id)
        self._client.table("institution_staff").delete().eq("user_id", user_id).execute()
        self._client.table("profiles").delete().eq("id", user_id).execute()

    def institution_of(self, user_id: str) -> Optional[str]:
        row = self._profiles([user_id]).get(user_id)
        value = row.get("institution_id") if row else None
        return str(value) if value else None

    def list_staff_ids(self, institution_id: str) -> List[str]:
        resp = self._client.table("institution_staff").select("user_id").eq("institution_id", institution_id).execute()
        return [str(r.get("user_id")) for r in self._rows(resp) if r.get("user_id")]

    def link_staff(self, institution_id: str, user_id: str) -> None:
        self._client.table("institution_staff").upsert(
            {"institution_id": institution_id, "user_id": user_id},
            on_conflict="institution_id,user_id",
        ).execute()

    def unlink_staff(self, institution_id: str, user_id: str) -> bool:
        resp = (
            self._client.table("institution_staff")
            .delete()
            .eq("institution_id", institution_id)
            .eq("user_id", user_id)
            .execute()
        )
        return bool(self._rows(resp))


__all__ = [
    "Actor",
    "AdminDirectory",
    "DirectoryBackend",
    "DirectoryUser",
    "StaffMember",
    "DirectoryError",
    "DirectoryPermissionError",
    "DirectoryValidationError",
    "DirectoryNotFoundError",
    "DirectoryBackendError",
    "InMemoryDirectoryBackend",
    "SupabaseDirectoryBackend",
    "humanize_identifier",
]
