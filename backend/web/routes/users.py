"""
Admin user management API (super admins only).

Why:
    Platform operators invite accounts, change their role, attach them to an
    institution and disable or delete them. Every role change replaces the
    principal's assignment rows and invalidates the cached effective role, so
    the next guarded request sees the new role.

Permissions:
    Caller's effective role must satisfy `super_admin` (403 otherwise).
    Write endpoints additionally pass the same-origin CSRF guard.
"""
from __future__ import annotations

from typing import Optional
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from identity_access.directory import Actor, DirectoryError

from routes.security import _csrf_guard, _private_no_store, _resolve_active_main

users_router = APIRouter(tags=["Admin Users"])
logger = logging.getLogger("certchain.web.admin")


class UserCreatePayload(BaseModel):
    # Loose typing: validation happens in the directory and maps to 400, not 422.
    email: object | None = None
    role: object | None = None
    institution_id: object | None = None


class UserUpdatePayload(BaseModel):
    role: object | None = None
    disabled: object | None = None
    institution_id: object | None = None


def _actor(request: Request) -> Optional[Actor]:
    user = getattr(request.state, "user", None) or {}
    sub = user.get("sub")
    if not sub:
        return None
    return Actor(principal_id=str(sub), role=str(user.get("role") or ""))


def _json_private(content, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=_private_no_store())


def _directory_error(exc: DirectoryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("Directory request failed: %s", exc.detail)
    return _json_private({"error": exc.error, "detail": exc.detail}, status_code=exc.status_code)


def _unauthenticated() -> JSONResponse:
    return _json_private({"error": "unauthenticated"}, status_code=401)


@users_router.get("/api/admin/users")
async def admin_list_users(
    request: Request,
    page: Optional[str] = None,
    per_page: Optional[str] = None,
    search: Optional[str] = None,
):
    """One page of accounts with effective role and institution.

    Validation:
        - `page` >= 1 (default 1)
        - `per_page` in 1..100 (default 25)
    """
    actor = _actor(request)
    if actor is None:
        return _unauthenticated()
    mod = _resolve_active_main(request)
    try:
        result = mod.DIRECTORY.list_users(
            actor,
            page=page if page not in (None, "") else 1,
            per_page=per_page if per_page not in (None, "") else 25,
            search=search,
        )
    except DirectoryError as exc:
        return _directory_error(exc)
    return _json_private(result)


@users_router.post("/api/admin/users")
async def admin_create_user(request: Request, payload: UserCreatePayload):
    """Invite a new account with exactly one role."""
    actor = _actor(request)
    if actor is None:
        return _unauthenticated()
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    mod = _resolve_active_main(request)
    try:
        user = mod.DIRECTORY.create_user(
            actor,
            email=payload.email,
            role=payload.role,
            institution_id=payload.institution_id,
        )
    except DirectoryError as exc:
        return _directory_error(exc)
    return _json_private(user.to_dict(), status_code=201)


@users_router.patch("/api/admin/users/{user_id}")
async def admin_update_user(request: Request, user_id: str, payload: UserUpdatePayload):
    """Patch role, disabled flag and/or institution.

    Behavior:
        - `role` replaces every existing assignment (delete-then-insert).
        - `institution_id: null` detaches the account from its institution;
          omitting the field leaves it unchanged.
    """
    actor = _actor(request)
    if actor is None:
        return _unauthenticated()
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    fields = payload.model_fields_set
    if not fields:
        return _json_private({"error": "bad_request", "detail": "empty_patch"}, status_code=400)
    if "disabled" in fields and not isinstance(payload.disabled, bool):
        return _json_private({"error": "bad_request", "detail": "invalid_disabled"}, status_code=400)
    mod = _resolve_active_main(request)
    try:
        user = mod.DIRECTORY.update_user(
            actor,
            user_id,
            role=payload.role if "role" in fields else None,
            disabled=payload.disabled if "disabled" in fields else None,
            institution_id=payload.institution_id,
            clear_institution=("institution_id" in fields and payload.institution_id is None),
        )
    except DirectoryError as exc:
        return _directory_error(exc)
    return _json_private(user.to_dict())


@users_router.delete("/api/admin/users/{user_id}")
async def admin_delete_user(request: Request, user_id: str):
    """Delete an account and its role rows. Super admins cannot delete themselves."""
    actor = _actor(request)
    if actor is None:
        return _unauthenticated()
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    mod = _resolve_active_main(request)
    try:
        mod.DIRECTORY.delete_user(actor, user_id)
    except DirectoryError as exc:
        return _directory_error(exc)
    return Response(status_code=204, headers=_private_no_store())
