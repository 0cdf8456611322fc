"""
Institution staff API.

Why:
    Institution admins manage who may issue certificates for their own
    institution; super admins may manage any institution. Adding a staff
    member grants the staff role (instructor or issuer) and fires the
    role-change event. Removing only unlinks the account; role rows stay for
    the user admin to adjust.

Permissions:
    super_admin, or institution_admin whose profile belongs to the
    institution in the path. Everyone else receives 403.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import Response
from pydantic import BaseModel

from identity_access.directory import DirectoryError
from identity_access.domain import INSTRUCTOR

from routes.security import _csrf_guard, _private_no_store, _resolve_active_main
from routes.users import _actor, _directory_error, _json_private, _unauthenticated

institutions_router = APIRouter(tags=["Institution Staff"])


class StaffAddPayload(BaseModel):
    user_id: object | None = None
    email: object | None = None
    role: object | None = None


@institutions_router.get("/api/institutions/{institution_id}/staff")
async def list_institution_staff(request: Request, institution_id: str, search: Optional[str] = None):
    actor = _actor(request)
    if actor is None:
        return _unauthenticated()
    mod = _resolve_active_main(request)
    try:
        staff = mod.DIRECTORY.list_staff(actor, institution_id, search=search)
    except DirectoryError as exc:
        return _directory_error(exc)
    return _json_private({
        "institution_id": institution_id,
        "count": len(staff),
        "staff": [member.to_dict() for member in staff],
    })


@institutions_router.post("/api/institutions/{institution_id}/staff")
async def add_institution_staff(request: Request, institution_id: str, payload: StaffAddPayload):
    """Attach an existing account (`user_id`) or invite one (`email`).

    `role` defaults to `instructor`; `issuer` is accepted as its legacy alias.
    """
    actor = _actor(request)
    if actor is None:
        return _unauthenticated()
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    mod = _resolve_active_main(request)
    try:
        member = mod.DIRECTORY.add_staff(
            actor,
            institution_id,
            user_id=payload.user_id,
            email=payload.email,
            role=payload.role if payload.role is not None else INSTRUCTOR,
        )
    except DirectoryError as exc:
        return _directory_error(exc)
    return _json_private(member.to_dict(), status_code=201)


@institutions_router.delete("/api/institutions/{institution_id}/staff/{user_id}")
async def remove_institution_staff(request: Request, institution_id: str, user_id: str):
    actor = _actor(request)
    if actor is None:
        return _unauthenticated()
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    mod = _resolve_active_main(request)
    try:
        mod.DIRECTORY.remove_staff(actor, institution_id, user_id)
    except DirectoryError as exc:
        return _directory_error(exc)
    return Response(status_code=204, headers=_private_no_store())
