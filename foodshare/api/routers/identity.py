from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from foodshare.api.deps import get_current_claims
from foodshare.domain.models import (
    BootstrapAdminRequest,
    DevLoginRequest,
    RegisterRequest,
    TokenResponse,
    UserRead,
)
from foodshare.infra.audit import set_audit_context
from foodshare.infra.auth import create_access_token
from foodshare.services.identity_service import AuthError, ConflictError, IdentityService, NotFoundError

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    raise exc


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, request: Request, service: Service) -> UserRead:
    set_audit_context(request, action="identity.register", detail={"role": str(payload.role)})
    try:
        user = service.register(payload)
        return UserRead.model_validate(user)
    except (ConflictError, AuthError) as exc:
        _handle_identity_error(exc)
        raise


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, request: Request, service: Service) -> UserRead:
    set_audit_context(request, action="identity.bootstrap_admin")
    try:
        user = service.bootstrap_admin(payload)
        return UserRead.model_validate(user)
    except ConflictError as exc:
        _handle_identity_error(exc)
        raise


@router.post("/dev-login", response_model=TokenResponse)
def dev_login(payload: DevLoginRequest, service: Service) -> TokenResponse:
    try:
        user, permissions = service.dev_login(payload.email, payload.password)
    except AuthError as exc:
        _handle_identity_error(exc)
        raise
    token = create_access_token(
        user_id=user.id,
        role=str(user.role),
        permissions=permissions,
    )
    return TokenResponse(access_token=token, role=user.role, permissions=permissions)


@router.get("/me", response_model=UserRead)
def me(claims: Claims, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.get_user(claims["sub"]))
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise
