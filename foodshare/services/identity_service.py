from __future__ import annotations

import hashlib
import logging
import os

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from foodshare.domain.models import (
    BootstrapAdminRequest,
    RegisterRequest,
    User,
    UserRole,
)
from foodshare.domain.permissions import permissions_for_role
from foodshare.infra.db import get_engine

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    pass


class NotFoundError(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class AuthError(IdentityError):
    pass


class IdentityService:
    SELF_SERVICE_ROLES = frozenset({UserRole.HOTEL, UserRole.AGENT})

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "foodshare-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    def _normalize_email(self, email: str) -> str:
        return email.strip().lower()

    def register(self, payload: RegisterRequest) -> User:
        if payload.role not in self.SELF_SERVICE_ROLES:
            raise AuthError("role cannot be self-registered")
        if not payload.password:
            raise AuthError("password is required")
        user = User(
            email=self._normalize_email(payload.email),
            name=payload.name.strip(),
            phone=payload.phone,
            role=payload.role,
            password_hash=self._hash_password(payload.password),
            is_active=True,
        )
        with self._session() as session:
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already registered") from exc
            session.refresh(user)
        logger.info("registered %s user %s", user.role, user.id)
        return user

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        with self._session() as session:
            existing = session.exec(select(User).where(User.role == UserRole.ADMIN)).first()
            if existing is not None:
                raise ConflictError("admin already initialized")
            admin = User(
                email=self._normalize_email(payload.email),
                name=payload.name.strip(),
                role=UserRole.ADMIN,
                password_hash=self._hash_password(payload.password),
                is_active=True,
            )
            session.add(admin)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already registered") from exc
            session.refresh(admin)
        logger.info("bootstrap admin %s created", admin.id)
        return admin

    def dev_login(self, email: str, password: str) -> tuple[User, list[str]]:
        with self._session() as session:
            statement = select(User).where(User.email == self._normalize_email(email))
            user = session.exec(statement).first()
            if user is None:
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if user.password_hash != self._hash_password(password):
                raise AuthError("invalid credentials")
        return user, permissions_for_role(user.role)

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user
