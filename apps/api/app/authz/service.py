from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app import audit
from app.authz.models import Profile, UserCredential, UserRole, utcnow
from app.authz.schemas import CreateUserRequest, UserRead
from app.core.actor import ActorUser

logger = logging.getLogger("app.authz")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


class UserProvisioningService:
    entity_type = "user"

    def create_user(self, session: Session, actor_user: ActorUser, dto: CreateUserRequest) -> UserRead:
        email = str(dto.email).strip().lower()
        existing = session.scalar(select(Profile.id).where(func.lower(Profile.email) == email))
        if existing is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="a user with this email already exists")

        profile = Profile(email=email, full_name=dto.full_name.strip())
        session.add(profile)
        try:
            session.flush()
            session.add(
                UserCredential(
                    user_id=profile.id,
                    password_hash=hash_password(dto.password),
                    email_confirmed_at=utcnow(),
                )
            )
            session.add(UserRole(user_id=profile.id, role=dto.role))
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="a user with this email already exists")

        created = self._to_read(self._load(session, profile.id))
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(created.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        logger.info("user.created", extra={"status": dto.role})
        return created

    def list_users(self, session: Session, role: str | None = None, q: str | None = None) -> list[UserRead]:
        stmt = select(Profile).options(selectinload(Profile.roles)).order_by(Profile.full_name.asc())
        if role:
            stmt = stmt.where(Profile.id.in_(select(UserRole.user_id).where(UserRole.role == role)))
        users = [self._to_read(profile) for profile in session.scalars(stmt).all()]
        if q:
            needle = q.lower()
            users = [user for user in users if needle in user.full_name.lower() or needle in user.email.lower()]
        return users

    def get_user(self, session: Session, user_id: uuid.UUID) -> UserRead:
        return self._to_read(self._load(session, user_id))

    def role_of(self, session: Session, user_id: uuid.UUID) -> str | None:
        return session.scalar(
            select(UserRole.role).where(UserRole.user_id == user_id).order_by(UserRole.created_at.asc()).limit(1)
        )

    def require_role(self, session: Session, user_id: uuid.UUID, role: str) -> Profile:
        profile = session.scalar(select(Profile).where(Profile.id == user_id))
        if profile is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
        if self.role_of(session, user_id) != role:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"user is not a {role}")
        return profile

    def update_role(self, session: Session, actor_user: ActorUser, user_id: uuid.UUID, role: str) -> UserRead:
        profile = self._load(session, user_id)
        before = self._to_read(profile)
        if before.role == "admin" and role != "admin" and self._admin_count(session) <= 1:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="cannot remove the last admin")

        if profile.roles:
            for row in profile.roles:
                row.role = role
        else:
            session.add(UserRole(user_id=profile.id, role=role))
        session.commit()

        updated = self._to_read(self._load(session, user_id))
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(user_id),
            action="update_role",
            before=before.model_dump(mode="json"),
            after=updated.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        return updated

    def delete_user(self, session: Session, actor_user: ActorUser, user_id: uuid.UUID) -> None:
        profile = self._load(session, user_id)
        before = self._to_read(profile)
        if before.role == "admin" and self._admin_count(session) <= 1:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="cannot delete the last admin")
        session.delete(profile)
        session.commit()
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(user_id),
            action="delete",
            before=before.model_dump(mode="json"),
            after=None,
            correlation_id=actor_user.correlation_id,
        )

    def _admin_count(self, session: Session) -> int:
        return int(session.scalar(select(func.count(func.distinct(UserRole.user_id))).where(UserRole.role == "admin")) or 0)

    def _load(self, session: Session, user_id: uuid.UUID) -> Profile:
        profile = session.scalar(select(Profile).options(selectinload(Profile.roles)).where(Profile.id == user_id))
        if profile is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
        return profile

    def _to_read(self, profile: Profile) -> UserRead:
        role = min(profile.roles, key=lambda row: row.created_at).role if profile.roles else None
        return UserRead.model_validate(
            {
                "id": profile.id,
                "email": profile.email,
                "full_name": profile.full_name,
                "role": role,
                "created_at": profile.created_at,
            }
        )


user_provisioning_service = UserProvisioningService()
