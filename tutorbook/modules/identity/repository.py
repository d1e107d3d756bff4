"""Identity repository layer."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tutorbook.core.enums import RoleEnum
from tutorbook.modules.identity.models import Role, User


class IdentityRepository:
    """DB operations for identity domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_role_by_name(self, role_name: RoleEnum) -> Role | None:
        stmt = select(Role).where(Role.name == role_name)
        return await self.session.scalar(stmt)

    async def create_role(self, role_name: RoleEnum) -> Role:
        role = Role(name=role_name)
        self.session.add(role)
        await self.session.flush()
        return role

    async def get_user_by_email(self, email: str) -> User | None:
        stmt = select(User).options(selectinload(User.role)).where(User.email == email)
        return await self.session.scalar(stmt)

    async def get_user_by_id(self, user_id: UUID) -> User | None:
        stmt = select(User).options(selectinload(User.role)).where(User.id == user_id)
        return await self.session.scalar(stmt)

    async def list_users_by_ids(self, user_ids: Iterable[UUID]) -> list[User]:
        ids = list(user_ids)
        if not ids:
            return []
        stmt = select(User).options(selectinload(User.role)).where(User.id.in_(ids))
        return list((await self.session.scalars(stmt)).all())

    async def create_user(
        self,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        timezone: str,
        role_id: UUID,
    ) -> User:
        user = User(
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            timezone=timezone,
            role_id=role_id,
        )
        self.session.add(user)
        await self.session.flush()
        await self.session.refresh(user, attribute_names=["role"])
        return user
