from __future__ import annotations

from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

from tutorbook.core.enums import RoleEnum
from tutorbook.core.security import create_access_token, decode_token
from tutorbook.modules.identity.schemas import LoginRequest, UserCreate
from tutorbook.modules.identity.service import IdentityService
from tutorbook.shared.exceptions import ConflictException, ForbiddenException


class FakeIdentityRepository:
    def __init__(self) -> None:
        self.roles: dict[RoleEnum, SimpleNamespace] = {}
        self.users: dict[UUID, SimpleNamespace] = {}

    async def get_role_by_name(self, role_name: RoleEnum):
        return self.roles.get(role_name)

    async def create_role(self, role_name: RoleEnum):
        role = SimpleNamespace(id=uuid4(), name=role_name)
        self.roles[role_name] = role
        return role

    async def get_user_by_email(self, email: str):
        return next((user for user in self.users.values() if user.email == email), None)

    async def get_user_by_id(self, user_id: UUID):
        return self.users.get(user_id)

    async def create_user(self, email, password_hash, first_name, last_name, timezone, role_id):
        role = next(role for role in self.roles.values() if role.id == role_id)
        user = SimpleNamespace(
            id=uuid4(),
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            timezone=timezone,
            role=role,
            is_active=True,
        )
        self.users[user.id] = user
        return user


def registration(**values) -> UserCreate:
    payload = {
        "email": "ada@tutorbook.dev",
        "password": "StrongPass123!",
        "first_name": "Ada",
        "last_name": "Lovelace",
    }
    payload.update(values)
    return UserCreate(**payload)


@pytest.mark.asyncio
async def test_default_roles_are_created_once() -> None:
    repository = FakeIdentityRepository()
    service = IdentityService(repository)

    await service.ensure_default_roles()
    roles = dict(repository.roles)
    await service.ensure_default_roles()

    assert set(repository.roles) == {RoleEnum.STUDENT, RoleEnum.ADMIN}
    assert repository.roles == roles


@pytest.mark.asyncio
async def test_register_login_and_resolve_user_from_token() -> None:
    repository = FakeIdentityRepository()
    service = IdentityService(repository)
    await service.ensure_default_roles()

    user = await service.register(registration())
    token = await service.login(LoginRequest(email="ada@tutorbook.dev", password="StrongPass123!"))
    resolved = await service.get_user_from_access_token(token.access_token)

    assert user.password_hash != "StrongPass123!"
    assert user.role.name == RoleEnum.STUDENT
    assert decode_token(token.access_token)["role"] == RoleEnum.STUDENT
    assert resolved is user


@pytest.mark.asyncio
async def test_register_rejects_duplicate_email() -> None:
    repository = FakeIdentityRepository()
    service = IdentityService(repository)
    await service.ensure_default_roles()
    await service.register(registration())

    with pytest.raises(ConflictException):
        await service.register(registration(first_name="Other"))


@pytest.mark.asyncio
async def test_login_rejects_wrong_password_and_inactive_user() -> None:
    repository = FakeIdentityRepository()
    service = IdentityService(repository)
    await service.ensure_default_roles()
    user = await service.register(registration())

    with pytest.raises(ForbiddenException, match="Invalid credentials"):
        await service.login(LoginRequest(email="ada@tutorbook.dev", password="WrongPass123!"))

    user.is_active = False
    with pytest.raises(ForbiddenException, match="inactive"):
        await service.login(LoginRequest(email="ada@tutorbook.dev", password="StrongPass123!"))


@pytest.mark.asyncio
async def test_token_for_unknown_user_is_rejected() -> None:
    service = IdentityService(FakeIdentityRepository())

    with pytest.raises(ForbiddenException, match="User not found"):
        await service.get_user_from_access_token(create_access_token(subject=str(uuid4())))
