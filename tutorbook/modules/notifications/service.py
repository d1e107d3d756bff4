"""Notifications business logic layer."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.database import get_db_session
from tutorbook.modules.identity.models import User
from tutorbook.modules.notifications.models import Notification
from tutorbook.modules.notifications.repository import NotificationsRepository


class NotificationsService:
    """Read side of the user's notification inbox."""

    def __init__(self, repository: NotificationsRepository) -> None:
        self.repository = repository

    async def list_my_notifications(self, actor: User, limit: int, offset: int) -> tuple[list[Notification], int]:
        """List notifications for current user."""
        return await self.repository.list_notifications_for_user(actor.id, limit, offset)


async def get_notifications_service(session: AsyncSession = Depends(get_db_session)) -> NotificationsService:
    """Dependency provider for notifications service."""
    return NotificationsService(repository=NotificationsRepository(session))
