"""Unit of work: one transaction scope with the repositories bound to it.

Side effects that must only happen after a durable commit (notifications)
are triggered by callers once the ``async with`` block has exited cleanly.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from functools import partial
from types import TracebackType

from sqlalchemy.ext.asyncio import AsyncSession

from tutorbook.core.database import SessionFactory, SessionLocal, session_scope
from tutorbook.modules.booking.repository import BookingRepository
from tutorbook.modules.identity.repository import IdentityRepository
from tutorbook.modules.scheduling.repository import SchedulingRepository


class UnitOfWork:
    """Commit on clean exit, roll back on any exception."""

    def __init__(self, session_factory: SessionFactory = SessionLocal) -> None:
        self.session_factory = session_factory
        self._scope: AbstractAsyncContextManager[AsyncSession] | None = None

    async def __aenter__(self) -> "UnitOfWork":
        self._scope = session_scope(self.session_factory)
        self.session = await self._scope.__aenter__()
        self.slots = SchedulingRepository(self.session)
        self.bookings = BookingRepository(self.session)
        self.users = IdentityRepository(self.session)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        scope, self._scope = self._scope, None
        await scope.__aexit__(exc_type, exc, tb)


UnitOfWorkFactory = Callable[[], UnitOfWork]


def get_unit_of_work_factory() -> UnitOfWorkFactory:
    """Dependency provider for the default unit of work factory."""
    return partial(UnitOfWork, SessionLocal)
