"""Video meeting room providers."""

from __future__ import annotations

import secrets
from functools import lru_cache
from typing import Protocol
from urllib.parse import quote
from uuid import UUID

from tutorbook.core.config import get_settings


class MeetingProvider(Protocol):
    """Contract for video conferencing backends."""

    def create_room(self, slot_id: UUID) -> str:
        """Return a new unguessable room name for the slot."""

    def get_join_url(self, room_name: str, display_name: str | None = None) -> str:
        """Return the URL a participant opens to join the room."""


class JitsiMeetProvider:
    """Rooms on a public Jitsi Meet instance.

    Access control is enforced by this service, not by Jitsi, so room names
    carry 64 bits of randomness and are never derived from guessable data only.
    """

    def __init__(self, domain: str = "meet.jit.si", room_prefix: str = "tutorbook") -> None:
        self.domain = domain
        self.room_prefix = room_prefix

    def create_room(self, slot_id: UUID) -> str:
        return f"{self.room_prefix}-{slot_id}-{secrets.token_hex(8)}"

    def get_join_url(self, room_name: str, display_name: str | None = None) -> str:
        base_url = f"https://{self.domain}/{quote(room_name, safe='')}"
        if display_name:
            return f'{base_url}#userInfo.displayName="{quote(display_name, safe="")}"'
        return base_url


@lru_cache
def get_meeting_provider() -> MeetingProvider:
    """Return the configured meeting provider."""
    settings = get_settings()
    return JitsiMeetProvider(settings.meeting_provider_domain, settings.meeting_room_prefix)
