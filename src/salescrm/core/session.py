"""Session identity and user roster consumed by the CRM core.

Authentication itself happens elsewhere. This module only holds the result:
the currently signed-in identity (or None) and the roster of known users.
The CRM service registers a listener here and re-initializes whenever the
identity transitions between None and a user, or between two users.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SessionUser:
    """Immutable identity of the signed-in user."""

    id: str
    name: str
    role_id: str
    email: str = ""


@dataclass(frozen=True)
class DirectoryUser:
    """Entry in the roster of known users."""

    id: str
    name: str
    email: str
    role_id: str
    is_active: bool = True


IdentityListener = Callable[[SessionUser | None], Awaitable[None]]


class SessionContext:
    """Holds the current identity and the user roster.

    Listeners are awaited in registration order on every identity
    transition. Setting the same identity again does not notify.

    Args:
        users: Initial roster of known users.
    """

    def __init__(self, users: Sequence[DirectoryUser] = ()) -> None:
        self._current_user: SessionUser | None = None
        self._users: list[DirectoryUser] = list(users)
        self._listeners: list[IdentityListener] = []

    @property
    def current_user(self) -> SessionUser | None:
        return self._current_user

    @property
    def users(self) -> list[DirectoryUser]:
        return list(self._users)

    def set_users(self, users: Sequence[DirectoryUser]) -> None:
        """Replace the roster (e.g. after the user directory reloads)."""
        self._users = list(users)

    def add_listener(self, listener: IdentityListener) -> None:
        """Register an async callable invoked with the new identity."""
        self._listeners.append(listener)

    def remove_listener(self, listener: IdentityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def set_current_user(self, user: SessionUser | None) -> None:
        """Switch the session identity and notify listeners on change."""
        if user == self._current_user:
            return

        previous = self._current_user
        self._current_user = user
        logger.info(
            "session.identity_changed",
            previous_user_id=previous.id if previous else None,
            user_id=user.id if user else None,
        )
        for listener in list(self._listeners):
            await listener(user)
