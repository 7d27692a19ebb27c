"""
Identity context: who is signed in and which roles they hold.

Initialisation is strictly sequenced -- resolve the session user, then
await the role lookup, then mark the context ready, then notify
listeners.  Listeners run after the state is settled, so an engine may
call back into the context from its listener without re-entrancy issues.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Protocol

from ridesync.domain.entities import Principal
from ridesync.domain.enums import Role

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[Principal]], Awaitable[None]]


class RoleDirectory(Protocol):
    async def roles_for(self, user_id: str) -> frozenset[Role]: ...


class IdentityContext:
    def __init__(self, directory: RoleDirectory):
        self.directory = directory
        self._principal: Optional[Principal] = None
        self._ready = False
        self._listeners: list[IdentityListener] = []

    @property
    def ready(self) -> bool:
        return self._ready

    def current_principal(self) -> Optional[Principal]:
        return self._principal

    def has_role(self, role: Role) -> bool:
        return self._principal is not None and self._principal.has_role(role)

    def add_listener(self, listener: IdentityListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: IdentityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def bind(self, user_id: str) -> Principal:
        """Sign *user_id* in: load roles, then publish the new principal."""
        self._ready = False
        roles = await self.directory.roles_for(user_id)
        self._principal = Principal(id=user_id, roles=frozenset(roles))
        self._ready = True
        logger.info(
            "Signed in %s with roles %s",
            user_id, sorted(r.value for r in self._principal.roles),
        )
        await self._notify()
        return self._principal

    async def clear(self) -> None:
        """Sign out."""
        if self._principal is None and self._ready:
            return
        self._principal = None
        self._ready = True
        logger.info("Signed out")
        await self._notify()

    async def _notify(self) -> None:
        for listener in list(self._listeners):
            await listener(self._principal)
