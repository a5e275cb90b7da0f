#    Copyright 2025 FAO
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
#
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

import copy
import time
import typing
import logging

from starlette_session.interfaces import ISessionBackend

logger = logging.getLogger(__name__)


class MemoryStore(ISessionBackend):
    """
    A server-side, in-process session backend for starlette-session.

    The same instance must be handed to the session middleware and to the
    Keycloak adapter, otherwise the login handshake loses its state between
    the redirect to Keycloak and the callback.

    starlette-session only calls get, set and delete. exists, touch, all,
    length and clear are there for the application, e.g. to count or revoke
    live sessions.
    """

    def __init__(self, resave: bool = False):
        """
        Args:
            resave: If False, writing back an unchanged session only refreshes
                its expiry instead of replacing the stored record.
        """
        self.resave = resave
        self._sessions: typing.Dict[str, typing.Tuple[typing.Dict, typing.Optional[float]]] = {}

    def _expired(self, expires_at: typing.Optional[float]) -> bool:
        return expires_at is not None and time.time() >= expires_at

    def _live(self, session_id: str) -> typing.Optional[typing.Dict]:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        data, expires_at = entry
        if self._expired(expires_at):
            logger.debug(f"Session {session_id} expired, purging.")
            del self._sessions[session_id]
            return None
        return data

    async def get(self, key: str, **kwargs: typing.Any) -> typing.Dict:
        data = self._live(key)
        return copy.deepcopy(data) if data is not None else {}

    async def set(self, key: str, value: typing.Dict, exp: typing.Optional[int] = None, **kwargs: typing.Any) -> str:
        expires_at = time.time() + exp if exp else None
        current = self._live(key)
        if current is not None and current == value and not self.resave:
            self._sessions[key] = (current, expires_at)
            return key
        self._sessions[key] = (copy.deepcopy(dict(value)), expires_at)
        return key

    async def delete(self, key: str, **kwargs: typing.Any) -> None:
        self._sessions.pop(key, None)

    async def exists(self, key: str) -> bool:
        """Whether a live (unexpired) session is stored under `key`."""
        return self._live(key) is not None

    async def touch(self, key: str, exp: typing.Optional[int] = None) -> None:
        """Reset the expiry of a live session without changing its data."""
        data = self._live(key)
        if data is not None:
            self._sessions[key] = (data, time.time() + exp if exp else None)

    async def all(self) -> typing.Dict[str, typing.Dict]:
        """Copies of every live session, keyed by session id."""
        sessions = {}
        for key in list(self._sessions):
            data = self._live(key)
            if data is not None:
                sessions[key] = copy.deepcopy(data)
        return sessions

    async def length(self) -> int:
        return len(await self.all())

    async def clear(self) -> None:
        """Drop every session, logging all users out."""
        self._sessions.clear()


# Shared by the default helper's session middleware and its adapter.
memory = MemoryStore()
