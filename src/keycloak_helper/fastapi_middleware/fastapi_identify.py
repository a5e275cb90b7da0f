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

import logging
from typing import TYPE_CHECKING

from fastapi import Request
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette_session import SessionMiddleware

from keycloak_helper.shared.jwt_utils import AccessDenied

if TYPE_CHECKING:
    from keycloak_helper.shared.keycloak import KeycloakAdapter
    from keycloak_helper.shared.store import MemoryStore

logger = logging.getLogger(__name__)

SESSION_SECRET = "secret"
SESSION_COOKIE = "session"


def session_middleware(store: "MemoryStore", secret_key: str = SESSION_SECRET, cookie_name: str = SESSION_COOKIE) -> Middleware:
    """
    Session middleware backed by `store`. Only the signed session id travels in
    the cookie; the session data stays server-side.
    """
    return Middleware(
        SessionMiddleware,
        secret_key=secret_key,
        cookie_name=cookie_name,
        custom_session_backend=store,
    )


class KeycloakMiddleware(BaseHTTPMiddleware):
    """
    Keycloak handshake middleware: handles the login callback and the logout
    route, and turns AccessDenied raised by protected routes into responses.
    Must run after the session middleware.
    """

    def __init__(self, app, adapter: "KeycloakAdapter", logout: str = "/logout"):
        super().__init__(app)
        self.adapter = adapter
        self.logout = logout

    async def dispatch(self, request: Request, call_next):
        if self.adapter.uses_sessions and "session" not in request.scope:
            logger.error("SessionMiddleware not detected.")
            raise RuntimeError("KeycloakMiddleware requires SessionMiddleware to be installed before it.")

        if self.logout and request.url.path == self.logout:
            return self.adapter.logout(request)

        params = request.query_params
        if self.adapter.uses_sessions and "auth_callback" in params:
            if "error" in params:
                return await self.adapter.auth_error(request)
            if "code" in params:
                logger.debug(f"Keycloak callback on {request.url.path}.")
                return await self.adapter.post_auth(request)

        try:
            return await call_next(request)
        except AccessDenied as e:
            logger.debug(f"Request to {request.url.path} interrupted: {e.detail}")
            return e.response
