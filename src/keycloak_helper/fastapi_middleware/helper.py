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

"""
Keycloak Helper.

Middleware and route guards that put a Keycloak client in front of FastAPI
routes:

    app = FastAPI(middleware=init(config, logout="/logout", redirect="/login"))

    @app.get("/articles/new")
    async def new_article(user: UserIdentity = Depends(protect())):
        ...

`init` installs the session and handshake middleware for the whole site;
`protect` guards a single route and leaves the authenticated user in
`request.state.user`.
"""

import logging
from typing import Any, Callable, Awaitable, List, Mapping, Optional

from fastapi import Request
from starlette.middleware import Middleware
from starlette.responses import RedirectResponse, Response

from keycloak_helper.fastapi_middleware.fastapi_identify import (
    SESSION_COOKIE,
    SESSION_SECRET,
    session_middleware,
)
from keycloak_helper.shared.config import merge_with_defaults, normalize_config
from keycloak_helper.shared.jwt_utils import AdapterNotInitializedError, Token
from keycloak_helper.shared.keycloak import AccessDeniedHandler, KeycloakAdapter
from keycloak_helper.shared.models import GuardOptions, RequestView, UserIdentity, user_from_claims
from keycloak_helper.shared.store import MemoryStore, memory

logger = logging.getLogger(__name__)


def redirect_access_denied(location: str) -> AccessDeniedHandler:
    def access_denied(request: Request) -> Response:
        return RedirectResponse(location, status_code=302)
    return access_denied


class KeycloakHelper:
    """
    Holds one Keycloak client: the session store shared with the session
    middleware, and the adapter created by `init` and used by every `protect`.
    """

    def __init__(self, store: Optional[MemoryStore] = None, secret_key: str = SESSION_SECRET, cookie_name: str = SESSION_COOKIE):
        self.store = store if store is not None else MemoryStore()
        self.secret_key = secret_key
        self.cookie_name = cookie_name
        self._adapter: Optional[KeycloakAdapter] = None

    @property
    def adapter(self) -> KeycloakAdapter:
        if self._adapter is None:
            raise AdapterNotInitializedError()
        return self._adapter

    @property
    def initialized(self) -> bool:
        return self._adapter is not None

    def init(
        self,
        config: Mapping[str, Any],
        logout: str = "/logout",
        redirect: str = "",
        access_denied: Optional[AccessDeniedHandler] = None,
    ) -> List[Middleware]:
        """
        Initialize the Keycloak middleware for site-wide coverage.

        Args:
            config: client configuration, keycloak.json keys or camelCase aliases
                ('authServerUrl', 'sslRequired', 'publicClient', 'confidentialPort',
                'bearerOnly', 'client', 'redirectProtocol').
            logout: path that logs the user out.
            redirect: where denied requests are sent, also the page shown after logout.
            access_denied: replaces the redirect for denied requests.

        Returns:
            [session middleware, Keycloak handshake middleware], in mounting order.

        Raises:
            ConfigurationError: the adapter cannot be built from `config`.
        """
        adapter = KeycloakAdapter({"store": self.store}, merge_with_defaults(normalize_config(config)))

        if access_denied is not None:
            adapter.access_denied = access_denied
        elif redirect:
            adapter.access_denied = redirect_access_denied(redirect)
        adapter.post_logout_redirect = redirect

        if self._adapter is not None:
            logger.warning("init() called again, replacing the existing Keycloak adapter.")
        self._adapter = adapter
        logger.info(f"Keycloak client '{adapter.config.client_id}' initialized for realm '{adapter.config.realm}'.")

        return [
            session_middleware(self.store, secret_key=self.secret_key, cookie_name=self.cookie_name),
            adapter.middleware(logout=logout),
        ]

    def protect(self, config: Optional[Mapping[str, Any]] = None) -> Callable[[Request], Awaitable[UserIdentity]]:
        """
        Requires a Keycloak login for the route. Use as a FastAPI dependency;
        on success the user is returned and stored in `request.state.user`.

        Args:
            config: {'protocol': 'https'} forces the scheme of this route's
                redirect_uri (e.g. behind a TLS-terminating proxy).
        """
        options = GuardOptions.model_validate(dict(config or {}))

        async def keycloak_protect(request: Request) -> UserIdentity:
            adapter = self.adapter
            protocol = options.protocol or adapter.config.redirect_protocol
            view = RequestView.from_request(request, protocol=protocol)

            found = {}

            def confirm_roles(token: Token, view: RequestView) -> bool:
                # roles only flag the user, they never refuse access here
                found["user"] = user_from_claims(token.content, adapter.config.client_id)
                return True

            await adapter.protect(confirm_roles)(request, view)

            user = found["user"]
            request.state.user = user
            logger.debug(f"Keycloak user {user.name} allowed on {view.original_url}.")
            return user

        return keycloak_protect


default_helper = KeycloakHelper(store=memory)


def init(
    config: Mapping[str, Any],
    logout: str = "/logout",
    redirect: str = "",
    access_denied: Optional[AccessDeniedHandler] = None,
) -> List[Middleware]:
    return default_helper.init(config, logout=logout, redirect=redirect, access_denied=access_denied)


def protect(config: Optional[Mapping[str, Any]] = None) -> Callable[[Request], Awaitable[UserIdentity]]:
    return default_helper.protect(config)
