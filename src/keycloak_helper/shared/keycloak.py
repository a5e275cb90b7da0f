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

import inspect
import logging
import secrets
import time
from typing import Optional, Any, Dict, Mapping, Callable, Awaitable, Union
from urllib.parse import urlencode, urljoin

import httpx
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError
from pydantic import ValidationError
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, RedirectResponse, Response

from keycloak_helper.fastapi_middleware.fastapi_identify import KeycloakMiddleware
from keycloak_helper.shared.config import ClientConfig
from keycloak_helper.shared.jwt_utils import (
    AccessDenied,
    ConfigurationError,
    IdentityException,
    Token,
    public_key_to_pem,
)
from keycloak_helper.shared.models import RequestView, session_grant, strip_callback_params

logger = logging.getLogger(__name__)

AccessDeniedHandler = Callable[[Request], Union[Response, Awaitable[Response]]]
Guard = Callable[[Token, RequestView], bool]

SESSION_TOKEN_KEY = "keycloak-token"
SESSION_STATE_KEY = "keycloak-state"


def default_access_denied(request: Request) -> Response:
    return PlainTextResponse("Access denied", status_code=403)


class GrantManager:
    """
    Talks to the Keycloak realm endpoints: verifies access tokens locally and
    exchanges authorization codes for grants.
    """

    def __init__(self, config: ClientConfig, algorithms=("RS256",), timeout: float = 10):
        self.config = config
        self.algorithms = list(algorithms)
        self.timeout = timeout

        # Caching
        self._jwks_cache: Dict[str, Any] = {}
        self._jwks_timestamp: float = 0
        self._cache_ttl = 3600  # Cache keys for 1 hour

    @property
    def openid_url(self) -> str:
        return f"{self.config.realm_url}/protocol/openid-connect"

    @property
    def certs_url(self) -> str:
        return f"{self.openid_url}/certs"

    @property
    def token_url(self) -> str:
        return f"{self.openid_url}/token"

    def login_url(self, redirect_uri: str, state: str) -> str:
        query = urlencode({
            "client_id": self.config.client_id,
            "state": state,
            "redirect_uri": redirect_uri,
            "scope": "openid",
            "response_type": "code",
        })
        return f"{self.openid_url}/auth?{query}"

    def logout_url(self, redirect_uri: str, id_token: Optional[str] = None) -> str:
        params = {"client_id": self.config.client_id, "post_logout_redirect_uri": redirect_uri}
        if id_token:
            params["id_token_hint"] = id_token
        return f"{self.openid_url}/logout?{urlencode(params)}"

    async def _get_jwks(self) -> Dict[str, Any]:
        """Fetches and caches the realm JWKS."""
        if self._jwks_cache and time.time() < self._jwks_timestamp + self._cache_ttl:
            return self._jwks_cache

        logger.info(f"Fetching JWKS from {self.certs_url}")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                resp = await client.get(self.certs_url)
                resp.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Failed to fetch Keycloak JWKS: {e}")
                raise IdentityException(502, "Could not fetch Keycloak signing keys") from e
        self._jwks_cache = resp.json()
        self._jwks_timestamp = time.time()
        return self._jwks_cache

    async def _signing_key(self) -> Union[str, Dict[str, Any]]:
        if self.config.realm_public_key:
            return public_key_to_pem(self.config.realm_public_key)
        return await self._get_jwks()

    async def validate_access_token(self, raw: str) -> Token:
        if not raw:
            raise IdentityException(401, "Missing access token")
        key = await self._signing_key()
        try:
            payload = jwt.decode(
                raw,
                key,
                algorithms=self.algorithms,
                issuer=self.config.realm_url,
                options={
                    "verify_signature": True,
                    "verify_aud": False,
                    "verify_exp": True,
                },
            )
        except ExpiredSignatureError as e:
            logger.info("Keycloak token expired")
            raise IdentityException(401, "Token expired") from e
        except JWTClaimsError as e:
            logger.warning(f"Keycloak token claims invalid: {e}")
            raise IdentityException(403, f"Invalid claims: {str(e)}") from e
        except JWTError as e:
            logger.warning(f"Keycloak token signature invalid: {e}")
            raise IdentityException(401, "Invalid token signature") from e
        return Token(raw, payload, self.config.client_id)

    async def obtain_from_code(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.config.client_id,
        }
        if self.config.is_confidential and self.config.secret:
            data["client_secret"] = self.config.secret

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(self.token_url, data=data)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as e:
                logger.error(f"Keycloak code exchange failed: {e}")
                raise IdentityException(502, "Authorization code exchange failed") from e


class KeycloakAdapter:
    """
    One Keycloak client: validates tokens, drives the login/logout handshake
    and decides what happens to requests that are not allowed through.

    Args:
        store_options: {'store': <session store>} to keep grants in the session,
            or an empty mapping for bearer-token-only operation.
        config: merged client configuration (canonical keys).

    Raises:
        ConfigurationError: the configuration cannot describe a usable client.
    """

    def __init__(self, store_options: Optional[Mapping[str, Any]], config: Mapping[str, Any]):
        self.store = (store_options or {}).get("store")
        try:
            self.config = ClientConfig.model_validate(dict(config))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid Keycloak client configuration: {e}") from e
        self._check_config()

        self.grant_manager = GrantManager(self.config)
        self.access_denied: AccessDeniedHandler = default_access_denied
        self.post_logout_redirect: str = ""

    def _check_config(self):
        config = self.config
        if not config.realm:
            raise ConfigurationError("Keycloak configuration is missing 'realm'.")
        if not config.auth_server_url:
            raise ConfigurationError("Keycloak configuration is missing 'auth-server-url'.")
        try:
            url = httpx.URL(config.auth_server_url)
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Malformed 'auth-server-url': {config.auth_server_url}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigurationError(f"Malformed 'auth-server-url': {config.auth_server_url}")
        if not config.resource:
            raise ConfigurationError("Keycloak configuration is missing 'resource' (client id).")
        if config.is_confidential and not config.bearer_only and not config.secret:
            raise ConfigurationError("Confidential Keycloak clients require 'credentials.secret'.")

    @property
    def uses_sessions(self) -> bool:
        return self.store is not None

    def middleware(self, logout: str = "/logout") -> Middleware:
        """The handshake middleware entry for this adapter."""
        return Middleware(KeycloakMiddleware, adapter=self, logout=logout)

    def redirect_to_login(self, request: Request) -> bool:
        # API callers get the access-denied policy instead of an HTML login page
        if self.config.bearer_only or not self.uses_sessions:
            return False
        return "text/html" in request.headers.get("accept", "")

    async def deny(self, request: Request) -> Response:
        response = self.access_denied(request)
        if inspect.isawaitable(response):
            response = await response
        return response

    async def get_token(self, request: Request) -> Optional[Token]:
        """
        Bearer header first, then the grant kept in the session.
        An invalid bearer token raises; a stale session grant is dropped.
        """
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.lower().startswith("bearer "):
            return await self.grant_manager.validate_access_token(auth_header[7:].strip())

        if not self.uses_sessions or "session" not in request.scope:
            return None

        grant = request.session.get(SESSION_TOKEN_KEY)
        if not grant:
            return None
        try:
            return await self.grant_manager.validate_access_token(grant.get("access_token", ""))
        except IdentityException as e:
            logger.info(f"Dropping stored Keycloak grant: {e.detail}")
            request.session.pop(SESSION_TOKEN_KEY, None)
            return None

    def login_redirect(self, request: Request, view: RequestView) -> Response:
        state = secrets.token_urlsafe(16)
        redirect_uri = view.redirect_uri
        request.session[SESSION_STATE_KEY] = {"state": state, "redirect_uri": redirect_uri}
        logger.debug(f"Redirecting to Keycloak login, callback {redirect_uri}")
        return RedirectResponse(self.grant_manager.login_url(redirect_uri, state), status_code=302)

    def protect(self, guard: Optional[Guard] = None) -> Callable[[Request, RequestView], Awaitable[Token]]:
        """
        Build the per-request check. The returned coroutine function yields the
        validated token or raises AccessDenied carrying the response to send.
        """
        async def protect_request(request: Request, view: RequestView) -> Token:
            try:
                token = await self.get_token(request)
            except IdentityException as e:
                logger.warning(f"Rejected token for {view.original_url}: {e.detail}")
                raise AccessDenied(await self.deny(request), detail=e.detail) from e

            if token is None:
                if self.redirect_to_login(request):
                    raise AccessDenied(self.login_redirect(request, view), detail="Login required")
                logger.info(f"Unauthenticated request to {view.original_url}.")
                raise AccessDenied(await self.deny(request), detail="Not authenticated")

            if guard is not None and not guard(token, view):
                logger.info(f"Guard refused {token!r} for {view.original_url}.")
                raise AccessDenied(await self.deny(request), detail="Forbidden")
            return token

        return protect_request

    async def post_auth(self, request: Request) -> Response:
        """Complete the login: check state, exchange the code, keep the grant."""
        params = request.query_params
        pending = request.session.pop(SESSION_STATE_KEY, None) or {}
        if not pending or params.get("state") != pending.get("state"):
            logger.warning("Keycloak callback state mismatch.")
            return await self.deny(request)

        try:
            grant = await self.grant_manager.obtain_from_code(params["code"], pending["redirect_uri"])
            token = await self.grant_manager.validate_access_token(grant.get("access_token", ""))
        except IdentityException as e:
            logger.warning(f"Keycloak login failed: {e.detail}")
            return await self.deny(request)

        request.session[SESSION_TOKEN_KEY] = session_grant(grant)
        logger.info(f"Keycloak login completed for {token.content.get('preferred_username')}.")
        target = strip_callback_params(pending["redirect_uri"])
        return RedirectResponse(target, status_code=302)

    async def auth_error(self, request: Request) -> Response:
        """Keycloak answered the login with an error: end the handshake and deny."""
        request.session.pop(SESSION_STATE_KEY, None)
        params = request.query_params
        logger.warning(f"Keycloak login refused: {params.get('error')} {params.get('error_description', '')}".rstrip())
        return await self.deny(request)

    def logout(self, request: Request) -> Response:
        grant = {}
        if "session" in request.scope:
            grant = request.session.pop(SESSION_TOKEN_KEY, None) or {}
            request.session.pop(SESSION_STATE_KEY, None)

        base_url = str(request.base_url)
        return_to = urljoin(base_url, self.post_logout_redirect) if self.post_logout_redirect else base_url
        logger.info("Keycloak logout, redirecting to end-session endpoint.")
        return RedirectResponse(self.grant_manager.logout_url(return_to, grant.get("id_token")), status_code=302)
