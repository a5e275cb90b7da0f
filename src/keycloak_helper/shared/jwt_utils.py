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
import textwrap
from typing import Mapping, Any, Optional, List

from starlette.responses import Response

logger = logging.getLogger(__name__)

class IdentityException(Exception):
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"[{status_code}] {detail}")


class AccessDenied(IdentityException):
    """
    Interrupts a protected request. Carries the response (login redirect or
    access-denied policy result) that must be sent instead of running the route.
    """

    def __init__(self, response: Response, detail: str = "Access denied"):
        self.response = response
        super().__init__(response.status_code, detail)


class ConfigurationError(Exception):
    """Raised at setup time when the helper or the adapter is misconfigured."""


class AdapterNotInitializedError(ConfigurationError):
    def __init__(self, message: str = "Keycloak adapter is not initialized. Call init() before protect() handles requests."):
        super().__init__(message)


def public_key_to_pem(realm_public_key: str) -> str:
    """
    Keycloak publishes the realm key as bare base64 DER (the 'realm-public-key'
    entry of keycloak.json). Wrap it so python-jose can load it.
    """
    if realm_public_key.startswith("-----BEGIN"):
        return realm_public_key
    body = "\n".join(textwrap.wrap(realm_public_key.strip(), 64))
    return f"-----BEGIN PUBLIC KEY-----\n{body}\n-----END PUBLIC KEY-----\n"


def _roles(container: Any) -> List[str]:
    if not isinstance(container, Mapping):
        return []
    roles = container.get("roles")
    if isinstance(roles, str):
        return [roles]
    if isinstance(roles, list):
        return [str(r) for r in roles if r is not None]
    return []


def realm_roles(claims: Mapping[str, Any]) -> List[str]:
    return _roles(claims.get("realm_access"))


def client_roles(claims: Mapping[str, Any], client_id: Optional[str]) -> List[str]:
    if not client_id:
        return []
    resource_access = claims.get("resource_access")
    if not isinstance(resource_access, Mapping):
        return []
    return _roles(resource_access.get(client_id))


def has_role(claims: Mapping[str, Any], name: str, client_id: Optional[str] = None) -> bool:
    """
    Keycloak role lookup:
        'realm:admin'  -> realm role 'admin'
        'app:editor'   -> client role 'editor' of client 'app'
        'editor'       -> client role 'editor' of this client (client_id)
    """
    if ":" not in name:
        return name in client_roles(claims, client_id)
    prefix, role = name.split(":", 1)
    if prefix == "realm":
        return role in realm_roles(claims)
    return role in client_roles(claims, prefix)


class Token:
    """A validated access token: the raw JWT plus its decoded claims."""

    def __init__(self, token: str, content: Mapping[str, Any], client_id: Optional[str] = None):
        self.token = token
        self.content = dict(content)
        self.client_id = client_id

    def has_role(self, name: str) -> bool:
        return has_role(self.content, name, self.client_id)

    def __repr__(self) -> str:
        return f"Token(sub={self.content.get('sub')!r}, client_id={self.client_id!r})"
