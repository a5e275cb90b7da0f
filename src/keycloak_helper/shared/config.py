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
Client configuration for the Keycloak adapter.

Callers may spell keys the keycloak.json way ('auth-server-url') or camelCase
('authServerUrl'). `normalize_config` folds every accepted spelling into the
canonical key once, before the adapter is built; `ClientConfig` is the frozen
record the adapter works from.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# canonical key -> accepted spellings, highest precedence first
ALIASES: Dict[str, Tuple[str, ...]] = {
    "auth-server-url": ("auth-server-url", "authServerUrl"),
    "ssl-required": ("ssl-required", "sslRequired"),
    "public-client": ("public-client", "publicClient"),
    "confidential-port": ("confidential-port", "confidentialPort"),
    "bearer-only": ("bearer-only", "bearerOnly"),
    "resource": ("resource", "client"),
    "redirect-protocol": ("redirect-protocol", "redirectProtocol"),
    "realm-public-key": ("realm-public-key", "realmPublicKey"),
}

DEFAULTS: Dict[str, Any] = {
    "ssl-required": "none",
    "public-client": True,
    "confidential-port": 0,
}

_ALIAS_KEYS = {alias for spellings in ALIASES.values() for alias in spellings[1:]}


def normalize_config(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Resolve aliased keys into their canonical names.

    The first spelling with a value wins, so a canonical key always beats its
    alias. A field with no value under any spelling is left out, which keeps
    optional fields unset and lets defaults apply. Unknown keys pass through.
    The input mapping is not modified.
    """
    normalized = {k: v for k, v in raw.items() if k not in _ALIAS_KEYS and k not in ALIASES}
    for canonical, spellings in ALIASES.items():
        for spelling in spellings:
            value = raw.get(spelling)
            if value is not None:
                normalized[canonical] = value
                break
    return normalized


def merge_with_defaults(normalized: Mapping[str, Any]) -> Dict[str, Any]:
    """Explicit values always win over DEFAULTS."""
    return {**DEFAULTS, **normalized}


class ClientConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    realm: Optional[str] = Field(None, description="Keycloak realm name.")
    auth_server_url: Optional[str] = Field(None, alias="auth-server-url", description="Base URL of the Keycloak server.")
    ssl_required: str = Field("none", alias="ssl-required")
    public_client: bool = Field(True, alias="public-client")
    confidential_port: int = Field(0, alias="confidential-port")
    bearer_only: Optional[bool] = Field(None, alias="bearer-only", description="Only accept bearer tokens, never redirect to login.")
    resource: Optional[str] = Field(None, description="Client id of this application in Keycloak.")
    credentials: Dict[str, Any] = Field(default_factory=dict, description="Client credentials, e.g. {'secret': '...'}.")
    redirect_protocol: Optional[str] = Field(None, alias="redirect-protocol", description="Scheme forced on redirect_uri values built by the adapter.")
    realm_public_key: Optional[str] = Field(None, alias="realm-public-key", description="Realm signing key; when unset the JWKS endpoint is used.")

    @property
    def client_id(self) -> Optional[str]:
        return self.resource

    @property
    def secret(self) -> Optional[str]:
        return self.credentials.get("secret")

    @property
    def is_confidential(self) -> bool:
        return not self.public_client

    @property
    def realm_url(self) -> str:
        return f"{(self.auth_server_url or '').rstrip('/')}/realms/{self.realm}"
