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

from typing import Optional, Dict, Any, Mapping
from urllib.parse import unquote_plus

from pydantic import BaseModel, ConfigDict, Field

from keycloak_helper.shared.jwt_utils import has_role

# Query parameters Keycloak appends on its way back to the application.
CALLBACK_PARAMS = ("auth_callback", "code", "state", "session_state", "iss", "error", "error_description")


def strip_callback_params(url: str) -> str:
    """Drop callback parameters from `url`, leaving every other byte untouched."""
    path, sep, query = url.partition("?")
    if not sep:
        return url
    kept = [pair for pair in query.split("&") if pair and unquote_plus(pair.split("=", 1)[0]) not in CALLBACK_PARAMS]
    return f"{path}?{'&'.join(kept)}" if kept else path


class UserIdentity(BaseModel):
    id: Optional[str] = Field(None, description="Unique user identifier, from the 'sub' claim.")
    name: Optional[str] = Field(None, description="Display name, from the 'preferred_username' claim.")
    admin: bool = Field(False, description="Holds the 'realm:admin' role.")
    author: bool = Field(False, description="Holds the 'realm:author' role.")


def user_from_claims(claims: Mapping[str, Any], client_id: Optional[str] = None) -> UserIdentity:
    """Map validated token claims to the application user. Missing claims stay None."""
    return UserIdentity(
        id=claims.get("sub"),
        name=claims.get("preferred_username"),
        admin=has_role(claims, "realm:admin", client_id),
        author=has_role(claims, "realm:author", client_id),
    )


class GuardOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    protocol: Optional[str] = Field(None, description="Scheme used for this route's redirect_uri.")


class RequestView(BaseModel):
    """
    The part of a request the adapter needs to build a callback URL.
    Only `protocol` may differ from the incoming request.
    """
    model_config = ConfigDict(frozen=True)

    hostname: str
    port: Optional[int] = None
    original_url: str
    protocol: str

    @classmethod
    def from_request(cls, request: Any, protocol: Optional[str] = None) -> "RequestView":
        url = request.url
        # url.path is percent-decoded; keep the path exactly as it was sent
        raw_path = request.scope.get("raw_path")
        if raw_path is not None:
            original_url = raw_path.decode("latin-1")
            root_path = request.scope.get("root_path", "")
            if root_path and not original_url.startswith(root_path):
                original_url = f"{root_path}{original_url}"
        else:
            original_url = url.path
        if url.query:
            original_url = f"{original_url}?{url.query}"
        return cls(
            hostname=url.hostname or "",
            port=url.port,
            original_url=original_url,
            protocol=protocol or url.scheme,
        )

    @property
    def redirect_uri(self) -> str:
        port = f":{self.port}" if self.port else ""
        target = strip_callback_params(self.original_url)
        separator = "&" if "?" in target else "?"
        return f"{self.protocol}://{self.hostname}{port}{target}{separator}auth_callback=1"


def session_grant(grant: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep only what the adapter needs from a token endpoint response."""
    return {k: grant[k] for k in ("access_token", "refresh_token", "id_token", "expires_in") if k in grant}
