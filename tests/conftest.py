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

# tests/conftest.py
import base64
import time

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

AUTH_SERVER_URL = "http://idp.test/auth"
REALM = "blog"
ISSUER = f"{AUTH_SERVER_URL}/realms/{REALM}"
CLIENT_ID = "blog-web"


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_pem(rsa_key):
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def public_pem(rsa_key):
    return rsa_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


@pytest.fixture(scope="session")
def realm_public_key(rsa_key):
    # keycloak.json style: bare base64 DER
    der = rsa_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der).decode()


@pytest.fixture
def keycloak_config(realm_public_key):
    """Public client described with camelCase aliases only."""
    return {
        "realm": REALM,
        "authServerUrl": AUTH_SERVER_URL,
        "client": CLIENT_ID,
        "realmPublicKey": realm_public_key,
    }


@pytest.fixture
def make_token(private_pem):
    def _make(roles=(), exp_in=3600, headers=None, **claims):
        now = int(time.time())
        payload = {
            "sub": "user-1",
            "preferred_username": "alice",
            "iss": ISSUER,
            "iat": now,
            "exp": now + exp_in,
            "typ": "Bearer",
            "azp": CLIENT_ID,
            "realm_access": {"roles": list(roles)},
        }
        payload.update(claims)
        payload = {k: v for k, v in payload.items() if v is not None}
        return jwt.encode(payload, private_pem, algorithm="RS256", headers=headers)
    return _make
