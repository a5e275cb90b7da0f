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

# tests/test_tools.py
from typing import Optional

import pytest
from fastapi import Depends, FastAPI
from starlette.testclient import TestClient

from keycloak_helper.fastapi_middleware.helper import KeycloakHelper
from keycloak_helper.fastapi_middleware.tools import get_current_user, require_auth, require_role
from keycloak_helper.shared.models import UserIdentity


@pytest.fixture
def client(keycloak_config):
    helper = KeycloakHelper()
    app = FastAPI(middleware=helper.init(keycloak_config, redirect="/login"))

    @app.post("/articles", dependencies=[Depends(helper.protect())])
    async def publish(user: UserIdentity = Depends(require_role("author"))):
        return {"published_by": user.name}

    @app.delete("/articles/1", dependencies=[Depends(helper.protect())])
    async def remove(user: UserIdentity = Depends(require_role("admin"))):
        return {"removed_by": user.name}

    @app.get("/whoami")
    async def whoami(user: Optional[UserIdentity] = Depends(get_current_user)):
        return {"user": user.model_dump() if user else None}

    @app.get("/strict")
    async def strict(user: UserIdentity = Depends(require_auth)):
        return {"user": user.name}

    return TestClient(app)


def test_require_role_allows_role_holder(client, make_token):
    token = make_token(roles=["author"])
    response = client.post("/articles", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json() == {"published_by": "alice"}


def test_require_role_refuses_missing_role(client, make_token):
    token = make_token(roles=["author"])
    response = client.delete("/articles/1", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403
    assert response.json()["detail"] == "Role 'admin' required"


def test_require_role_behind_protect_still_denies_anonymous(client):
    response = client.post("/articles", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "/login"


def test_get_current_user_is_none_on_unprotected_route(client, make_token):
    response = client.get("/whoami", headers={"Authorization": f"Bearer {make_token()}"})
    assert response.json() == {"user": None}


def test_require_auth_without_protect_is_401(client):
    response = client.get("/strict")
    assert response.status_code == 401


def test_require_role_rejects_unknown_role():
    with pytest.raises(ValueError):
        require_role("editor")
