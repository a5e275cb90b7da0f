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
# File: examples/keycloak_app.py

"""
Example: FastAPI behind Keycloak

It uses:
- `init()` to mount the session middleware (server-side MemoryStore) and the
  Keycloak handshake middleware (login callback, /logout).
- `protect()` on the routes that need a signed-in user.
- `require_role()` to keep the admin page to realm admins.
- the shared `memory` store to report live sessions.
"""

import logging

import uvicorn
from fastapi import Depends, FastAPI

from keycloak_helper import UserIdentity, init, memory, protect
from keycloak_helper.fastapi_middleware.tools import require_role

# keycloak.json keys or their camelCase aliases are both accepted
KEYCLOAK_CONFIG = {
    "realm": "blog",
    "authServerUrl": "http://localhost:8080",
    "client": "blog-web",
    "publicClient": False,
    "credentials": {"secret": "change-me"},
    # The app runs behind a TLS-terminating proxy
    "redirectProtocol": "https",
}

app = FastAPI(middleware=init(KEYCLOAK_CONFIG, logout="/logout", redirect="/"))


@app.get("/")
async def public_endpoint():
    """A public endpoint that requires no authentication."""
    return {"message": "This is a public endpoint"}


@app.get("/me")
async def me(user: UserIdentity = Depends(protect())):
    return {"message": f"Hello, {user.name}", "admin": user.admin, "author": user.author}


@app.get("/admin", dependencies=[Depends(protect())])
async def admin(user: UserIdentity = Depends(require_role("admin"))):
    return {"message": f"Admin area for {user.name}", "live_sessions": await memory.length()}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)
    logger.info(f"Protecting routes with Keycloak realm '{KEYCLOAK_CONFIG['realm']}'.")
    uvicorn.run(app, host="0.0.0.0", port=8000)
