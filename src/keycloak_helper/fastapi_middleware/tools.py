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
Developer Tools and Helpers for the Keycloak Helper.

FastAPI dependencies to read the user left by `protect()` and to restrict
routes by role.
"""

import logging
from typing import Callable, Optional

from fastapi import Request, HTTPException, Depends

from keycloak_helper.shared.models import UserIdentity

logger = logging.getLogger(__name__)

ROLE_FLAGS = ("admin", "author")


def get_current_user(request: Request) -> Optional[UserIdentity]:
    """
    FastAPI dependency to get the current user.

    Only routes guarded by `protect()` carry a user; elsewhere this is None.
    """
    return getattr(request.state, "user", None)


def require_auth(
    user: Optional[UserIdentity] = Depends(get_current_user)
) -> UserIdentity:
    """FastAPI dependency that fails with 401 when no user was attached."""
    if not user:
        logger.warning("require_auth: No user found, raising 401.")
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_role(role: str) -> Callable[..., UserIdentity]:
    """
    Dependency factory restricting a route to users holding `role`
    ('admin' or 'author'). Place it after `protect()`:

        @app.post("/articles", dependencies=[Depends(protect())])
        async def publish(user: UserIdentity = Depends(require_role("author"))):
            ...
    """
    if role not in ROLE_FLAGS:
        raise ValueError(f"Unknown role '{role}', expected one of {ROLE_FLAGS}.")

    def check_role(user: UserIdentity = Depends(require_auth)) -> UserIdentity:
        if not getattr(user, role):
            logger.info(f"User {user.name} lacks role '{role}', raising 403.")
            raise HTTPException(status_code=403, detail=f"Role '{role}' required")
        return user

    return check_role
