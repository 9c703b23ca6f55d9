"""
Identity sessions.

Authentication itself happens elsewhere; this module only maps opaque session
tokens to the stable `Identity` the auth bootstrap produced.

- `IdentityRegistry.issue(identity)` → token
- `current_identity` — FastAPI dependency reading `Authorization: Bearer <token>`
  (HTTP) or `?token=` (WebSocket handshakes cannot set headers from a browser).
  401 when the token is missing or unknown.
"""
import logging
from typing import Dict, Optional
from uuid import uuid4

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from models.room import Identity

logger = logging.getLogger(__name__)


class IdentityRegistry:
    def __init__(self):
        self._sessions: Dict[str, Identity] = {}

    def issue(self, identity: Identity) -> str:
        token = uuid4().hex
        self._sessions[token] = identity
        logger.debug(f"Session issued for {identity.user_id}")
        return token

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        return self._sessions.get(token)

    def revoke(self, token: Optional[str]) -> None:
        if token:
            self._sessions.pop(token, None)

    def __len__(self) -> int:
        return len(self._sessions)


def get_identity_registry(request: Request) -> IdentityRegistry:
    return request.app.state.identities


# auto_error=False so a missing header can still fall back to ?token=
bearer = HTTPBearer(auto_error=False)


def current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    registry: IdentityRegistry = Depends(get_identity_registry),
) -> Identity:
    token = None
    if credentials and (credentials.scheme or "").lower() == "bearer":
        token = credentials.credentials
    else:
        token = request.query_params.get("token")
    identity = registry.resolve(token)
    if identity is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return identity
