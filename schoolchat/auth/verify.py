"""
verify.py
---------
Purpose:
    Bearer token extraction for chat routes.

Notes:
    - The token is opaque here; the school API validates it when the
      profile is loaded (see services/session_registry.py).
    - Provides `token_dependency` for protected routes.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

_security = HTTPBearer(auto_error=False)


def token_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials
