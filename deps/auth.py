

# deps/auth.py
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing import Optional
from uuid import UUID

from security import decode_token
from settings import settings
from app.purchases.service import Actor

bearer = HTTPBearer(auto_error=False)


class CurrentUser:
    def __init__(self, user_id: UUID, role: Optional[str] = None):
        self.user_id = user_id
        self.role = (role or "user").strip().lower()

    @property
    def is_admin(self) -> bool:
        return self.role == "admin" or self.user_id == settings.SYSTEM_OWNER_ID

    def as_actor(self) -> Actor:
        return Actor(user_id=self.user_id, is_admin=self.is_admin)


def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> CurrentUser:
    if not creds:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    # must be "Bearer"
    if (creds.scheme or "").lower() != "bearer":
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    payload = decode_token(creds.credentials)
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")
    try:
        return CurrentUser(user_id=UUID(sub), role=payload.get("role"))
    except ValueError:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")
