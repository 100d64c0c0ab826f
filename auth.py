"""Request identity.

Authentication happens upstream; the gateway forwards the verified user as
X-User-Id / X-User-Role / X-User-Email headers.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException


@dataclass
class CurrentUser:
    id: str
    role: str = "customer"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def can_access(self, owner_id: str) -> bool:
        """Owners and admins may act on a user's resources."""
        return self.is_admin or str(owner_id) == self.id


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return CurrentUser(id=x_user_id, role=x_user_role or "customer", email=x_user_email)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
