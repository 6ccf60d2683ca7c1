"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in catalog/models.py -- dataclasses own domain shape; stores and flows do the
work.

Layer rule: no imports from api/, core/, or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# "user" is the regular customer role. Order is informational only.
ROLES: tuple[str, ...] = ("user", "guide", "lead-guide", "admin")


@dataclass
class User:
    """A Natours account.

    hashed_password is the bcrypt hash and must never be copied into any
    response model -- api/models.UserResponse has no field for it.

    password_changed_at is stamped by UserStore.save_user() whenever the hash
    of an existing record changes. The guard compares it to a session token's
    issue time to reject tokens minted before the change.

    password_reset_token holds the keyed hash of the one-time reset secret,
    never the secret itself. Both reset fields are None when no reset is
    pending.
    """

    name: str
    email: str
    role: str = "user"
    id: int | None = None
    hashed_password: str | None = None
    photo: str = "default.jpg"
    password_changed_at: datetime | None = None
    password_reset_token: str | None = None
    password_reset_expires: datetime | None = None
    created_at: str | None = None
    is_active: bool = True
