"""
Session identity – who is signed in and as which role.
"""

import secrets
import string
from dataclasses import dataclass
from typing import Optional

from carecoord.config import SUPPORTED_ROLES, UNKNOWN_USER, USERS
from carecoord.joiner import pick
from carecoord.store import DocumentStore, StoreError


@dataclass
class SessionUser:
    """The authenticated user; doubles as the session provider for a SnapshotController."""
    user_id: Optional[str]
    role: Optional[str]
    display_name: str = UNKNOWN_USER

    def current_user_id(self) -> Optional[str]:
        return self.user_id

    def current_user_role(self) -> Optional[str]:
        return self.role


async def load_session_user(store: DocumentStore, api_key: str) -> SessionUser:
    """Look up a user by access key and return their SessionUser."""
    if not api_key or not api_key.strip():
        raise ValueError("Access key is required.")
    try:
        rows = await store.find(USERS, (("apiKey", api_key.strip()),))
    except StoreError as exc:
        raise ValueError(f"Could not verify access key: {exc}") from exc

    if not rows:
        raise ValueError(f"Invalid key (no match in {USERS}).")
    row = rows[0]

    role = str(row.get("role") or "").strip().lower()
    if role not in SUPPORTED_ROLES:
        raise ValueError(f"Unsupported role '{row.get('role')}' in {USERS}.")

    name = pick(row, "profile.name") or row.get("name") or UNKNOWN_USER
    return SessionUser(user_id=str(row["id"]), role=role, display_name=str(name))


def generate_api_key(prefix: str = "cc", length: int = 32) -> str:
    """Generate a secure random access key."""
    chars = string.ascii_letters + string.digits
    return f"{prefix}_{''.join(secrets.choice(chars) for _ in range(length))}"
