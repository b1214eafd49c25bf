"""LinkupTracker — in-memory LibreLinkUp session state."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Optional

# Re-login when the token has less than this many seconds left
TOKEN_EXPIRY_BUFFER = 60


def sha256_hex(value: object) -> str:
    return hashlib.sha256(str(value).encode()).hexdigest()


@dataclass
class Session:
    """Bearer token, its expiry, and the resolved account/patient ids.

    Owned by one client; never written to disk.
    """

    token: Optional[str] = None
    token_expires: int = 0  # epoch seconds
    account_id: Optional[str] = None
    patient_id: Optional[str] = None

    def is_token_valid(self, now: float) -> bool:
        if not self.token or not self.token_expires:
            return False
        return self.token_expires - TOKEN_EXPIRY_BUFFER > now

    def store_ticket(self, token: str, expires: int) -> None:
        self.token = token
        self.token_expires = expires

    def invalidate_token(self) -> None:
        self.token = None
        self.token_expires = 0

    def invalidate(self) -> None:
        """Forget everything; the next call logs in from scratch."""
        self.invalidate_token()
        self.account_id = None
        self.patient_id = None

    def account_id_hash(self) -> Optional[str]:
        if not self.account_id:
            return None
        return sha256_hex(self.account_id)
