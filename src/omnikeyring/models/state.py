"""
Keyring state model.

KeyringState is the facade-visible projection of the live session. It is
rebuilt on every read and never carries key material.
"""

from dataclasses import dataclass, field
from typing import Optional

from .account import AccountInfo, AuthMethod


@dataclass(frozen=True)
class KeyringState:
    """Read-only keyring status for UI binding."""
    is_initialized: bool = False
    is_locked: bool = True
    auth_method: Optional[AuthMethod] = None
    accounts: tuple[AccountInfo, ...] = field(default_factory=tuple)
    active_account_id: Optional[str] = None
    username: Optional[str] = None
    registry_verified: Optional[bool] = None

    @property
    def active_account(self) -> Optional[AccountInfo]:
        for account in self.accounts:
            if account.id == self.active_account_id:
                return account
        return None

    def to_dict(self) -> dict:
        return {
            "is_initialized": self.is_initialized,
            "is_locked": self.is_locked,
            "auth_method": self.auth_method.value if self.auth_method else None,
            "accounts": [a.to_dict() for a in self.accounts],
            "active_account_id": self.active_account_id,
            "username": self.username,
            "registry_verified": self.registry_verified,
        }
