"""
Account Registry - per-chain accounts of the live session.

Holds one account per chain type plus the active-account pointer.
"""

import logging
from typing import Optional

from ..models.account import KeyringAccount

logger = logging.getLogger(__name__)


class AccountRegistry:
    """In-memory chain_type -> account map with an active pointer."""

    def __init__(self, accounts: Optional[list[KeyringAccount]] = None):
        self._accounts: dict[str, KeyringAccount] = {}
        self._active_id: Optional[str] = None
        self._balances: dict[str, str] = {}  # account id -> formatted balance
        for account in accounts or []:
            self.add(account)

    def add(self, account: KeyringAccount) -> KeyringAccount:
        """
        Add an account for its chain.

        Returns the already-registered account if the chain is present.
        The first account added becomes active.
        """
        existing = self._accounts.get(account.chain_type)
        if existing is not None:
            if existing.address != account.address:
                logger.warning(
                    f"Ignoring second {account.chain_type} account {account.address}"
                )
            account.wipe()
            return existing

        self._accounts[account.chain_type] = account
        if self._active_id is None:
            self._active_id = account.id
        return account

    def get(self, chain_type: str) -> Optional[KeyringAccount]:
        """Get the account for a chain type."""
        return self._accounts.get(chain_type)

    def get_by_address(self, address: str,
                       chain_type: Optional[str] = None) -> Optional[KeyringAccount]:
        """
        Find an account by address (case-insensitive).

        EVM chains can share an address; chain_type picks one of them,
        otherwise the first registered wins.
        """
        for account in self._accounts.values():
            if chain_type is not None and account.chain_type != chain_type:
                continue
            if account.address.lower() == address.lower():
                return account
        return None

    def set_active(self, address: str, chain_type: Optional[str] = None) -> bool:
        """Set the active account by address. Unknown addresses are ignored."""
        account = self.get_by_address(address, chain_type)
        if account is None:
            return False
        self._active_id = account.id
        return True

    @property
    def active(self) -> Optional[KeyringAccount]:
        """The currently active account."""
        for account in self._accounts.values():
            if account.id == self._active_id:
                return account
        return None

    def chain_types(self) -> list[str]:
        return list(self._accounts.keys())

    def addresses(self) -> set[tuple[str, str]]:
        """(chain_type, address) pairs, for comparing account sets."""
        return {(a.chain_type, a.address) for a in self._accounts.values()}

    def set_balance(self, account_id: str, balance: str) -> None:
        self._balances[account_id] = balance

    def get_balance(self, account_id: str) -> Optional[str]:
        return self._balances.get(account_id)

    def __len__(self) -> int:
        return len(self._accounts)

    def clear(self) -> None:
        """Wipe all key material and empty the registry."""
        for account in self._accounts.values():
            account.wipe()
        self._accounts.clear()
        self._balances.clear()
        self._active_id = None

    # Last in the class body so it doesn't shadow the builtin in annotations
    def list(self, chain_type: Optional[str] = None) -> list[KeyringAccount]:
        """All accounts, optionally filtered by chain type."""
        return [a for a in self._accounts.values()
                if chain_type is None or a.chain_type == chain_type]
