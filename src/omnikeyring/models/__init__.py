"""
Models package - Data models for OmniKeyring.

Contains:
- KeyringAccount, AccountInfo: Derived accounts and their public view
- AuthMethod, Web2Auth, Web3Auth: How a session's mnemonic was obtained
- Credentials: Username/password input
- KeyringState: Read-only facade state
- TransactionRequest, SignedTransaction: Signing payloads
- MemoryStorage, FileStorage: Record persistence
"""

from .account import (
    AuthMethod,
    Web2Auth,
    Web3Auth,
    SessionAuth,
    PrivateKeyHandle,
    KeyringAccount,
    AccountInfo,
)
from .credentials import (
    Credentials,
    normalize_username,
    validate_username,
    MIN_PASSWORD_LENGTH,
)
from .state import KeyringState
from .transaction import TransactionRequest, SignedTransaction
from .store import MemoryStorage, FileStorage

__all__ = [
    "AuthMethod",
    "Web2Auth",
    "Web3Auth",
    "SessionAuth",
    "PrivateKeyHandle",
    "KeyringAccount",
    "AccountInfo",
    "Credentials",
    "normalize_username",
    "validate_username",
    "MIN_PASSWORD_LENGTH",
    "KeyringState",
    "TransactionRequest",
    "SignedTransaction",
    "MemoryStorage",
    "FileStorage",
]
