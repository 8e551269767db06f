"""
Services package - Session, signing and registry services for OmniKeyring.

Contains:
- KeyringService: The keyring facade (auth flows, accounts, signing)
- SessionManager: Session lifetime and lazy expiry
- SigningDispatcher: Per-chain message/transaction signing
- RegistryClient, RegistrationRelay, RegistrationWorker: Name registry access
"""

from .keyring import KeyringService
from .session import SessionManager, SessionState, Session
from .signing import SigningDispatcher
from .registry import RegistryClient, RegistrationRelay, RegistrationWorker, RegistrationJob

__all__ = [
    "KeyringService",
    "SessionManager",
    "SessionState",
    "Session",
    "SigningDispatcher",
    "RegistryClient",
    "RegistrationRelay",
    "RegistrationWorker",
    "RegistrationJob",
]
