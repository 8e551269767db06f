"""
OmniKeyring - Unified multi-chain keyring.

One mnemonic, obtained from a username/password pair or a BIP-39 phrase,
becomes a deterministic set of per-chain accounts behind one session and
signing API.
"""

__version__ = "0.1.0"

from .errors import (
    KeyringError,
    InvalidCredentials,
    UsernameTaken,
    AccountNotFound,
    InvalidSeed,
    NotAuthenticated,
    UnsupportedChain,
    CollaboratorUnavailable,
    NotInitialized,
    OperationSuperseded,
    WalletExists,
)
from .models import Credentials, KeyringState, AccountInfo, AuthMethod, TransactionRequest
from .services import KeyringService

__all__ = [
    "__version__",
    "KeyringService",
    "Credentials",
    "KeyringState",
    "AccountInfo",
    "AuthMethod",
    "TransactionRequest",
    "KeyringError",
    "InvalidCredentials",
    "UsernameTaken",
    "AccountNotFound",
    "InvalidSeed",
    "NotAuthenticated",
    "UnsupportedChain",
    "CollaboratorUnavailable",
    "NotInitialized",
    "OperationSuperseded",
    "WalletExists",
]
