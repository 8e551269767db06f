"""
Keyring errors.

Every public keyring failure carries a stable machine-readable code and a
human-readable message. Messages never include passwords, mnemonics or keys.
"""

from typing import Optional


class KeyringError(Exception):
    """Base class for all keyring failures."""

    code = "KEYRING_ERROR"
    default_message = "Keyring operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Error payload in the same shape as service error responses."""
        return {"status": "error", "error": self.message, "code": self.code}


class InvalidCredentials(KeyringError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid username or password"


class UsernameTaken(KeyringError):
    code = "USERNAME_TAKEN"
    default_message = "Username already exists. Please choose a different username."


class AccountNotFound(KeyringError):
    code = "ACCOUNT_NOT_FOUND"
    default_message = "Account not found"


class InvalidSeed(KeyringError):
    code = "INVALID_SEED"
    default_message = "Invalid seed phrase"


class NotAuthenticated(KeyringError):
    code = "NOT_AUTHENTICATED"
    default_message = "Wallet is locked or the session has expired"


class UnsupportedChain(KeyringError):
    code = "UNSUPPORTED_CHAIN"
    default_message = "Unsupported chain"


class CollaboratorUnavailable(KeyringError):
    code = "COLLABORATOR_UNAVAILABLE"
    default_message = "External service unavailable"


class NotInitialized(KeyringError):
    code = "NOT_INITIALIZED"
    default_message = "Wallet not initialized"


class OperationSuperseded(KeyringError):
    code = "OPERATION_SUPERSEDED"
    default_message = "Operation was superseded by a newer request"


class WalletExists(KeyringError):
    code = "WALLET_EXISTS"
    default_message = (
        "A recovery phrase wallet is stored on this device. Reset the keyring first."
    )
