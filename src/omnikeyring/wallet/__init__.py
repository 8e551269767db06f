"""
Wallet package - Secure key management for OmniKeyring.

Contains:
- MnemonicWallet: HD wallet with BIP-39/44 derivation
- derive_mnemonic: Deterministic mnemonic from username/password
- seal_vault, open_vault: Argon2id + AES-GCM mnemonic vault
- AccountRegistry: Per-chain accounts of the live session
"""

from .crypto import (
    MnemonicWallet,
    is_valid_mnemonic,
    normalize_mnemonic,
    encrypt_seed,
    decrypt_seed,
    seal_vault,
    open_vault,
)
from .seed import derive_mnemonic, derive_entropy, PBKDF2_ITERATIONS
from .manager import AccountRegistry

__all__ = [
    "MnemonicWallet",
    "is_valid_mnemonic",
    "normalize_mnemonic",
    "encrypt_seed",
    "decrypt_seed",
    "seal_vault",
    "open_vault",
    "derive_mnemonic",
    "derive_entropy",
    "PBKDF2_ITERATIONS",
    "AccountRegistry",
]
