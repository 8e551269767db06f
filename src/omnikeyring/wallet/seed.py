"""
Deterministic seed derivation for username/password wallets.

The same credentials must always produce the same 24-word mnemonic, so the
algorithm below is frozen:

    base    = normalized_username + "active" + password
    salt    = sha256(normalized_username)
    stretch = PBKDF2-HMAC-SHA512(base, salt, 100_000 iterations, 64 bytes)
    seed    = BIP-39 mnemonic of stretch[:32]

The "active" role marker comes from the legacy login scheme and must not
change - doing so would move every Web2 user to a different wallet.
"""

import hashlib

from mnemonic import Mnemonic

from ..models.credentials import Credentials, normalize_username

LEGACY_ROLE = "active"
PBKDF2_ITERATIONS = 100_000
PBKDF2_KEY_LENGTH = 64
ENTROPY_BYTES = 32  # 256 bits -> 24 words


def derive_entropy(credentials: Credentials) -> bytes:
    """Stretch credentials into 32 bytes of mnemonic entropy."""
    normalized = normalize_username(credentials.username)
    base = f"{normalized}{LEGACY_ROLE}{credentials.password}"
    salt = hashlib.sha256(normalized.encode('utf-8')).digest()

    derived = hashlib.pbkdf2_hmac(
        "sha512",
        base.encode('utf-8'),
        salt,
        PBKDF2_ITERATIONS,
        dklen=PBKDF2_KEY_LENGTH,
    )
    return derived[:ENTROPY_BYTES]


def derive_mnemonic(credentials: Credentials) -> str:
    """
    Derive the deterministic 24-word mnemonic for validated credentials.

    Callers validate credentials first; well-formed input never raises here.
    """
    return Mnemonic("english").to_mnemonic(derive_entropy(credentials))
