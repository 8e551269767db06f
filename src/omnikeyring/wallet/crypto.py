"""
Wallet Crypto - Secure key management.

Industry-standard security:
- BIP-39 seed phrases
- BIP-32/44 HD derivation over the chain derivation table
- Argon2id key derivation (memory-hard)
- AES-256-GCM authenticated encryption

Mnemonics never exist unencrypted in storage.
"""

import secrets
from datetime import datetime, timezone
from typing import Iterable, Optional

# Cryptography
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from argon2.low_level import hash_secret_raw, Type

# Ethereum
from mnemonic import Mnemonic
from eth_account import Account
from eth_account.hdaccount import seed_from_mnemonic, key_from_seed
from eth_keys import keys

from ..errors import InvalidCredentials, InvalidSeed
from ..models.account import KeyringAccount, PrivateKeyHandle
from ..networks import ChainConfig, NATIVE_NAME_SUFFIX, encode_address, get_chain

# Enable HD wallet features
Account.enable_unaudited_hdwallet_features()


# ============================================
# Security Constants
# ============================================

# Argon2id parameters (OWASP recommendations for high-security)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 4
ARGON2_HASH_LEN = 32  # 256 bits for AES-256

# AES-GCM constants
AES_IV_SIZE = 12  # 96 bits (recommended for GCM)
AES_TAG_SIZE = 16

# Generated mnemonics are always 256-bit / 24 words
MNEMONIC_STRENGTH = 256

VAULT_VERSION = 1


# ============================================
# Key Derivation
# ============================================

def derive_key(password: str, salt: bytes, time_cost: Optional[int] = None,
               memory_cost: Optional[int] = None,
               parallelism: Optional[int] = None) -> bytes:
    """
    Derive an encryption key from password using Argon2id.

    Each password guess requires ~64MB RAM, which makes offline
    brute force against a stolen vault expensive. Parameters default to
    the current constants; vaults pass the ones they were sealed with.
    """
    return hash_secret_raw(
        secret=password.encode('utf-8'),
        salt=salt,
        time_cost=time_cost or ARGON2_TIME_COST,
        memory_cost=memory_cost or ARGON2_MEMORY_COST,
        parallelism=parallelism or ARGON2_PARALLELISM,
        hash_len=ARGON2_HASH_LEN,
        type=Type.ID
    )


# ============================================
# Encryption
# ============================================

def encrypt_seed(seed_phrase: str, password: str) -> tuple[bytes, bytes, bytes, bytes]:
    """
    Encrypt a seed phrase with a password.

    Returns: (encrypted_data, iv, tag, salt)
    """
    salt = secrets.token_bytes(16)
    key = derive_key(password, salt)
    iv = secrets.token_bytes(AES_IV_SIZE)

    aesgcm = AESGCM(key)
    ciphertext_and_tag = aesgcm.encrypt(iv, seed_phrase.encode('utf-8'), None)

    ciphertext = ciphertext_and_tag[:-AES_TAG_SIZE]
    tag = ciphertext_and_tag[-AES_TAG_SIZE:]

    return ciphertext, iv, tag, salt


def decrypt_seed(encrypted_seed: bytes, iv: bytes, tag: bytes,
                 salt: bytes, password: str, kdf_params: Optional[dict] = None) -> str:
    """
    Decrypt a seed phrase with a password.

    Raises: InvalidTag if password is wrong or data is tampered.
    """
    key = derive_key(password, salt, **(kdf_params or {}))
    ciphertext_and_tag = encrypted_seed + tag

    aesgcm = AESGCM(key)
    plaintext = aesgcm.decrypt(iv, ciphertext_and_tag, None)

    return plaintext.decode('utf-8')


def seal_vault(seed_phrase: str, password: str, chains: Iterable[str]) -> dict:
    """Build the encrypted vault record for a Web3 mnemonic."""
    encrypted_seed, iv, tag, salt = encrypt_seed(seed_phrase, password)
    return {
        "version": VAULT_VERSION,
        "type": "web3",
        "created": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "kdf": {
            "algorithm": "argon2id",
            "salt": salt.hex(),
            "time_cost": ARGON2_TIME_COST,
            "memory_cost": ARGON2_MEMORY_COST,
            "parallelism": ARGON2_PARALLELISM
        },
        "encrypted_seed": encrypted_seed.hex(),
        "iv": iv.hex(),
        "tag": tag.hex(),
        "chains": list(chains),
    }


def open_vault(record: dict, password: str) -> str:
    """
    Decrypt the mnemonic from a vault record.

    Raises:
        InvalidCredentials: If password is wrong or the vault is corrupted
    """
    if record.get("version") != VAULT_VERSION:
        raise InvalidCredentials(f"Unsupported vault version: {record.get('version')}")

    try:
        kdf = record["kdf"]
        salt = bytes.fromhex(kdf["salt"])
        encrypted_seed = bytes.fromhex(record["encrypted_seed"])
        iv = bytes.fromhex(record["iv"])
        tag = bytes.fromhex(record["tag"])
        kdf_params = {
            "time_cost": int(kdf["time_cost"]),
            "memory_cost": int(kdf["memory_cost"]),
            "parallelism": int(kdf["parallelism"]),
        }
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidCredentials("Corrupted wallet vault") from e

    try:
        return decrypt_seed(encrypted_seed, iv, tag, salt, password, kdf_params)
    except (InvalidTag, UnicodeDecodeError) as e:
        raise InvalidCredentials("Wrong password or corrupted wallet vault") from e


# ============================================
# Mnemonic Wallet
# ============================================

def normalize_mnemonic(seed_phrase: str) -> str:
    """Collapse whitespace and lowercase a mnemonic."""
    return " ".join(seed_phrase.strip().lower().split())


def is_valid_mnemonic(seed_phrase: str) -> bool:
    """Check BIP-39 word list and checksum."""
    try:
        return Mnemonic("english").check(normalize_mnemonic(seed_phrase))
    except (ValueError, LookupError):
        return False


class MnemonicWallet:
    """
    HD wallet over a BIP-39 mnemonic.

    Usage:
        wallet = MnemonicWallet.generate()
        backup = wallet.seed_phrase  # Show once for backup
        account = wallet.derive_account(get_chain("ethereum"))
        wallet.lock()
    """

    def __init__(self, seed_phrase: str):
        """Initialize wallet with a seed phrase (validated before use)."""
        if not isinstance(seed_phrase, str) or not is_valid_mnemonic(seed_phrase):
            raise InvalidSeed()

        self._seed_phrase: Optional[str] = normalize_mnemonic(seed_phrase)
        self._seed: Optional[bytearray] = bytearray(
            seed_from_mnemonic(self._seed_phrase, passphrase="")
        )

    @classmethod
    def generate(cls) -> "MnemonicWallet":
        """Create a wallet with a fresh 24-word seed phrase."""
        return cls(Mnemonic("english").generate(strength=MNEMONIC_STRENGTH))

    @property
    def seed_phrase(self) -> str:
        """The seed phrase (sensitive - only show during backup!)."""
        self._require_unlocked()
        return self._seed_phrase

    @property
    def is_locked(self) -> bool:
        return self._seed is None

    def _require_unlocked(self) -> None:
        if self._seed is None:
            raise RuntimeError("Wallet is locked")

    def derive_account(self, chain: ChainConfig, index: int = 0,
                       username: Optional[str] = None) -> KeyringAccount:
        """
        Derive the account for a chain at the given address index.

        Args:
            chain: Entry from the derivation table
            index: Address index (0, 1, 2, ...)
            username: Web2 username, used for the display alias
        """
        self._require_unlocked()
        path = chain.derivation_path(index)
        private_key = key_from_seed(bytes(self._seed), path)

        public = keys.PrivateKey(private_key).public_key
        public_key_hex = "0x" + public.to_compressed_bytes().hex()
        evm_address = public.to_checksum_address()

        return KeyringAccount(
            chain_type=chain.chain_type,
            derivation_path=path,
            address=encode_address(chain, public_key_hex, evm_address),
            public_key=public_key_hex,
            evm_address=evm_address,
            key=PrivateKeyHandle(private_key),
            index=index,
            name=f"{chain.display_name} Account",
            omni_alias=f"{username.strip().lower()}.{NATIVE_NAME_SUFFIX}" if username else None,
        )

    def derive_accounts(self, chain_types: Iterable[str],
                        username: Optional[str] = None) -> list[KeyringAccount]:
        """Derive the index-0 account for each chain type."""
        return [self.derive_account(get_chain(c), 0, username) for c in chain_types]

    # ============================================
    # Security: Memory Cleanup
    # ============================================

    def lock(self) -> None:
        """
        Lock the wallet, clearing sensitive data from memory.

        After locking, the wallet cannot derive until recreated.
        """
        if getattr(self, '_seed', None) is not None:
            for i in range(len(self._seed)):
                self._seed[i] = 0
        self._seed = None
        self._seed_phrase = None

    def __del__(self):
        """Attempt to clear sensitive data on destruction."""
        self.lock()
