"""
Account model.

A KeyringAccount is one derived keypair on one chain. The private key is
owned by the account through a PrivateKeyHandle: it is only lent out for
the duration of a signing call and is zeroed when the session ends.
"""

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Iterator, Optional


class AuthMethod(str, Enum):
    """How the session's mnemonic was obtained."""
    WEB2 = "web2"   # Derived from username/password
    WEB3 = "web3"   # User-supplied or generated mnemonic


@dataclass(frozen=True)
class Web2Auth:
    """Session produced by username/password derivation."""
    username: str

    @property
    def method(self) -> AuthMethod:
        return AuthMethod.WEB2


@dataclass(frozen=True)
class Web3Auth:
    """Session produced by a stored (encrypted) mnemonic."""

    @property
    def method(self) -> AuthMethod:
        return AuthMethod.WEB3


SessionAuth = Web2Auth | Web3Auth


class PrivateKeyHandle:
    """Owns raw private key bytes; can be wiped in place."""

    def __init__(self, key: bytes):
        self._key = bytearray(key)

    @property
    def is_wiped(self) -> bool:
        return not any(self._key)

    @contextmanager
    def use(self) -> Iterator[bytes]:
        """Lend the key for one signing call."""
        if self.is_wiped:
            raise RuntimeError("Private key has been wiped")
        yield bytes(self._key)

    def wipe(self) -> None:
        """Zero the key buffer."""
        for i in range(len(self._key)):
            self._key[i] = 0

    def __repr__(self) -> str:
        return "PrivateKeyHandle(<redacted>)"


@dataclass
class KeyringAccount:
    """A derived account on one chain."""
    chain_type: str
    derivation_path: str
    address: str                  # Chain-specific encoding
    public_key: str               # 0x-prefixed compressed secp256k1 key
    evm_address: str              # Checksum address of the same key (signing identity)
    key: PrivateKeyHandle = field(repr=False, compare=False)
    index: int = 0
    name: str = ""
    omni_alias: Optional[str] = None   # <username>.omnicoin, display only
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def info(self, auth_method: Optional["AuthMethod"] = None,
             balance: Optional[str] = None) -> "AccountInfo":
        """Public projection without key material."""
        return AccountInfo(
            id=self.id,
            name=self.name,
            chain_type=self.chain_type,
            address=self.address,
            public_key=self.public_key,
            derivation_path=self.derivation_path,
            omni_alias=self.omni_alias,
            auth_method=auth_method.value if auth_method else None,
            balance=balance,
        )

    def wipe(self) -> None:
        self.key.wipe()


@dataclass(frozen=True)
class AccountInfo:
    """Read-only account view handed to providers and the UI."""
    id: str
    name: str
    chain_type: str
    address: str
    public_key: str
    derivation_path: str
    omni_alias: Optional[str] = None
    auth_method: Optional[str] = None
    balance: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)
