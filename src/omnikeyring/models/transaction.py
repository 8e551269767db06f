"""
Transaction models.

TransactionRequest is the strict internal form of a caller's transaction
request. Loosely-typed request bodies (camelCase keys, hex or decimal
strings, optional fields) are converted once, in from_dict().

The caller never chooses the sender: any 'from' field is dropped here and
the signer fills it from the signing key.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Optional

from web3 import Web3

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 21000

# camelCase request keys -> field names
_KEY_ALIASES = {
    "gasLimit": "gas",
    "gas_limit": "gas",
    "gasPrice": "gas_price",
    "maxFeePerGas": "max_fee_per_gas",
    "maxPriorityFeePerGas": "max_priority_fee_per_gas",
    "chainId": "chain_id",
}

_INT_FIELDS = ("value", "gas", "gas_price", "max_fee_per_gas",
               "max_priority_fee_per_gas", "nonce", "chain_id")


def _to_int(name: str, value: Any) -> Optional[int]:
    """Parse an int, hex string, or decimal string."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid {name}: {value!r}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            result = int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError:
            raise ValueError(f"Invalid {name}: {value!r}")
    else:
        raise ValueError(f"Invalid {name}: {value!r}")
    if result < 0:
        raise ValueError(f"{name} must be non-negative, got {result}")
    return result


@dataclass
class TransactionRequest:
    """A transaction to be signed."""
    to: Optional[str] = None          # None for contract creation
    value: int = 0                    # Smallest unit (wei)
    data: str = "0x"
    gas: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    nonce: Optional[int] = None
    chain_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TransactionRequest":
        """Create from a request dict with input validation."""
        if not isinstance(data, dict):
            raise ValueError("Transaction request must be an object")

        normalized: dict[str, Any] = {}
        for key, value in data.items():
            if key == "from":
                logger.warning("Ignoring caller-supplied 'from' field; sender comes from the signing key")
                continue
            normalized[_KEY_ALIASES.get(key, key)] = value

        unknown = set(normalized) - {"to", "data", *_INT_FIELDS}
        if unknown:
            raise ValueError(f"Unknown transaction fields: {', '.join(sorted(unknown))}")

        to = normalized.get("to") or None
        if to is not None:
            if not Web3.is_address(to):
                raise ValueError(f"Invalid 'to' address: {to}")
            to = Web3.to_checksum_address(to)

        payload = normalized.get("data") or "0x"
        if isinstance(payload, bytes):
            payload = Web3.to_hex(payload)
        elif not isinstance(payload, str):
            raise ValueError(f"Invalid data: {payload!r}")
        elif not payload.startswith("0x"):
            payload = Web3.to_hex(text=payload)

        ints = {name: _to_int(name, normalized.get(name)) for name in _INT_FIELDS}
        return cls(
            to=to,
            value=ints["value"] or 0,
            data=payload,
            gas=ints["gas"],
            gas_price=ints["gas_price"],
            max_fee_per_gas=ints["max_fee_per_gas"],
            max_priority_fee_per_gas=ints["max_priority_fee_per_gas"],
            nonce=ints["nonce"],
            chain_id=ints["chain_id"],
        )

    def to_envelope(self, chain_id: int, from_address: str) -> dict:
        """
        Build the signable transaction dict.

        EIP-1559 fields win over gasPrice when both are present.
        """
        envelope: dict[str, Any] = {
            "from": from_address,
            "value": self.value,
            "data": self.data,
            "gas": self.gas if self.gas is not None else DEFAULT_GAS_LIMIT,
            "nonce": self.nonce if self.nonce is not None else 0,
            "chainId": self.chain_id if self.chain_id is not None else chain_id,
        }
        if self.to is not None:
            envelope["to"] = self.to

        if self.max_fee_per_gas is not None:
            envelope["maxFeePerGas"] = self.max_fee_per_gas
            envelope["maxPriorityFeePerGas"] = self.max_priority_fee_per_gas or 0
            envelope["type"] = 2
        else:
            envelope["gasPrice"] = self.gas_price or 0
        return envelope

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SignedTransaction:
    """Result of signing a transaction."""
    raw_transaction: str    # 0x-prefixed serialized transaction
    hash: str
    from_address: str
    chain_type: str
    chain_id: int

    def to_dict(self) -> dict:
        return asdict(self)
