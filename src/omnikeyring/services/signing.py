"""
Signing Dispatcher - Routes signing requests to session accounts.

Looks up the account that owns an address in the live session and signs
with the scheme of its chain. Only EVM-style signing is supported:
- Messages: EIP-191 personal_sign
- Transactions: legacy (EIP-155) or EIP-1559 envelopes

The private key is borrowed from the account only for the duration of a
single signing call.
"""

import logging
from typing import Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from ..errors import AccountNotFound, UnsupportedChain
from ..models.account import KeyringAccount
from ..models.transaction import SignedTransaction, TransactionRequest
from ..networks import ChainConfig, get_chain
from .session import SessionManager

logger = logging.getLogger(__name__)

SCHEME_EVM = "evm"


def _encode_message(message: Union[str, bytes]):
    """EIP-191 encode a message. Strings are always signed as UTF-8 text."""
    if isinstance(message, bytes):
        return encode_defunct(primitive=message)
    return encode_defunct(text=message)


class SigningDispatcher:
    """Signs messages and transactions for accounts of the live session."""

    def __init__(self, sessions: SessionManager):
        self._sessions = sessions

    def _resolve(self, address: str,
                 chain_type: Optional[str] = None) -> tuple[KeyringAccount, ChainConfig]:
        """
        Find the owning account and its chain.

        Raises:
            NotAuthenticated: No live session
            AccountNotFound: Address is not in the session
            UnsupportedChain: Chain has no supported signing scheme
        """
        session = self._sessions.current()
        account = session.accounts.get_by_address(address, chain_type)
        if account is None:
            raise AccountNotFound(f"Account not found: {address}")

        chain = get_chain(account.chain_type)
        if chain.signing_scheme != SCHEME_EVM:
            raise UnsupportedChain(
                f"Signing not supported on {chain.display_name} ({chain.signing_scheme})"
            )
        return account, chain

    def sign_message(self, address: str, message: Union[str, bytes],
                     chain_type: Optional[str] = None) -> str:
        """Sign a message, returning a 0x-prefixed 65-byte signature."""
        account, chain = self._resolve(address, chain_type)
        encoded = _encode_message(message)

        with account.key.use() as private_key:
            signed = Account.sign_message(encoded, private_key=private_key)

        logger.info(f"Signed message with {chain.chain_type} account {account.address}")
        return Web3.to_hex(signed.signature)

    def sign_transaction(self, address: str, tx_request: TransactionRequest,
                         chain_type: Optional[str] = None) -> SignedTransaction:
        """
        Sign a transaction for the account's chain.

        The sender is always the signing key's address; chain ID defaults
        to the account's chain.
        """
        account, chain = self._resolve(address, chain_type)
        envelope = tx_request.to_envelope(chain.chain_id, account.evm_address)

        with account.key.use() as private_key:
            signed = Account.sign_transaction(envelope, private_key)

        logger.info(
            f"Signed transaction on {chain.chain_type} (chainId {envelope['chainId']}) "
            f"from {account.address}"
        )
        return SignedTransaction(
            raw_transaction=Web3.to_hex(signed.raw_transaction),
            hash=Web3.to_hex(signed.hash),
            from_address=account.evm_address,
            chain_type=chain.chain_type,
            chain_id=envelope["chainId"],
        )

    def verify_message(self, address: str, message: Union[str, bytes],
                       signature: str, chain_type: Optional[str] = None) -> bool:
        """Check that a signature over message was made by the account's key."""
        account, _ = self._resolve(address, chain_type)
        try:
            recovered = Account.recover_message(_encode_message(message), signature=signature)
        except Exception as e:
            # Malformed signatures raise library-specific errors
            logger.warning(f"Signature recovery failed: {e}")
            return False
        return recovered.lower() == account.evm_address.lower()
