"""
Keyring Service - Single entry point for accounts, sessions and signing.

Web2 (username/password) and Web3 (mnemonic) wallets share one account
model: both end up as "a mnemonic plus the chain derivation table". The
auth method only decides how the mnemonic is obtained:

    Web2: derive_mnemonic(username, password)   - never stored
    Web3: generated or imported mnemonic         - stored in an encrypted vault

Flow for every login-like operation:
1. Validate input (no crypto work on malformed credentials)
2. Take an operation epoch
3. Derive the mnemonic and accounts (slow, outside the lock)
4. Consult collaborators (registry) with bounded timeouts
5. Commit: if no newer operation started, persist records and publish
   the session; otherwise wipe and raise OperationSuperseded
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Union

from PyQt6.QtCore import QObject, pyqtSignal
from web3 import Web3

from ..errors import (
    AccountNotFound,
    CollaboratorUnavailable,
    InvalidCredentials,
    NotInitialized,
    OperationSuperseded,
    UsernameTaken,
    WalletExists,
)
from ..models import (
    AccountInfo,
    AuthMethod,
    Credentials,
    FileStorage,
    KeyringAccount,
    KeyringState,
    MemoryStorage,
    MIN_PASSWORD_LENGTH,
    SessionAuth,
    SignedTransaction,
    TransactionRequest,
    Web2Auth,
    Web3Auth,
    normalize_username,
    validate_username,
)
from ..networks import NATIVE_NAME_SUFFIX, build_providers, format_balance, get_chain
from ..utils import KeyringSettings, get_vault_dir, load_settings
from ..wallet import AccountRegistry, MnemonicWallet, derive_mnemonic, open_vault, seal_vault
from .registry import RegistrationRelay, RegistrationWorker, RegistryClient, bounded_call
from .session import SessionManager
from .signing import SigningDispatcher

logger = logging.getLogger(__name__)

# Storage keys
META_KEY = "keyring"
VAULT_KEY = "web3_vault"
PROFILE_KEY = "web2_profile"

META_VERSION = 1
PROFILE_VERSION = 1

# Registry contracts take EVM addresses; this chain's account is the identity
PRIMARY_CHAIN = "ethereum"

LOGIN_VERIFICATION_STRICT = "strict"


def _strip_name_suffix(name: str) -> str:
    """'Alice.omnicoin' -> 'alice'"""
    name = normalize_username(name)
    suffix = f".{NATIVE_NAME_SUFFIX}"
    return name[:-len(suffix)] if name.endswith(suffix) else name


class KeyringService(QObject):
    """
    Unified multi-chain keyring.

    Construct one per application and pass it to consumers. Collaborators
    left as None are treated as not configured: the steps that need them
    are skipped with a log message (name lookups raise instead).

    EVM chains (ethereum, coti, polygon, ...) derive the same address.
    Address-keyed methods take an optional chain_type to pick one of them;
    without it the primary chain account is used, so an unqualified
    sign_transaction targets chainId 1.
    """

    state_changed = pyqtSignal(object)  # KeyringState
    activity = pyqtSignal(str, bool)  # message, is_error

    def __init__(self, storage=None, registry=None,
                 registration: Optional[RegistrationWorker] = None,
                 providers: Optional[dict] = None,
                 settings: Optional[KeyringSettings] = None,
                 clock: Optional[Callable[[], float]] = None):
        """
        Args:
            storage: Record store (store/retrieve/delete), in-memory by default
            registry: Name registry (is_available/resolve/reverse_resolve)
            registration: Background registration worker
            providers: chain_type -> provider (get_balance/send_transaction)
            settings: Keyring settings (defaults if None)
            clock: Monotonic clock for session expiry
        """
        super().__init__()
        self.settings = settings or KeyringSettings()
        self.storage = storage if storage is not None else MemoryStorage()
        self.registry = registry
        self.registration = registration
        self.providers = providers or {}

        self.sessions = SessionManager(self.settings.session_timeout_seconds, clock)
        self.signer = SigningDispatcher(self.sessions)

        # Serializes all session/registry mutation
        self._lock = threading.RLock()
        self._epoch = 0
        self._initialized = False
        self._auth_method: Optional[AuthMethod] = None

        self.check_initialization()

    @classmethod
    def from_settings(cls, settings: Optional[KeyringSettings] = None) -> "KeyringService":
        """Build a keyring wired to the real collaborators from settings."""
        settings = settings or load_settings()

        registry = None
        if settings.registry_address:
            registry = RegistryClient(
                settings.registry_rpc_url,
                settings.registry_address,
                settings.registry_timeout_seconds
            )
        else:
            logger.warning("No registry address configured, name checks disabled")

        registration = None
        if settings.relay_url:
            registration = RegistrationWorker(
                RegistrationRelay(settings.relay_url, settings.registry_timeout_seconds),
                max_attempts=settings.registration_max_attempts,
                backoff_seconds=settings.registration_backoff_seconds,
            )

        return cls(
            storage=FileStorage(get_vault_dir()),
            registry=registry,
            registration=registration,
            providers=build_providers(
                settings.chains, settings.custom_rpcs, settings.registry_timeout_seconds
            ),
            settings=settings,
        )

    # ============================================
    # State
    # ============================================

    def _build_state(self) -> KeyringState:
        session = self.sessions.peek()
        if session is None:
            return KeyringState(
                is_initialized=self._initialized,
                is_locked=True,
                auth_method=self._auth_method,
            )

        active = session.accounts.active
        return KeyringState(
            is_initialized=True,
            is_locked=False,
            auth_method=session.auth_method,
            accounts=tuple(
                a.info(session.auth_method, session.accounts.get_balance(a.id))
                for a in session.accounts.list()
            ),
            active_account_id=active.id if active else None,
            username=session.username,
            registry_verified=session.registry_verified,
        )

    def get_state(self) -> KeyringState:
        """Current read-only state (does not count as activity)."""
        with self._lock:
            return self._build_state()

    def _emit_state(self, state: KeyringState) -> None:
        # Always called outside self._lock
        self.state_changed.emit(state)

    def _notify(self, message: str, is_error: bool = False) -> None:
        if is_error:
            logger.warning(message)
        else:
            logger.info(message)
        self.activity.emit(message, is_error)

    def check_initialization(self) -> KeyringState:
        """
        Restore initialized/auth-method status from storage.

        A stored vault always wins over the metadata record: the mnemonic in
        it cannot be recovered any other way.
        """
        meta = self.storage.retrieve(META_KEY)
        auth_method = None
        if self.storage.retrieve(VAULT_KEY) is not None:
            auth_method = AuthMethod.WEB3
        elif meta is not None:
            try:
                auth_method = AuthMethod(meta.get("auth_method"))
            except ValueError:
                logger.warning(f"Ignoring keyring record with unknown auth method: {meta.get('auth_method')!r}")

        with self._lock:
            self._auth_method = auth_method
            self._initialized = auth_method is not None
            state = self._build_state()
        self._emit_state(state)
        return state

    # ============================================
    # Operation Commit
    # ============================================

    def _begin(self) -> int:
        """Start an operation; any older in-flight operation becomes stale."""
        with self._lock:
            self._epoch += 1
            return self._epoch

    def _invalidate(self) -> None:
        # Caller holds self._lock
        self._epoch += 1

    def _chain_types(self, chains: Optional[list[str]] = None) -> list[str]:
        """Chains to derive, primary first."""
        chains = list(chains) if chains else list(self.settings.chains)
        return [PRIMARY_CHAIN] + [c for c in chains if c != PRIMARY_CHAIN]

    def _derive(self, wallet: MnemonicWallet, username: Optional[str],
                chains: Optional[list[str]] = None) -> AccountRegistry:
        """Derive the account set for a wallet. Same path for both auth methods."""
        try:
            return AccountRegistry(wallet.derive_accounts(self._chain_types(chains), username))
        except Exception:
            wallet.lock()
            raise

    @staticmethod
    def _discard(wallet: MnemonicWallet, accounts: Optional[AccountRegistry]) -> None:
        if accounts is not None:
            accounts.clear()
        wallet.lock()

    def _commit(self, epoch: int, auth: SessionAuth, wallet: MnemonicWallet,
                accounts: AccountRegistry, records: dict,
                registry_verified: Optional[bool] = None) -> KeyringState:
        """Persist records and publish the session, unless superseded."""
        with self._lock:
            if epoch != self._epoch:
                self._discard(wallet, accounts)
                raise OperationSuperseded()

            for key, value in records.items():
                self.storage.store(key, value)

            username = auth.username if isinstance(auth, Web2Auth) else None
            session = self.sessions.create(username, auth, accounts, wallet)
            session.registry_verified = registry_verified
            self._initialized = True
            self._auth_method = auth.method
            state = self._build_state()

        self._emit_state(state)
        return state

    def _meta_record(self, method: AuthMethod) -> dict:
        return {"version": META_VERSION, "auth_method": method.value}

    def _profile_record(self, username: str, accounts: AccountRegistry) -> dict:
        return {
            "version": PROFILE_VERSION,
            "type": "web2",
            "username": username,
            "primary_address": accounts.get(PRIMARY_CHAIN).evm_address,
            "chains": accounts.chain_types(),
        }

    # ============================================
    # Registry Helpers
    # ============================================

    def _registry_call(self, fn: Callable, *args):
        return bounded_call(fn, self.settings.registry_timeout_seconds, *args)

    def _require_registry(self):
        if self.registry is None:
            raise CollaboratorUnavailable("No name registry configured")
        return self.registry

    def _check_username_available(self, username: str) -> None:
        """Uniqueness check. Fails closed: an unreachable registry means taken."""
        if self.registry is None:
            logger.warning("No name registry configured, skipping uniqueness check")
            return
        try:
            available = self._registry_call(self.registry.is_available, username)
        except CollaboratorUnavailable as e:
            logger.warning(f"Could not verify availability of {username}: {e.message}")
            raise UsernameTaken(
                "Could not verify username availability. Please try again later."
            ) from e
        if not available:
            raise UsernameTaken()

    def _verify_login(self, username: str, address: str,
                      profile: Optional[dict]) -> Optional[bool]:
        """
        Check the derived primary address against the registry.

        Returns True if verified, False if login proceeds unverified, None if
        no registry is configured.
        """
        if profile is not None and profile.get("primary_address", "").lower() != address.lower():
            # Same username, different address: the password is wrong
            raise InvalidCredentials()

        if self.registry is None:
            return None

        try:
            registered = self._registry_call(self.registry.reverse_resolve, address)
        except CollaboratorUnavailable as e:
            if self.settings.login_verification == LOGIN_VERIFICATION_STRICT:
                raise
            self._notify(f"Name registry unavailable, signed in without verification: {e.message}", True)
            return False

        if not registered:
            if profile is not None:
                # Registered locally; on-chain registration may still be pending
                logger.info(f"{username} not yet registered on-chain")
                return False
            raise InvalidCredentials()

        if _strip_name_suffix(registered) != username:
            raise InvalidCredentials()
        return True

    def _refuse_if_vault(self) -> None:
        """Web2 flows must not shadow a stored recovery phrase wallet."""
        if self.storage.retrieve(VAULT_KEY) is not None:
            raise WalletExists()

    def _queue_registration(self, username: str, address: str) -> None:
        if self.registration is None:
            logger.warning(f"No registration relay configured, {username} not submitted")
            return
        try:
            self.registration.submit(username, address)
        except Exception as e:
            # Best effort: the account already exists locally
            logger.warning(f"Could not queue registration for {username}: {e}")

    # ============================================
    # Web2 (username/password)
    # ============================================

    def register_web2(self, credentials: Union[Credentials, dict]) -> KeyringState:
        """
        Create a username/password wallet.

        Raises:
            InvalidCredentials: Malformed username or password
            UsernameTaken: Name registered, or the registry could not confirm it
            WalletExists: A recovery phrase wallet is stored; reset() first
            OperationSuperseded: A newer login/register/lock started meanwhile
        """
        if isinstance(credentials, dict):
            credentials = Credentials.from_dict(credentials)
        credentials.validate()
        username = credentials.normalized_username
        self._refuse_if_vault()

        epoch = self._begin()
        wallet = MnemonicWallet(derive_mnemonic(credentials))
        accounts = self._derive(wallet, username)
        try:
            self._check_username_available(username)
        except Exception:
            self._discard(wallet, accounts)
            raise

        primary_address = accounts.get(PRIMARY_CHAIN).evm_address
        state = self._commit(
            epoch, Web2Auth(username), wallet, accounts,
            records={
                PROFILE_KEY: self._profile_record(username, accounts),
                META_KEY: self._meta_record(AuthMethod.WEB2),
            },
        )
        self._queue_registration(username, primary_address)
        self._notify(f"Registered {username}.{NATIVE_NAME_SUFFIX}")
        return state

    def login_web2(self, credentials: Union[Credentials, dict]) -> KeyringState:
        """
        Log in with username/password by re-deriving the wallet.

        Raises:
            InvalidCredentials: Malformed input, or the derived wallet does not
                belong to this username
            CollaboratorUnavailable: Registry down and login_verification is strict
            WalletExists: A recovery phrase wallet is stored; reset() first
            OperationSuperseded: A newer login/register/lock started meanwhile
        """
        if isinstance(credentials, dict):
            credentials = Credentials.from_dict(credentials)
        credentials.validate()
        username = credentials.normalized_username
        self._refuse_if_vault()

        profile = self.storage.retrieve(PROFILE_KEY)
        if profile is not None and profile.get("username") != username:
            profile = None

        epoch = self._begin()
        wallet = MnemonicWallet(derive_mnemonic(credentials))
        accounts = self._derive(wallet, username, profile.get("chains") if profile else None)
        try:
            verified = self._verify_login(
                username, accounts.get(PRIMARY_CHAIN).evm_address, profile
            )
        except Exception:
            self._discard(wallet, accounts)
            raise

        state = self._commit(
            epoch, Web2Auth(username), wallet, accounts,
            records={
                PROFILE_KEY: self._profile_record(username, accounts),
                META_KEY: self._meta_record(AuthMethod.WEB2),
            },
            registry_verified=verified,
        )
        self._notify(f"Signed in as {username}")
        return state

    # ============================================
    # Web3 (mnemonic)
    # ============================================

    def initialize_web3(self, password: str, seed_phrase: Optional[str] = None) -> str:
        """
        Create or import a mnemonic wallet, encrypted with password.

        Returns the mnemonic once for backup. It is only persisted encrypted.

        Raises:
            InvalidCredentials: Password too short
            InvalidSeed: seed_phrase fails BIP-39 validation
        """
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidCredentials(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )

        epoch = self._begin()
        wallet = MnemonicWallet(seed_phrase) if seed_phrase is not None else MnemonicWallet.generate()
        accounts = self._derive(wallet, None)
        seed = wallet.seed_phrase
        try:
            vault = seal_vault(seed, password, accounts.chain_types())
        except Exception:
            self._discard(wallet, accounts)
            raise

        self._commit(
            epoch, Web3Auth(), wallet, accounts,
            records={
                VAULT_KEY: vault,
                META_KEY: self._meta_record(AuthMethod.WEB3),
            },
        )
        self._notify("Imported wallet" if seed_phrase is not None else "Created new wallet")
        return seed

    # ============================================
    # Lock / Unlock
    # ============================================

    def _stored_auth_method(self) -> AuthMethod:
        with self._lock:
            if not self._initialized or self._auth_method is None:
                raise NotInitialized()
            return self._auth_method

    def unlock(self, password: str, username: Optional[str] = None) -> KeyringState:
        """
        Unlock the stored wallet.

        Web3: decrypts the vault. Web2: re-derives from the stored username
        (or username, if given and different, as a full login).

        Raises:
            NotInitialized: No wallet in storage
            InvalidCredentials: Wrong password
        """
        method = self._stored_auth_method()

        if method == AuthMethod.WEB3:
            return self._unlock_web3(password)
        elif method == AuthMethod.WEB2:
            return self._unlock_web2(password, username)
        else:
            raise NotInitialized(f"Unknown auth method: {method}")

    def _unlock_web3(self, password: str) -> KeyringState:
        vault = self.storage.retrieve(VAULT_KEY)
        if vault is None:
            raise NotInitialized()

        epoch = self._begin()
        wallet = MnemonicWallet(open_vault(vault, password))
        accounts = self._derive(wallet, None, vault.get("chains"))
        state = self._commit(epoch, Web3Auth(), wallet, accounts, records={})
        self._notify("Wallet unlocked")
        return state

    def _unlock_web2(self, password: str, username: Optional[str]) -> KeyringState:
        profile = self.storage.retrieve(PROFILE_KEY)
        if profile is None:
            raise NotInitialized()

        stored_username = profile.get("username", "")
        if username is not None and normalize_username(username) != stored_username:
            return self.login_web2(Credentials(username=username, password=password))

        credentials = Credentials(username=stored_username, password=password)
        credentials.validate()

        epoch = self._begin()
        wallet = MnemonicWallet(derive_mnemonic(credentials))
        accounts = self._derive(wallet, stored_username, profile.get("chains"))
        primary = accounts.get(PRIMARY_CHAIN)
        if primary.evm_address.lower() != profile.get("primary_address", "").lower():
            self._discard(wallet, accounts)
            raise InvalidCredentials()

        state = self._commit(epoch, Web2Auth(stored_username), wallet, accounts, records={})
        self._notify("Wallet unlocked")
        return state

    def lock(self) -> KeyringState:
        """Destroy the session and wipe its keys. Stored records are kept."""
        with self._lock:
            self._invalidate()
            self.sessions.destroy()
            state = self._build_state()
        self._emit_state(state)
        self._notify("Wallet locked")
        return state

    def logout(self) -> KeyringState:
        """End the session (same as lock for a single-user keyring)."""
        with self._lock:
            self._invalidate()
            self.sessions.destroy()
            state = self._build_state()
        self._emit_state(state)
        self._notify("Signed out")
        return state

    def reset(self) -> KeyringState:
        """Destroy the session and delete every stored record."""
        with self._lock:
            self._invalidate()
            self.sessions.destroy()
            for key in (VAULT_KEY, PROFILE_KEY, META_KEY):
                self.storage.delete(key)
            self._initialized = False
            self._auth_method = None
            state = self._build_state()
        self._emit_state(state)
        self._notify("Keyring reset")
        return state

    def export_seed_phrase(self, password: str) -> str:
        """
        Decrypt and return the stored mnemonic (Web3 wallets only).

        Raises:
            NotInitialized: No stored mnemonic
            InvalidCredentials: Wrong password
        """
        if self._stored_auth_method() != AuthMethod.WEB3:
            raise NotInitialized("No stored recovery phrase for username/password wallets")
        vault = self.storage.retrieve(VAULT_KEY)
        if vault is None:
            raise NotInitialized()
        seed = open_vault(vault, password)
        self._notify("Recovery phrase exported")
        return seed

    # ============================================
    # Accounts
    # ============================================

    def _find(self, address: str, chain_type: Optional[str] = None) -> KeyringAccount:
        # Caller holds self._lock
        session = self.sessions.current()
        self.sessions.touch()
        account = session.accounts.get_by_address(address, chain_type)
        if account is None:
            raise AccountNotFound(f"Account not found: {address}")
        return account

    def get_accounts(self, chain_type: Optional[str] = None) -> list[AccountInfo]:
        """Accounts of the live session, optionally for one chain."""
        with self._lock:
            session = self.sessions.current()
            self.sessions.touch()
            return [
                a.info(session.auth_method, session.accounts.get_balance(a.id))
                for a in session.accounts.list(chain_type)
            ]

    def get_account(self, address: str, chain_type: Optional[str] = None) -> AccountInfo:
        """Account by address. Raises AccountNotFound."""
        with self._lock:
            session = self.sessions.current()
            account = self._find(address, chain_type)
            return account.info(session.auth_method, session.accounts.get_balance(account.id))

    def get_active_account(self) -> Optional[AccountInfo]:
        with self._lock:
            session = self.sessions.current()
            self.sessions.touch()
            active = session.accounts.active
            if active is None:
                return None
            return active.info(session.auth_method, session.accounts.get_balance(active.id))

    def set_active_account(self, address: str,
                           chain_type: Optional[str] = None) -> AccountInfo:
        """
        Make an account active. Raises AccountNotFound for unknown addresses.

        Pass chain_type to pick one of the EVM chains sharing the address.
        """
        with self._lock:
            session = self.sessions.current()
            self.sessions.touch()
            if not session.accounts.set_active(address, chain_type):
                raise AccountNotFound(f"Account not found: {address}")
            active = session.accounts.active
            info = active.info(session.auth_method, session.accounts.get_balance(active.id))
            state = self._build_state()
        self._emit_state(state)
        return info

    def create_account(self, chain_type: str) -> AccountInfo:
        """
        Derive the account for another configured chain in the live session.

        Returns the existing account if the chain is already present.
        """
        chain = get_chain(chain_type)
        with self._lock:
            session = self.sessions.current()
            self.sessions.touch()
            existing = session.accounts.get(chain.chain_type)
            if existing is not None:
                return existing.info(session.auth_method, session.accounts.get_balance(existing.id))

            account = session.accounts.add(
                session.wallet.derive_account(chain, 0, session.username)
            )
            self._remember_chain(session.auth_method, chain.chain_type)
            info = account.info(session.auth_method)
            state = self._build_state()

        self._emit_state(state)
        self._notify(f"Added {chain.display_name} account {account.address}")
        return info

    def _remember_chain(self, method: AuthMethod, chain_type: str) -> None:
        """Add a chain to the stored record so unlock re-derives it."""
        key = VAULT_KEY if method == AuthMethod.WEB3 else PROFILE_KEY
        record = self.storage.retrieve(key)
        if record is None:
            return
        chains = record.get("chains") or []
        if chain_type not in chains:
            record["chains"] = chains + [chain_type]
            self.storage.store(key, record)

    # ============================================
    # Signing
    # ============================================

    def sign_message(self, address: str, message: Union[str, bytes],
                     chain_type: Optional[str] = None) -> str:
        """
        Sign a message with a session account (EIP-191).

        Raises:
            NotAuthenticated, AccountNotFound, UnsupportedChain
        """
        with self._lock:
            self.sessions.touch()
            signature = self.signer.sign_message(address, message, chain_type)
        self.activity.emit(f"Signed message with {address}", False)
        return signature

    def sign_transaction(self, address: str,
                         tx_request: Union[TransactionRequest, dict],
                         chain_type: Optional[str] = None) -> SignedTransaction:
        """
        Sign a transaction. The sender is always the signing account.

        Raises:
            ValueError: Malformed transaction request
            NotAuthenticated, AccountNotFound, UnsupportedChain
        """
        if isinstance(tx_request, dict):
            tx_request = TransactionRequest.from_dict(tx_request)
        with self._lock:
            self.sessions.touch()
            signed = self.signer.sign_transaction(address, tx_request, chain_type)
        self.activity.emit(
            f"Signed {signed.chain_type} transaction {signed.hash} from {address}", False
        )
        return signed

    def verify_message(self, address: str, message: Union[str, bytes],
                       signature: str, chain_type: Optional[str] = None) -> bool:
        """Check a signature against a session account's key."""
        with self._lock:
            self.sessions.touch()
            return self.signer.verify_message(address, message, signature, chain_type)

    # ============================================
    # Balances
    # ============================================

    def _fetch_balance(self, chain_type: str, evm_address: str) -> str:
        """Query one provider. Failures degrade to zero."""
        decimals = get_chain(chain_type).native_decimals
        provider = self.providers.get(chain_type)
        if provider is None:
            logger.warning(f"No provider for {chain_type}, reporting zero balance")
            return format_balance(0, decimals)
        try:
            return format_balance(provider.get_balance(evm_address), decimals)
        except CollaboratorUnavailable as e:
            logger.warning(f"Balance query failed on {chain_type}: {e.message}")
            return format_balance(0, decimals)

    def _store_balances(self, session_token: str, balances: dict[str, str]) -> None:
        """Record balances if the session they were fetched for is still live."""
        with self._lock:
            session = self.sessions.peek()
            if session is None or session.token != session_token:
                return
            for account_id, balance in balances.items():
                session.accounts.set_balance(account_id, balance)
            state = self._build_state()
        self._emit_state(state)

    def get_balance(self, address: str, chain_type: Optional[str] = None) -> str:
        """Native balance of a session account, as a decimal string."""
        with self._lock:
            account = self._find(address, chain_type)
            token = self.sessions.current().token
            account_id, account_chain, evm_address = account.id, account.chain_type, account.evm_address

        balance = self._fetch_balance(account_chain, evm_address)
        self._store_balances(token, {account_id: balance})
        return balance

    def update_balances(self) -> dict[str, str]:
        """Refresh every account's balance concurrently. Returns chain_type -> balance."""
        with self._lock:
            session = self.sessions.current()
            self.sessions.touch()
            token = session.token
            targets = [(a.id, a.chain_type, a.evm_address) for a in session.accounts.list()]

        if not targets:
            return {}

        with ThreadPoolExecutor(max_workers=len(targets)) as pool:
            futures = {
                account_id: (chain_type, pool.submit(self._fetch_balance, chain_type, evm_address))
                for account_id, chain_type, evm_address in targets
            }
            by_id = {account_id: future.result() for account_id, (_, future) in futures.items()}

        self._store_balances(token, by_id)
        return {chain_type: by_id[account_id] for account_id, (chain_type, _) in futures.items()}

    # ============================================
    # Name Registry
    # ============================================

    def resolve_username(self, name: str) -> Optional[str]:
        """Address registered for <name> or <name>.omnicoin, or None."""
        registry = self._require_registry()
        username = _strip_name_suffix(name)
        validate_username(username)
        return self._registry_call(registry.resolve, username)

    def reverse_resolve(self, address: str) -> Optional[str]:
        """Username registered for an address, or None."""
        registry = self._require_registry()
        if not Web3.is_address(address):
            raise ValueError(f"Invalid address: {address}")
        return self._registry_call(registry.reverse_resolve, Web3.to_checksum_address(address))

    def is_username_available(self, name: str) -> bool:
        registry = self._require_registry()
        username = _strip_name_suffix(name)
        validate_username(username)
        return bool(self._registry_call(registry.is_available, username))

    def resolve_address(self, address_or_name: str) -> Optional[str]:
        """Checksum address for a hex address, else resolve it as a name."""
        if Web3.is_address(address_or_name):
            return Web3.to_checksum_address(address_or_name)
        return self.resolve_username(address_or_name)

    # ============================================
    # Background Registration
    # ============================================

    def retry_registrations(self) -> int:
        """Re-submit failed username registrations."""
        if self.registration is None:
            return 0
        return self.registration.retry_pending()

    def shutdown(self) -> None:
        """Lock and stop background work."""
        self.lock()
        if self.registration is not None:
            self.registration.stop()
