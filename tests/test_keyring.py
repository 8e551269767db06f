"""End-to-end tests for the KeyringService facade."""

import re

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from omnikeyring.errors import (
    AccountNotFound,
    CollaboratorUnavailable,
    InvalidCredentials,
    InvalidSeed,
    NotAuthenticated,
    NotInitialized,
    OperationSuperseded,
    UnsupportedChain,
    UsernameTaken,
    WalletExists,
)
from omnikeyring.models import AuthMethod, Credentials, MemoryStorage, FileStorage
from omnikeyring.services import KeyringService
from omnikeyring.services.keyring import META_KEY, PROFILE_KEY, VAULT_KEY
from omnikeyring.utils import KeyringSettings
from omnikeyring.networks import get_chain
from omnikeyring.wallet import MnemonicWallet, derive_mnemonic

from conftest import ALICE, VECTOR_ETH_ADDRESS, VECTOR_MNEMONIC, FakeRegistry, wait_for

PASSWORD = "vault-password-123"
EVM_ADDRESS = re.compile(r"0x[0-9a-fA-F]{40}")


def _addresses(state):
    return {(a.chain_type, a.address) for a in state.accounts}


class TestRegisterWeb2:
    def test_alice_scenario(self, keyring, registry):
        assert len(derive_mnemonic(ALICE).split()) == 24

        state = keyring.register_web2(ALICE)
        assert not state.is_locked
        assert state.auth_method == AuthMethod.WEB2
        assert state.username == "alice"

        by_chain = {a.chain_type: a for a in state.accounts}
        assert set(by_chain) == {"ethereum", "omnicoin", "coti"}
        assert EVM_ADDRESS.fullmatch(by_chain["ethereum"].address)
        assert by_chain["omnicoin"].address.startswith("XOM")
        assert by_chain["omnicoin"].address != by_chain["ethereum"].address
        assert by_chain["ethereum"].omni_alias == "alice.omnicoin"
        assert state.active_account.chain_type == "ethereum"

        keyring.logout()
        again = keyring.login_web2(ALICE)
        assert _addresses(again) == _addresses(state)

    def test_queues_background_registration(self, keyring, registry, relay):
        state = keyring.register_web2(ALICE)
        eth = next(a for a in state.accounts if a.chain_type == "ethereum")
        assert wait_for(lambda: registry.names.get("alice") == eth.address)
        assert relay.submitted == [("alice", eth.address)]

    def test_accepts_dict(self, keyring):
        state = keyring.register_web2({"username": "Alice", "password": "CorrectHorseBattery1"})
        assert state.username == "alice"

    def test_invalid_credentials_before_any_work(self, keyring, registry):
        registry.down = True  # Never reached
        with pytest.raises(InvalidCredentials):
            keyring.register_web2(Credentials(username="al", password="CorrectHorseBattery1"))
        with pytest.raises(InvalidCredentials):
            keyring.register_web2(Credentials(username="alice", password="short"))

    def test_username_taken(self, keyring, registry, storage):
        registry.names["alice"] = "0x" + "11" * 20
        with pytest.raises(UsernameTaken) as exc:
            keyring.register_web2(ALICE)
        assert exc.value.code == "USERNAME_TAKEN"
        assert keyring.get_state().is_locked
        assert storage.retrieve(PROFILE_KEY) is None

    def test_registry_down_fails_closed(self, keyring, registry, storage):
        registry.down = True
        with pytest.raises(UsernameTaken):
            keyring.register_web2(ALICE)
        assert keyring.get_state().is_locked
        assert storage.keys() == []

    def test_registration_failure_is_not_fatal(self, make_keyring, relay):
        relay.failures = 100
        keyring = make_keyring()
        state = keyring.register_web2(ALICE)
        assert not state.is_locked
        assert wait_for(lambda: len(keyring.registration.pending) == 1)
        assert keyring.get_state().is_locked is False

    def test_retry_registrations(self, make_keyring, relay, registry):
        relay.failures = 3  # max_attempts in the fixture
        keyring = make_keyring()
        keyring.register_web2(ALICE)
        assert wait_for(lambda: len(keyring.registration.pending) == 1)
        assert keyring.retry_registrations() == 1
        assert wait_for(lambda: "alice" in registry.names)

    def test_without_collaborators(self, storage, settings, clock):
        keyring = KeyringService(storage=storage, settings=settings, clock=clock)
        state = keyring.register_web2(ALICE)
        assert not state.is_locked
        assert state.registry_verified is None
        keyring.lock()


class TestLoginWeb2:
    def test_fresh_device_verified_by_registry(self, keyring, make_keyring, registry):
        registered = keyring.register_web2(ALICE)
        assert wait_for(lambda: "alice" in registry.names)

        other_device = make_keyring(storage=MemoryStorage())
        state = other_device.login_web2(ALICE)
        assert state.registry_verified is True
        assert _addresses(state) == _addresses(registered)

    def test_fresh_device_unknown_user(self, make_keyring):
        keyring = make_keyring(storage=MemoryStorage())
        with pytest.raises(InvalidCredentials):
            keyring.login_web2(ALICE)
        assert keyring.get_state().is_locked

    def test_wrong_password_with_local_profile(self, keyring):
        keyring.register_web2(ALICE)
        keyring.logout()
        with pytest.raises(InvalidCredentials):
            keyring.login_web2(Credentials(username="alice", password="WrongHorseBattery1"))
        assert keyring.get_state().is_locked

    def test_name_owned_by_someone_else(self, make_keyring, registry):
        keyring = make_keyring(storage=MemoryStorage())
        # alice's derived address is registered, but to a different name
        wallet = MnemonicWallet(derive_mnemonic(ALICE))
        address = wallet.derive_account(get_chain("ethereum")).address
        registry.names["mallory"] = address
        with pytest.raises(InvalidCredentials):
            keyring.login_web2(ALICE)

    def test_registry_down_degraded(self, keyring, registry):
        keyring.register_web2(ALICE)
        keyring.logout()
        registry.down = True
        messages = []
        keyring.activity.connect(lambda msg, is_error: messages.append((msg, is_error)))
        state = keyring.login_web2(ALICE)
        assert not state.is_locked
        assert state.registry_verified is False
        assert any(is_error for _, is_error in messages)

    def test_registry_down_strict(self, make_keyring, registry, storage):
        keyring = make_keyring(settings=KeyringSettings(login_verification="strict"))
        keyring.register_web2(ALICE)
        keyring.logout()
        registry.down = True
        with pytest.raises(CollaboratorUnavailable) as exc:
            keyring.login_web2(ALICE)
        assert exc.value.code == "COLLABORATOR_UNAVAILABLE"
        assert keyring.get_state().is_locked

    def test_pending_registration_known_locally(self, make_keyring, relay):
        relay.failures = 100
        keyring = make_keyring()
        keyring.register_web2(ALICE)
        keyring.logout()
        state = keyring.login_web2(ALICE)
        assert state.registry_verified is False


class TestWeb3:
    def test_generated_mnemonics_differ(self, make_keyring):
        first = make_keyring(storage=MemoryStorage()).initialize_web3(PASSWORD)
        second = make_keyring(storage=MemoryStorage()).initialize_web3(PASSWORD)
        assert len(first.split()) == 24
        assert first != second

    def test_same_mnemonic_same_accounts(self, make_keyring):
        a = make_keyring(storage=MemoryStorage())
        b = make_keyring(storage=MemoryStorage())
        a.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        b.initialize_web3("another-password", VECTOR_MNEMONIC)
        assert _addresses(a.get_state()) == _addresses(b.get_state())
        assert a.get_active_account().address == VECTOR_ETH_ADDRESS

    def test_state(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        state = keyring.get_state()
        assert state.auth_method == AuthMethod.WEB3
        assert state.username is None
        assert all(a.omni_alias is None for a in state.accounts)
        assert all(a.auth_method == "web3" for a in state.accounts)

    def test_mnemonic_never_stored_in_plaintext(self, keyring, storage):
        seed = keyring.initialize_web3(PASSWORD)
        for key in storage.keys():
            assert seed not in str(storage.retrieve(key))
        assert storage.retrieve(VAULT_KEY)["type"] == "web3"
        assert storage.retrieve(META_KEY) == {"version": 1, "auth_method": "web3"}

    def test_invalid_seed(self, keyring):
        with pytest.raises(InvalidSeed):
            keyring.initialize_web3(PASSWORD, "abandon " * 11 + "abandon")
        assert keyring.get_state().is_locked
        assert not keyring.get_state().is_initialized

    def test_short_password(self, keyring):
        with pytest.raises(InvalidCredentials):
            keyring.initialize_web3("short")

    def test_export_seed_phrase(self, keyring):
        seed = keyring.initialize_web3(PASSWORD)
        keyring.lock()
        assert keyring.export_seed_phrase(PASSWORD) == seed
        with pytest.raises(InvalidCredentials):
            keyring.export_seed_phrase("wrong-password-1")

    def test_export_not_available_for_web2(self, keyring):
        keyring.register_web2(ALICE)
        with pytest.raises(NotInitialized):
            keyring.export_seed_phrase(ALICE.password)


class TestLockUnlock:
    def test_web3_idempotent(self, keyring):
        keyring.initialize_web3(PASSWORD)
        before = _addresses(keyring.get_state())
        keyring.lock()
        assert keyring.get_state().is_locked
        assert keyring.get_state().accounts == ()
        state = keyring.unlock(PASSWORD)
        assert _addresses(state) == before

    def test_web2_idempotent(self, keyring):
        keyring.register_web2(ALICE)
        before = _addresses(keyring.get_state())
        keyring.lock()
        state = keyring.unlock(ALICE.password)
        assert _addresses(state) == before
        assert state.username == "alice"

    def test_web3_wrong_password(self, keyring):
        keyring.initialize_web3(PASSWORD)
        keyring.lock()
        with pytest.raises(InvalidCredentials):
            keyring.unlock("wrong-password-1")
        assert keyring.get_state().is_locked

    def test_web2_wrong_password(self, keyring):
        keyring.register_web2(ALICE)
        keyring.lock()
        with pytest.raises(InvalidCredentials):
            keyring.unlock("WrongHorseBattery1")

    def test_web2_unlock_other_username_logs_in(self, keyring, registry):
        keyring.register_web2(ALICE)
        assert wait_for(lambda: "alice" in registry.names)
        bob = Credentials(username="bob", password="BobsPassword123")
        keyring.register_web2(bob)
        keyring.lock()
        state = keyring.unlock(ALICE.password, username="alice")
        assert state.username == "alice"

    def test_unlock_before_init(self, keyring):
        with pytest.raises(NotInitialized) as exc:
            keyring.unlock(PASSWORD)
        assert exc.value.code == "NOT_INITIALIZED"

    def test_lock_wipes_keys(self, keyring):
        keyring.initialize_web3(PASSWORD)
        session = keyring.sessions.current()
        accounts = session.accounts.list()
        keyring.lock()
        assert all(a.key.is_wiped for a in accounts)
        assert session.wallet.is_locked

    def test_check_initialization_from_storage(self, keyring, make_keyring, storage):
        keyring.initialize_web3(PASSWORD)
        restarted = make_keyring(storage=storage)
        state = restarted.get_state()
        assert state.is_initialized
        assert state.is_locked
        assert state.auth_method == AuthMethod.WEB3
        restarted.unlock(PASSWORD)
        assert not restarted.get_state().is_locked

    def test_file_storage_restart(self, make_keyring, tmp_path):
        first = make_keyring(storage=FileStorage(tmp_path / "vault"))
        seed = first.initialize_web3(PASSWORD)
        first.lock()
        second = make_keyring(storage=FileStorage(tmp_path / "vault"))
        second.unlock(PASSWORD)
        assert second.export_seed_phrase(PASSWORD) == seed

    def test_reset(self, keyring, storage):
        keyring.initialize_web3(PASSWORD)
        state = keyring.reset()
        assert not state.is_initialized
        assert state.is_locked
        assert storage.keys() == []
        with pytest.raises(NotInitialized):
            keyring.unlock(PASSWORD)

    def test_web2_refused_while_vault_stored(self, keyring, storage, registry):
        seed = keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        keyring.lock()
        with pytest.raises(WalletExists) as exc:
            keyring.register_web2(ALICE)
        assert exc.value.code == "WALLET_EXISTS"
        with pytest.raises(WalletExists):
            keyring.login_web2(ALICE)
        assert registry.names == {}
        assert storage.retrieve(PROFILE_KEY) is None

        keyring.logout()
        assert keyring.get_state().auth_method == AuthMethod.WEB3
        assert keyring.export_seed_phrase(PASSWORD) == seed
        assert keyring.unlock(PASSWORD).auth_method == AuthMethod.WEB3

    def test_stored_vault_wins_over_metadata(self, keyring, make_keyring, storage):
        seed = keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        keyring.lock()
        storage.store(META_KEY, {"version": 1, "auth_method": "web2"})
        restarted = make_keyring(storage=storage)
        assert restarted.get_state().auth_method == AuthMethod.WEB3
        assert restarted.export_seed_phrase(PASSWORD) == seed
        assert VECTOR_ETH_ADDRESS in {a.address for a in restarted.unlock(PASSWORD).accounts}

    def test_web2_allowed_after_reset(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        keyring.reset()
        assert keyring.register_web2(ALICE).auth_method == AuthMethod.WEB2


class TestSessionExpiry:
    def test_accessors_fail_after_timeout(self, keyring, clock, settings):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        clock.advance(settings.session_timeout_seconds + 0.001)

        assert keyring.get_state().is_locked
        for call in (
            lambda: keyring.get_accounts(),
            lambda: keyring.get_active_account(),
            lambda: keyring.set_active_account(VECTOR_ETH_ADDRESS),
            lambda: keyring.get_account(VECTOR_ETH_ADDRESS),
            lambda: keyring.create_account("polygon"),
            lambda: keyring.sign_message(VECTOR_ETH_ADDRESS, "hi"),
            lambda: keyring.sign_transaction(VECTOR_ETH_ADDRESS, {"to": VECTOR_ETH_ADDRESS}),
            lambda: keyring.get_balance(VECTOR_ETH_ADDRESS),
            lambda: keyring.update_balances(),
        ):
            with pytest.raises(NotAuthenticated):
                call()

    def test_activity_keeps_session_alive(self, keyring, clock, settings):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        for _ in range(3):
            clock.advance(settings.session_timeout_seconds - 1)
            keyring.get_accounts()
        assert not keyring.get_state().is_locked

    def test_unlock_after_expiry(self, keyring, clock, settings):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        clock.advance(settings.session_timeout_seconds + 1)
        keyring.unlock(PASSWORD)
        assert keyring.get_active_account().address == VECTOR_ETH_ADDRESS


class TestAccounts:
    def test_get_accounts_filter(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        assert [a.chain_type for a in keyring.get_accounts("omnicoin")] == ["omnicoin"]
        assert len(keyring.get_accounts()) == 3

    def test_set_active_account(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        omni = keyring.get_accounts("omnicoin")[0]
        assert keyring.set_active_account(omni.address).id == omni.id
        assert keyring.get_state().active_account_id == omni.id

    def test_set_active_unknown(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        before = keyring.get_active_account()
        with pytest.raises(AccountNotFound):
            keyring.set_active_account("0x" + "33" * 20)
        assert keyring.get_active_account() == before

    def test_set_active_account_by_chain(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        assert keyring.set_active_account(VECTOR_ETH_ADDRESS, "coti").chain_type == "coti"
        assert keyring.get_active_account().chain_type == "coti"
        assert keyring.set_active_account(VECTOR_ETH_ADDRESS).chain_type == "ethereum"
        with pytest.raises(AccountNotFound):
            keyring.set_active_account(VECTOR_ETH_ADDRESS, "omnicoin")

    def test_shared_evm_address_signs_for_chosen_chain(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        tx = {"to": "0x000000000000000000000000000000000000dEaD", "value": "1", "gasPrice": "0x3b9aca00"}
        assert keyring.sign_transaction(VECTOR_ETH_ADDRESS, tx).chain_id == 1
        assert keyring.sign_transaction(VECTOR_ETH_ADDRESS, tx, "coti").chain_id == 7082400

    def test_get_account(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        assert keyring.get_account(VECTOR_ETH_ADDRESS.lower()).chain_type == "ethereum"
        assert keyring.get_account(VECTOR_ETH_ADDRESS, "coti").chain_type == "coti"
        with pytest.raises(AccountNotFound):
            keyring.get_account("XOMdeadbeef")

    def test_create_account_survives_unlock(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        polygon = keyring.create_account("polygon")
        assert polygon.address == VECTOR_ETH_ADDRESS
        assert keyring.create_account("polygon").id == polygon.id
        keyring.lock()
        keyring.unlock(PASSWORD)
        assert [a.chain_type for a in keyring.get_accounts("polygon")] == ["polygon"]

    def test_create_account_web2(self, keyring):
        keyring.register_web2(ALICE)
        account = keyring.create_account("arbitrum")
        assert account.omni_alias == "alice.omnicoin"
        keyring.lock()
        keyring.unlock(ALICE.password)
        assert keyring.get_accounts("arbitrum")

    def test_create_account_unsupported(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        with pytest.raises(UnsupportedChain):
            keyring.create_account("bitcoin")


class TestSigning:
    def test_sign_every_account(self, keyring):
        keyring.register_web2(ALICE)
        for account in keyring.get_accounts():
            signature = keyring.sign_message(account.address, "round trip", account.chain_type)
            assert keyring.verify_message(account.address, "round trip", signature, account.chain_type)

    def test_signature_matches_public_key(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        signature = keyring.sign_message(VECTOR_ETH_ADDRESS, "hello")
        assert Account.recover_message(encode_defunct(text="hello"), signature=signature) == VECTOR_ETH_ADDRESS

    def test_sign_transaction_dict(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        signed = keyring.sign_transaction(VECTOR_ETH_ADDRESS, {
            "from": "0x" + "44" * 20,
            "to": "0x000000000000000000000000000000000000dEaD",
            "value": "1000",
            "gasPrice": "0x3b9aca00",
        })
        assert signed.from_address == VECTOR_ETH_ADDRESS
        assert Account.recover_transaction(signed.raw_transaction) == VECTOR_ETH_ADDRESS

    def test_sign_unknown_address(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        with pytest.raises(AccountNotFound):
            keyring.sign_message("0x" + "55" * 20, "hi")

    def test_sign_locked(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        keyring.lock()
        with pytest.raises(NotAuthenticated) as exc:
            keyring.sign_message(VECTOR_ETH_ADDRESS, "hi")
        assert exc.value.to_dict() == {
            "status": "error",
            "error": exc.value.message,
            "code": "NOT_AUTHENTICATED",
        }


class TestBalances:
    def test_update_balances_degrades(self, keyring, providers):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        balances = keyring.update_balances()
        assert balances == {
            "ethereum": "2.000000",
            "omnicoin": "0.000000",  # no provider
            "coti": "0.000000",      # provider down
        }
        by_chain = {a.chain_type: a.balance for a in keyring.get_state().accounts}
        assert by_chain["ethereum"] == "2.000000"
        assert providers["ethereum"].queried == [VECTOR_ETH_ADDRESS]

    def test_get_balance(self, keyring):
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        assert keyring.get_balance(VECTOR_ETH_ADDRESS) == "2.000000"
        assert keyring.get_active_account().balance == "2.000000"

    def test_omnicoin_queries_evm_address(self, make_keyring):
        from conftest import FakeProvider
        provider = FakeProvider(balance=5 * 10 ** 18)
        keyring = make_keyring(providers={"omnicoin": provider})
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        omni = keyring.get_accounts("omnicoin")[0]
        assert keyring.get_balance(omni.address) == "5.000000"
        assert provider.queried[0].startswith("0x")


class TestNames:
    def test_resolve(self, keyring, registry):
        registry.names["bob"] = VECTOR_ETH_ADDRESS
        assert keyring.resolve_username("bob") == VECTOR_ETH_ADDRESS
        assert keyring.resolve_username("Bob.omnicoin") == VECTOR_ETH_ADDRESS
        assert keyring.resolve_username("carol") is None
        assert keyring.reverse_resolve(VECTOR_ETH_ADDRESS.lower()) == "bob.omnicoin"
        assert keyring.is_username_available("carol")
        assert not keyring.is_username_available("bob")

    def test_resolve_address(self, keyring, registry):
        registry.names["bob"] = VECTOR_ETH_ADDRESS
        assert keyring.resolve_address(VECTOR_ETH_ADDRESS.lower()) == VECTOR_ETH_ADDRESS
        assert keyring.resolve_address("bob.omnicoin") == VECTOR_ETH_ADDRESS

    def test_registry_down(self, keyring, registry):
        registry.down = True
        with pytest.raises(CollaboratorUnavailable):
            keyring.resolve_username("bob")

    def test_no_registry(self, make_keyring):
        keyring = make_keyring(registry=None)
        with pytest.raises(CollaboratorUnavailable):
            keyring.is_username_available("bob")

    def test_invalid_name(self, keyring):
        with pytest.raises(InvalidCredentials):
            keyring.resolve_username("no spaces allowed")


class TestConcurrency:
    def test_lock_during_register_supersedes(self, keyring, registry, storage):
        registry.on_call = keyring.lock
        with pytest.raises(OperationSuperseded) as exc:
            keyring.register_web2(ALICE)
        assert exc.value.code == "OPERATION_SUPERSEDED"
        assert keyring.get_state().is_locked
        assert storage.retrieve(PROFILE_KEY) is None

    def test_newer_login_wins(self, keyring, registry):
        bob = Credentials(username="bob", password="BobsPassword123")
        keyring.register_web2(ALICE)
        keyring.register_web2(bob)
        assert wait_for(lambda: {"alice", "bob"} <= set(registry.names))
        keyring.logout()

        def start_bob():
            registry.on_call = None
            keyring.login_web2(bob)

        # alice's registry check starts a newer login for bob
        registry.on_call = start_bob
        with pytest.raises(OperationSuperseded):
            keyring.login_web2(ALICE)
        assert wait_for(lambda: keyring.get_state().username == "bob")


class TestSignals:
    def test_state_changed(self, keyring):
        states = []
        keyring.state_changed.connect(states.append)
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        keyring.lock()
        assert states[0].is_locked is False
        assert states[-1].is_locked is True
        assert all(not hasattr(a, "key") for s in states for a in s.accounts)

    def test_activity(self, keyring):
        messages = []
        keyring.activity.connect(lambda msg, is_error: messages.append(msg))
        keyring.initialize_web3(PASSWORD, VECTOR_MNEMONIC)
        keyring.sign_message(VECTOR_ETH_ADDRESS, "hi")
        assert any("Signed message" in m for m in messages)
        assert all(VECTOR_MNEMONIC not in m for m in messages)
