"""Shared fixtures and in-process collaborator fakes."""

import time

import pytest

from omnikeyring.errors import CollaboratorUnavailable
from omnikeyring.models import Credentials, MemoryStorage
from omnikeyring.services import KeyringService, RegistrationWorker
from omnikeyring.utils import KeyringSettings
from omnikeyring.wallet import crypto

ALICE = Credentials(username="alice", password="CorrectHorseBattery1")

# BIP-39 test vector: m/44'/60'/0'/0/0 -> 0x9858EfFD232B4033E47d90003D41EC34EcaEda94
VECTOR_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
VECTOR_ETH_ADDRESS = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRegistry:
    """Name registry backed by a dict. Set down=True to simulate an outage."""

    def __init__(self):
        self.names: dict[str, str] = {}
        self.down = False
        self.on_call = None

    def _check(self):
        if self.on_call is not None:
            self.on_call()
        if self.down:
            raise CollaboratorUnavailable("registry down")

    def is_available(self, username):
        self._check()
        return username not in self.names

    def resolve(self, username):
        self._check()
        return self.names.get(username)

    def reverse_resolve(self, address):
        self._check()
        for name, registered in self.names.items():
            if registered.lower() == address.lower():
                return f"{name}.omnicoin"
        return None


class FakeRelay:
    """Registration relay that writes straight into a FakeRegistry."""

    def __init__(self, registry: FakeRegistry, failures: int = 0):
        self.registry = registry
        self.failures = failures
        self.submitted: list[tuple[str, str]] = []

    def submit(self, username, address):
        self.submitted.append((username, address))
        if self.failures > 0:
            self.failures -= 1
            raise CollaboratorUnavailable("relay down")
        self.registry.names[username] = address
        return {"status": "queued"}


class FakeProvider:
    def __init__(self, balance: int = 0, fail: bool = False):
        self.balance = balance
        self.fail = fail
        self.queried: list[str] = []

    def get_balance(self, address):
        self.queried.append(address)
        if self.fail:
            raise CollaboratorUnavailable("rpc down")
        return self.balance

    def send_transaction(self, signed_tx):
        return "0x" + "ab" * 32


def wait_for(predicate, timeout: float = 5.0) -> bool:
    """Poll until predicate() is true or timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture(autouse=True)
def fast_kdf(monkeypatch):
    """Cheap Argon2 parameters so vault tests stay fast."""
    monkeypatch.setattr(crypto, "ARGON2_TIME_COST", 1)
    monkeypatch.setattr(crypto, "ARGON2_MEMORY_COST", 1024)
    monkeypatch.setattr(crypto, "ARGON2_PARALLELISM", 1)


@pytest.fixture(autouse=True)
def app_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    monkeypatch.setenv("OMNIKEYRING_HOME", str(home))
    for name in ("OMNIKEYRING_SESSION_TIMEOUT", "OMNIKEYRING_REGISTRY_TIMEOUT",
                 "OMNIKEYRING_REGISTRY_RPC", "OMNIKEYRING_REGISTRY_ADDRESS",
                 "OMNIKEYRING_RELAY_URL", "OMNIKEYRING_LOGIN_VERIFICATION"):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def relay(registry):
    return FakeRelay(registry)


@pytest.fixture
def worker(relay):
    worker = RegistrationWorker(relay, max_attempts=3, backoff_seconds=0.5, sleep=lambda s: None)
    yield worker
    worker.stop()


@pytest.fixture
def providers():
    return {
        "ethereum": FakeProvider(balance=2 * 10 ** 18),
        "coti": FakeProvider(fail=True),
    }


@pytest.fixture
def settings():
    return KeyringSettings(registry_timeout_seconds=2.0)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def make_keyring(storage, registry, worker, providers, settings, clock):
    """Factory for keyrings sharing the fixture collaborators."""
    created = []

    def make(**overrides):
        kwargs = dict(storage=storage, registry=registry, registration=worker,
                      providers=providers, settings=settings, clock=clock)
        kwargs.update(overrides)
        keyring = KeyringService(**kwargs)
        created.append(keyring)
        return keyring

    yield make
    for keyring in created:
        keyring.lock()


@pytest.fixture
def keyring(make_keyring):
    return make_keyring()
