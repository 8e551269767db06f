"""
Name Registry - Username registry lookups and background registration.

Provides:
- RegistryClient: read-only calls to the on-chain name registry
- RegistrationRelay: submits gasless registration requests to the backend
- RegistrationWorker: background thread that retries registrations with
  exponential backoff

Registry failures are raised as CollaboratorUnavailable. Callers decide
whether that fails the operation (uniqueness check) or degrades it.
"""

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests
from web3 import Web3

from ..errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Minimal registry ABI: availability and forward/reverse resolution
REGISTRY_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "username", "type": "string"}],
        "name": "isAvailable",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [{"name": "username", "type": "string"}],
        "name": "resolve",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [{"name": "addr", "type": "address"}],
        "name": "reverseResolve",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function"
    },
]

# Shared pool for bounding blocking collaborator calls
_call_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="registry-call")


def bounded_call(fn: Callable[..., Any], timeout: float, *args) -> Any:
    """
    Run a blocking call with an upper time bound.

    Raises:
        CollaboratorUnavailable: On timeout or any failure of fn
    """
    future = _call_pool.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as e:
        future.cancel()
        raise CollaboratorUnavailable(f"Registry call timed out after {timeout}s") from e
    except CollaboratorUnavailable:
        raise
    except Exception as e:
        raise CollaboratorUnavailable(f"Registry call failed: {e}") from e


# ============================================
# Registry Client
# ============================================

class RegistryClient:
    """Read-only wrapper around the name registry contract."""

    def __init__(self, rpc_url: str, address: str, timeout: float = 10.0):
        """
        Args:
            rpc_url: JSON-RPC endpoint of the chain hosting the registry
            address: Registry contract address
            timeout: Per-call timeout in seconds
        """
        if not Web3.is_address(address):
            raise ValueError(f"Invalid registry address: {address}")
        self.timeout = timeout
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=REGISTRY_ABI
        )

    def _call(self, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except Exception as e:
            raise CollaboratorUnavailable(f"Registry call failed: {e}") from e

    def is_available(self, username: str) -> bool:
        """True if nobody has registered this username."""
        return bool(self._call(self.contract.functions.isAvailable(username).call))

    def resolve(self, username: str) -> Optional[str]:
        """Address registered for a username, or None."""
        address = self._call(self.contract.functions.resolve(username).call)
        if not address or address == ZERO_ADDRESS:
            return None
        return Web3.to_checksum_address(address)

    def reverse_resolve(self, address: str) -> Optional[str]:
        """Username registered for an address, or None."""
        name = self._call(
            self.contract.functions.reverseResolve(Web3.to_checksum_address(address)).call
        )
        return name or None


# ============================================
# Registration Relay
# ============================================

class RegistrationRelay:
    """
    Submits username registrations to the backend relay.

    The backend pays gas and writes the registry entry, so users never
    need native tokens to claim <username>.omnicoin.
    """

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def submit(self, username: str, address: str) -> dict:
        """
        Request registration of username -> address.

        Raises:
            CollaboratorUnavailable: Relay unreachable or rejected the request
        """
        try:
            response = requests.post(
                f"{self.base_url}/api/names",
                json={"username": username, "address": address},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise CollaboratorUnavailable(f"Registration relay unreachable: {e}") from e

        if response.status_code not in (200, 201, 202):
            raise CollaboratorUnavailable(
                f"Registration relay returned {response.status_code}"
            )
        try:
            return response.json()
        except ValueError:
            return {}


# ============================================
# Registration Worker
# ============================================

@dataclass
class RegistrationJob:
    """One background registration request."""
    username: str
    address: str
    status: str = "queued"      # queued | registered | failed
    attempts: int = 0
    last_error: Optional[str] = None
    done: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the job finishes or fails."""
        return self.done.wait(timeout)


class RegistrationWorker:
    """
    Background registration queue with retry/backoff.

    Job outcomes are recorded on the job only. Jobs that run out of
    attempts wait in the pending list until retry_pending().
    """

    def __init__(self, relay: RegistrationRelay, max_attempts: int = 5,
                 backoff_seconds: float = 2.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.relay = relay
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._queue: "queue.Queue[Optional[RegistrationJob]]" = queue.Queue()
        self._pending: list[RegistrationJob] = []
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def _ensure_running(self) -> None:
        with self._lock:
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(
                    target=self._run, name="registration-worker", daemon=True
                )
                self._thread.start()

    def submit(self, username: str, address: str) -> RegistrationJob:
        """Queue a registration; returns immediately."""
        job = RegistrationJob(username=username, address=address)
        self._queue.put(job)
        self._ensure_running()
        logger.info(f"Queued registration for {username} -> {address}")
        return job

    @property
    def pending(self) -> list[RegistrationJob]:
        """Jobs that failed all attempts."""
        with self._lock:
            return list(self._pending)

    def retry_pending(self) -> int:
        """Re-queue every failed job. Returns the number re-queued."""
        with self._lock:
            jobs, self._pending = self._pending, []
        for job in jobs:
            job.status = "queued"
            job.attempts = 0
            job.done.clear()
            self._queue.put(job)
        if jobs:
            self._ensure_running()
            logger.info(f"Retrying {len(jobs)} pending registration(s)")
        return len(jobs)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker thread after the current job."""
        thread = self._thread
        if thread is not None and thread.is_alive():
            self._queue.put(None)
            thread.join(timeout)

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            if job is None:
                break
            try:
                self._process(job)
            except Exception as e:
                logger.error(f"Registration worker error: {e}", exc_info=True)
                job.last_error = str(e)
                self._fail(job)
            finally:
                self._queue.task_done()

    def _fail(self, job: RegistrationJob) -> None:
        job.status = "failed"
        with self._lock:
            self._pending.append(job)
        job.done.set()

    def _process(self, job: RegistrationJob) -> None:
        for attempt in range(self.max_attempts):
            job.attempts = attempt + 1
            try:
                self.relay.submit(job.username, job.address)
            except CollaboratorUnavailable as e:
                job.last_error = e.message
                logger.warning(
                    f"Registration of {job.username} failed "
                    f"(attempt {job.attempts}/{self.max_attempts}): {e.message}"
                )
                if attempt + 1 < self.max_attempts:
                    self._sleep(self.backoff_seconds * (2 ** attempt))
                continue

            job.status = "registered"
            job.last_error = None
            logger.info(f"Registered {job.username} -> {job.address}")
            job.done.set()
            return

        self._fail(job)
