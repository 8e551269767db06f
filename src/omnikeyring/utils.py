"""
Shared utility functions for OmniKeyring.

Contains path helpers and the settings loader used across packages.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, field, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Secure file permissions (Unix only)
SECURE_FILE_MODE = 0o600  # Owner read/write only

DEFAULT_CHAINS = ["ethereum", "omnicoin", "coti"]


def set_secure_permissions(filepath: Path) -> None:
    """
    Set restrictive file permissions on Unix systems.

    No-op on Windows (NTFS uses ACLs, not Unix permissions).
    """
    if os.name == 'posix':
        try:
            os.chmod(filepath, SECURE_FILE_MODE)
        except OSError as e:
            # Don't fail the save if chmod fails
            logger.warning(f"Could not restrict permissions on {filepath}: {e}")


def get_app_dir() -> Path:
    """Get the application data directory (OMNIKEYRING_HOME overrides)."""
    override = os.environ.get("OMNIKEYRING_HOME")
    if override:
        app_dir = Path(override)
    else:
        app_dir = Path.home() / ".omnikeyring"

    app_dir.mkdir(parents=True, exist_ok=True)
    return app_dir


def get_vault_dir() -> Path:
    """Get the encrypted vault storage directory."""
    return get_app_dir() / "vault"


def get_settings_path() -> Path:
    """Get path to settings file."""
    return get_app_dir() / "settings.json"


def get_logs_dir() -> Path:
    """Get the logs directory."""
    logs_dir = get_app_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


# ============================================
# Settings
# ============================================

@dataclass
class KeyringSettings:
    """Runtime configuration for the keyring service."""
    session_timeout_seconds: int = 30 * 60
    registry_timeout_seconds: float = 10.0
    registry_rpc_url: str = "https://testnet.coti.io/rpc"
    registry_address: str = ""
    relay_url: str = "https://api.omnibazaar.com"
    login_verification: str = "degraded"   # "degraded" | "strict"
    registration_max_attempts: int = 5
    registration_backoff_seconds: float = 2.0
    chains: list[str] = field(default_factory=lambda: list(DEFAULT_CHAINS))
    custom_rpcs: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "KeyringSettings":
        """Build settings from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        settings = cls(**{k: v for k, v in data.items() if k in known})
        if settings.login_verification not in ("degraded", "strict"):
            logger.warning(
                f"Unknown login_verification '{settings.login_verification}', using 'degraded'"
            )
            settings.login_verification = "degraded"
        if settings.session_timeout_seconds <= 0:
            raise ValueError("session_timeout_seconds must be positive")
        return settings


# Environment variable -> (setting name, converter)
_ENV_OVERRIDES = {
    "OMNIKEYRING_SESSION_TIMEOUT": ("session_timeout_seconds", int),
    "OMNIKEYRING_REGISTRY_TIMEOUT": ("registry_timeout_seconds", float),
    "OMNIKEYRING_REGISTRY_RPC": ("registry_rpc_url", str),
    "OMNIKEYRING_REGISTRY_ADDRESS": ("registry_address", str),
    "OMNIKEYRING_RELAY_URL": ("relay_url", str),
    "OMNIKEYRING_LOGIN_VERIFICATION": ("login_verification", str),
}


def load_settings(path: Optional[Path] = None) -> KeyringSettings:
    """
    Load settings from disk, then apply environment overrides.

    A missing or unreadable file falls back to the defaults.
    """
    settings_path = path or get_settings_path()
    data: dict = {}
    if settings_path.exists():
        try:
            with open(settings_path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load settings: {e}")
            data = {}

    for env_name, (key, convert) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            try:
                data[key] = convert(value)
            except ValueError:
                logger.warning(f"Ignoring invalid {env_name}={value!r}")

    return KeyringSettings.from_dict(data)


def save_settings(settings: KeyringSettings, path: Optional[Path] = None) -> None:
    """Save settings to disk."""
    settings_path = path or get_settings_path()
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = settings_path.with_suffix('.tmp')
    with open(temp_path, 'w') as f:
        json.dump(settings.to_dict(), f, indent=2)
    temp_path.replace(settings_path)
    set_secure_permissions(settings_path)
