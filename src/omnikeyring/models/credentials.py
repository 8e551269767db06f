"""
Credentials model.

Username/password pair for Web2-style login. Validation happens here, before
any key stretching is attempted.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from ..errors import InvalidCredentials

MIN_PASSWORD_LENGTH = 12
MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 20

USERNAME_PATTERN = re.compile(r'[a-zA-Z0-9_-]+')


@dataclass(frozen=True)
class Credentials:
    """Username/password login credentials."""
    username: str
    password: str = field(repr=False)
    email: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Credentials":
        """Build credentials from a loosely-typed request body."""
        if not isinstance(data, dict):
            raise InvalidCredentials("Credentials must be an object")
        username = data.get("username")
        password = data.get("password")
        if not isinstance(username, str) or not isinstance(password, str):
            raise InvalidCredentials("Username and password are required")
        email = data.get("email")
        return cls(username=username, password=password,
                   email=email if isinstance(email, str) and email else None)

    def validate(self) -> None:
        """Raise InvalidCredentials on any format violation."""
        validate_username(self.username)
        if not self.password or len(self.password) < MIN_PASSWORD_LENGTH:
            raise InvalidCredentials(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )

    @property
    def normalized_username(self) -> str:
        return normalize_username(self.username)


def normalize_username(username: str) -> str:
    """Lowercase and trim a username."""
    return username.strip().lower()


def validate_username(username: str) -> None:
    """Raise InvalidCredentials if the username is malformed."""
    if not username or not username.strip():
        raise InvalidCredentials("Username is required")

    if not USERNAME_PATTERN.fullmatch(username):
        raise InvalidCredentials(
            "Username can only contain letters, numbers, hyphens, and underscores"
        )

    if len(username) < MIN_USERNAME_LENGTH or len(username) > MAX_USERNAME_LENGTH:
        raise InvalidCredentials(
            f"Username must be between {MIN_USERNAME_LENGTH} and {MAX_USERNAME_LENGTH} characters"
        )
