"""Credentials class for username / passwords."""

from __future__ import annotations

from dataclasses import dataclass, field

from .crypto import hash_password


@dataclass
class Credentials:
    """Credentials of a Xiaomi account."""

    #: Username (email address, phone number or user id) of the account
    username: str = field(default="", repr=False)
    #: Password of the account
    password: str = field(default="", repr=False)

    @property
    def password_hash(self) -> str:
        """Return the password hash the login endpoint expects."""
        return hash_password(self.password)
