"""Credential lookup consumed by the session pool.

Storing secrets is outside this package; implementations here only read them.
"""

import os
import re
from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from .exceptions import CredentialError

PASSWORD_ENV_PREFIX = "VCMIGRATOR_PASSWORD__"


@runtime_checkable
class CredentialProvider(Protocol):
    def get_password(self, server_address: str, username: str) -> str | None:
        """Return the stored secret for ``username`` on ``server_address``, or None.

        Raises:
            CredentialError: If the credential store itself cannot be read
        """
        ...


class StaticCredentialProvider:
    """In-memory credentials keyed by (server, username), case-insensitive."""

    def __init__(self, credentials: Mapping[tuple[str, str], str] | None = None):
        self._credentials: dict[tuple[str, str], str] = {}
        for (server, user), password in (credentials or {}).items():
            self.set_password(server, user, password)

    def set_password(self, server_address: str, username: str, password: str) -> None:
        if not password:
            raise CredentialError(
                f"Refusing to store a blank password for {username} on {server_address}"
            )
        self._credentials[(server_address.lower(), username.lower())] = password

    def get_password(self, server_address: str, username: str) -> str | None:
        return self._credentials.get((server_address.lower(), username.lower()))


def password_env_var(server_address: str, username: str) -> str:
    """Environment variable name holding the password for an endpoint/user pair.

    ``vc01.lab.local`` / ``administrator@vsphere.local`` becomes
    ``VCMIGRATOR_PASSWORD__VC01_LAB_LOCAL__ADMINISTRATOR_VSPHERE_LOCAL``.
    """

    def _normalize(value: str) -> str:
        return re.sub(r"[^A-Za-z0-9]+", "_", value).strip("_").upper()

    return f"{PASSWORD_ENV_PREFIX}{_normalize(server_address)}__{_normalize(username)}"


class EnvironmentCredentialProvider:
    """Reads passwords from environment variables (``.env`` is loaded by config)."""

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ if environ is not None else os.environ

    def get_password(self, server_address: str, username: str) -> str | None:
        value = self._environ.get(password_env_var(server_address, username))
        return value or None


class ChainedCredentialProvider:
    """Consults several providers in order and returns the first hit."""

    def __init__(self, *providers: CredentialProvider):
        self.providers = list(providers)

    def get_password(self, server_address: str, username: str) -> str | None:
        for provider in self.providers:
            password = provider.get_password(server_address, username)
            if password:
                return password
        return None
