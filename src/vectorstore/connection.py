"""
Connection credential resolution.

Layers an explicit per-call override map over the persisted Settings,
and resolves the password through a secret store keyed by the secret
name kept in Settings.
"""

import os
from collections.abc import Mapping
from typing import Any, Protocol

import structlog

from src.config.settings import Settings, get_settings
from src.vectorstore.exceptions import DatabaseNotConfiguredError
from src.vectorstore.schemas import DEFAULT_POSTGRES_PORT, ConnectionParams

logger = structlog.get_logger(__name__)


class SecretStore(Protocol):
    """Resolves a secret name to its value."""

    def resolve(self, name: str) -> str | None: ...


class EnvSecretStore:
    """
    Secret store backed by environment variables.

    The secret name is upper-cased and non-alphanumerics are replaced by
    underscores, so ``vdb_password`` reads ``$VDB_PASSWORD`` (or
    ``$SECRET_VDB_PASSWORD`` with ``prefix="SECRET_"``).
    """

    def __init__(self, prefix: str = "", environ: Mapping[str, str] | None = None):
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def env_name(self, name: str) -> str:
        normalized = "".join(c if c.isalnum() else "_" for c in name).upper()
        return f"{self._prefix}{normalized}"

    def resolve(self, name: str) -> str | None:
        return self._environ.get(self.env_name(name)) or None


class StaticSecretStore:
    """Secret store backed by an in-memory mapping."""

    def __init__(self, secrets: Mapping[str, str] | None = None):
        self._secrets = dict(secrets or {})

    def resolve(self, name: str) -> str | None:
        return self._secrets.get(name)


class ConnectionResolver:
    """
    Resolves ConnectionParams from overrides, settings and secrets.

    Precedence for host, username, port and default database is
    override > settings, with port defaulting to 5432. The password is
    taken from the override, else from the secret store using the
    secret name held in ``settings.postgres_password``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        secret_store: SecretStore | None = None,
    ):
        self._settings = settings or get_settings()
        self._secrets = secret_store or EnvSecretStore()

    @property
    def settings(self) -> Settings:
        return self._settings

    def resolve(self, overrides: Mapping[str, Any] | None = None) -> ConnectionParams:
        """
        Resolve connection parameters.

        Args:
            overrides: Per-call settings (host, port, username, password,
                default_database). None values count as absent.

        Returns:
            Fully populated ConnectionParams

        Raises:
            DatabaseNotConfiguredError: If host, username, password or
                default database is empty after resolution
        """
        overrides = overrides or {}

        host = self._pick(overrides, "host", self._settings.postgres_host)
        if not host:
            raise DatabaseNotConfiguredError("host")

        username = self._pick(overrides, "username", self._settings.postgres_username)
        if not username:
            raise DatabaseNotConfiguredError("username")

        password = self._resolve_password(overrides)
        if not password:
            raise DatabaseNotConfiguredError("password")

        port = self._pick(overrides, "port", self._settings.postgres_port)
        if not port:
            port = DEFAULT_POSTGRES_PORT

        default_database = self._pick(
            overrides, "default_database", self._settings.postgres_default_database
        )
        if not default_database:
            raise DatabaseNotConfiguredError("default_database")

        return ConnectionParams(
            host=str(host),
            port=int(port),
            username=str(username),
            password=str(password),
            default_database=str(default_database),
        )

    def _resolve_password(self, overrides: Mapping[str, Any]) -> str | None:
        if overrides.get("password"):
            return str(overrides["password"])

        secret_name = self._settings.postgres_password
        if not secret_name:
            return None

        value = self._secrets.resolve(secret_name)
        if value is None:
            logger.warning("Password secret could not be resolved", secret=secret_name)
        return value

    @staticmethod
    def _pick(overrides: Mapping[str, Any], key: str, fallback: Any) -> Any:
        value = overrides.get(key)
        return value if value is not None else fallback
