"""Process-level configuration shared by the worker, CLI and HTTP runtime."""

from __future__ import annotations

import dataclasses as dc

from outrider.common.env import read_str

DATABASE_URL_ENV = "OUTRIDER_DATABASE_URL"


class ConfigurationError(RuntimeError):
    """Raised when required process configuration is missing."""

    @classmethod
    def missing(cls, env_var: str) -> ConfigurationError:
        """Return an error naming the unset environment variable."""
        return cls(f"{env_var} must be set")


@dc.dataclass(frozen=True, slots=True)
class AppConfig:
    """Connection settings for a running Outrider process.

    Attributes
    ----------
    database_url
        SQLAlchemy async URL of the registry, queue and ledger database.

    """

    database_url: str

    @classmethod
    def from_env(cls) -> AppConfig:
        """Read ``OUTRIDER_DATABASE_URL``.

        Raises
        ------
        ConfigurationError
            If the database URL is not set.

        """
        database_url = read_str(DATABASE_URL_ENV)
        if database_url is None:
            raise ConfigurationError.missing(DATABASE_URL_ENV)
        return cls(database_url=database_url)


__all__ = ["DATABASE_URL_ENV", "AppConfig", "ConfigurationError"]
