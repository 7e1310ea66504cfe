"""
ConfigProvider / CredentialProvider - injected capabilities for small persisted state.

ConfigProvider is a key-value store of short strings (credentials, dirty
flags, shard snapshots, runtime toggles). CredentialProvider resolves the
bearer token and repository used by the content store.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from config.types import Credentials
from storage.errors import AuthError

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}


class ConfigProvider(ABC):
    """Abstract key-value store of small strings.

    Implementations: MemoryConfigProvider (tests, ephemeral),
    JsonFileConfigProvider (single JSON object on disk).
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with prefix."""

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return value.strip().lower() in _TRUE

    def get_float(self, key: str, default: float) -> float:
        value = self.get(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning("Ignoring non-numeric value for %s: %r", key, value)
            return default


class MemoryConfigProvider(ConfigProvider):
    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileConfigProvider(ConfigProvider):
    """Key-value state persisted as one JSON object; rewritten on every change."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self._data = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: expected a JSON object", self.path)
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, sort_keys=True)
        tmp.replace(self.path)

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._data.get(key) == value:
            return
        self._data[key] = value
        self._save()

    def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._save()

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class CredentialProvider(ABC):
    """Resolves credentials for the remote store."""

    @abstractmethod
    def get_credentials(self) -> Credentials:
        """Return credentials or raise AuthError when none are configured."""


class ConfigCredentialProvider(CredentialProvider):
    """Reads ``<namespace>_token`` and ``<namespace>_repo`` from a ConfigProvider."""

    def __init__(self, config: ConfigProvider, namespace: str = "gitshelf"):
        self._config = config
        self.namespace = namespace

    def get_credentials(self) -> Credentials:
        token = self._config.get(f"{self.namespace}_token")
        repo = self._config.get(f"{self.namespace}_repo")
        if not token or not repo:
            raise AuthError(f"Missing credentials: set {self.namespace}_token and {self.namespace}_repo")
        try:
            return Credentials(token=token, repo=repo)
        except ValidationError as e:
            raise AuthError(f"Invalid credentials for {self.namespace}: {e.errors()[0]['msg']}") from e

    def store(self, token: str, repo: str) -> None:
        creds = Credentials(token=token, repo=repo)
        self._config.set(f"{self.namespace}_token", creds.token)
        self._config.set(f"{self.namespace}_repo", creds.repo)


class EnvCredentialProvider(CredentialProvider):
    def __init__(self, token_var: str = "GITSHELF_TOKEN", repo_var: str = "GITSHELF_REPO"):
        self.token_var = token_var
        self.repo_var = repo_var

    def get_credentials(self) -> Credentials:
        token = os.getenv(self.token_var)
        repo = os.getenv(self.repo_var)
        if not token or not repo:
            raise AuthError(f"Missing credentials: set {self.token_var} and {self.repo_var}")
        try:
            return Credentials(token=token, repo=repo)
        except ValidationError as e:
            raise AuthError(f"Invalid credentials in environment: {e.errors()[0]['msg']}") from e


class ChainCredentialProvider(CredentialProvider):
    """First provider that yields credentials wins."""

    def __init__(self, *providers: CredentialProvider):
        self._providers = providers

    def get_credentials(self) -> Credentials:
        errors = []
        for provider in self._providers:
            try:
                return provider.get_credentials()
            except AuthError as e:
                errors.append(str(e))
        raise AuthError("; ".join(errors) or "No credential providers configured")
