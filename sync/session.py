"""SessionContext - the capabilities shared by store, collections and coordinators."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from config.providers import (
    ChainCredentialProvider,
    ConfigCredentialProvider,
    ConfigProvider,
    CredentialProvider,
    EnvCredentialProvider,
    JsonFileConfigProvider,
)
from config.schema import GitShelfSettings


def _local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class SessionContext:
    settings: GitShelfSettings
    config: ConfigProvider
    credentials: CredentialProvider
    clock: Callable[[], datetime] = field(default=_local_now)

    def today(self) -> str:
        """Current local calendar date as YYYY-MM-DD."""
        return self.clock().strftime("%Y-%m-%d")

    @classmethod
    def from_settings(cls, settings: GitShelfSettings, namespace: str = "gitshelf") -> SessionContext:
        """Build a session backed by the on-disk state file.

        Credentials come from the state file (``<namespace>_token`` /
        ``<namespace>_repo``), falling back to GITSHELF_TOKEN / GITSHELF_REPO.
        """
        config = JsonFileConfigProvider(settings.state_file)
        credentials = ChainCredentialProvider(
            ConfigCredentialProvider(config, namespace),
            EnvCredentialProvider(),
        )
        return cls(settings=settings, config=config, credentials=credentials)
