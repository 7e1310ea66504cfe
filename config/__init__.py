"""Configuration management for gitshelf."""

from .loader import SettingsLoader, load_settings
from .providers import (
    ChainCredentialProvider,
    ConfigCredentialProvider,
    ConfigProvider,
    CredentialProvider,
    EnvCredentialProvider,
    JsonFileConfigProvider,
    MemoryConfigProvider,
)
from .schema import CollectionConfig, GitShelfSettings, RemoteConfig, RetryConfig
from .types import Credentials

__all__ = [
    "ChainCredentialProvider",
    "CollectionConfig",
    "ConfigCredentialProvider",
    "ConfigProvider",
    "CredentialProvider",
    "Credentials",
    "EnvCredentialProvider",
    "GitShelfSettings",
    "JsonFileConfigProvider",
    "MemoryConfigProvider",
    "RemoteConfig",
    "RetryConfig",
    "SettingsLoader",
    "load_settings",
]
