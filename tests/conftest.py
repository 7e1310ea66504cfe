"""Pytest configuration for gitshelf tests.

Ensures the project root is in sys.path so imports work correctly, and
provides a session wired to the in-memory contents API.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to sys.path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from config.providers import ConfigCredentialProvider, MemoryConfigProvider  # noqa: E402
from config.schema import GitShelfSettings  # noqa: E402
from storage.content_store import GitHubContentStore  # noqa: E402
from sync.session import SessionContext  # noqa: E402
from tests.fakes.contents_api import FakeContentsAPI  # noqa: E402

FIXED_NOW = datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def api() -> FakeContentsAPI:
    return FakeContentsAPI()


@pytest.fixture
def make_session(api):
    def _make(collections: dict | None = None, **settings) -> SessionContext:
        config = MemoryConfigProvider({"gitshelf_token": api.token, "gitshelf_repo": api.repo})
        return SessionContext(
            settings=GitShelfSettings(
                collections=collections or {},
                retry=settings.pop("retry", {"max_retries": 3, "backoff_base": 0.2}),
                **settings,
            ),
            config=config,
            credentials=ConfigCredentialProvider(config),
            clock=lambda: FIXED_NOW,
        )

    return _make


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_store(api, sleeps):
    async def _no_sleep(delay: float) -> None:
        sleeps.append(delay)

    def _make(session: SessionContext) -> GitHubContentStore:
        return GitHubContentStore(session, transport=api.transport, sleep=_no_sleep)

    return _make
