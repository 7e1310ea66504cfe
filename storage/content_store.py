"""
ContentStore - revision-checked read/write of opaque blobs at logical paths.

GitHubContentStore talks to a Git-hosted "contents" REST API over httpx.
It is the only component that performs network I/O against the remote
store, and it caches nothing across calls.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import httpx

from storage.errors import AuthError, NetworkError, StoreError
from storage.models import DirectoryListing, DirEntry, FailureReason, FileContent, WriteResult

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "sync: update {path}"

# Called after a conflict re-read; returns the bytes to resubmit.
Rebase = Callable[[FileContent | None], bytes]
Sleep = Callable[[float], Awaitable[Any]]

ReadResult = FileContent | DirectoryListing | None


class ContentStore(ABC):
    """Abstract interface for a path-addressed, revision-tagged remote store.

    Implementations: GitHubContentStore (HTTP contents API).
    """

    @abstractmethod
    async def read(self, path: str) -> ReadResult:
        """Fetch a file or directory listing. Returns None when the path is absent."""

    @abstractmethod
    async def write(
        self,
        path: str,
        content: bytes,
        revision: str | None,
        *,
        message: str | None = None,
        rebase: Rebase | None = None,
    ) -> WriteResult:
        """Compare-and-swap write. ``revision=None`` only for first creation."""

    @abstractmethod
    async def delete(self, path: str, revision: str, *, message: str | None = None) -> WriteResult:
        """Compare-and-swap delete."""

    async def aclose(self) -> None:
        """Release resources (HTTP clients, etc.)."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class GitHubContentStore(ContentStore):
    def __init__(
        self,
        session,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep | None = None,
    ):
        remote = session.settings.remote
        retry = session.settings.retry
        self._session = session
        self._url = remote.base_url.rstrip("/")
        self._branch = remote.branch
        self._timeout = remote.timeout
        self._max_retries = retry.max_retries
        self._backoff_base = retry.backoff_base
        self._transport = transport
        self._sleep: Sleep = sleep or asyncio.sleep
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"Accept": "application/vnd.github.v3+json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read(self, path: str) -> ReadResult:
        creds = self._session.credentials.get_credentials()
        params = {"ref": self._branch} if self._branch else None
        r = await self._request("GET", self._contents_url(creds.repo, path), creds.token, path, params=params)
        if r.status_code == 404:
            logger.debug("read %s: not found", path)
            return None
        self._raise_for_status(r, path)

        data = self._json(r, path)
        if isinstance(data, list):
            logger.debug("read %s: directory listing (%d entries)", path, len(data))
            return DirectoryListing(
                path=path,
                entries=[
                    DirEntry(
                        name=item.get("name", ""),
                        path=item.get("path", ""),
                        type=item.get("type", "file"),
                        revision=item.get("sha"),
                    )
                    for item in data
                    if isinstance(item, dict)
                ],
            )
        if not isinstance(data, dict) or "sha" not in data:
            raise StoreError(f"Unexpected contents response for {path}", status=r.status_code, path=path)

        sha = data["sha"]
        if data.get("content") and data.get("encoding") == "base64":
            return FileContent(path=path, content=self._decode(data["content"], path), revision=sha)

        # @@@blob-fallback - large files come back without inline content; fetch the blob by sha.
        blob = await self._request("GET", f"/repos/{creds.repo}/git/blobs/{sha}", creds.token, path)
        self._raise_for_status(blob, path)
        blob_data = self._json(blob, path)
        return FileContent(path=path, content=self._decode(blob_data.get("content", ""), path), revision=sha)

    # ------------------------------------------------------------------
    # Write / delete
    # ------------------------------------------------------------------

    async def write(
        self,
        path: str,
        content: bytes,
        revision: str | None,
        *,
        message: str | None = None,
        rebase: Rebase | None = None,
    ) -> WriteResult:
        return await self._submit("PUT", path, content, revision, message=message, rebase=rebase)

    async def delete(self, path: str, revision: str, *, message: str | None = None) -> WriteResult:
        return await self._submit("DELETE", path, None, revision, message=message)

    async def _submit(
        self,
        method: str,
        path: str,
        content: bytes | None,
        revision: str | None,
        *,
        message: str | None,
        rebase: Rebase | None = None,
    ) -> WriteResult:
        try:
            creds = self._session.credentials.get_credentials()
        except AuthError as e:
            logger.error("%s %s: %s", method, path, e)
            return WriteResult.failure(FailureReason.AUTH, detail=str(e))

        url = self._contents_url(creds.repo, path)
        commit_message = message or DEFAULT_MESSAGE.format(path=path)
        precondition_retried = False
        attempt = 0
        last_status: int | None = None
        last_detail = ""

        # One initial attempt plus at most max_retries retries.
        while attempt <= self._max_retries:
            if attempt > 0:
                delay = self._backoff_base * (2 ** (attempt - 1))
                logger.debug("%s %s: retry %d after %.3fs", method, path, attempt, delay)
                await self._sleep(delay)
            attempt += 1

            body: dict[str, Any] = {"message": commit_message}
            if content is not None:
                body["content"] = base64.b64encode(content).decode("ascii")
            if revision:
                body["sha"] = revision
            if self._branch:
                body["branch"] = self._branch

            try:
                r = await self._request(method, url, creds.token, path, json=body)
            except NetworkError as e:
                return WriteResult.failure(FailureReason.NETWORK, attempts=attempt, detail=str(e))

            last_status = r.status_code
            if r.is_success:
                new_revision = None
                if method == "PUT":
                    new_revision = self._json(r, path).get("content", {}).get("sha")
                logger.debug("%s %s: ok (%d), revision %s", method, path, r.status_code, new_revision)
                return WriteResult.success(new_revision, status=r.status_code, attempts=attempt)
            if method == "DELETE" and r.status_code == 404:
                return WriteResult.success(None, status=404, attempts=attempt)
            if r.status_code in (401, 403):
                logger.error("%s %s: credential rejected (%d)", method, path, r.status_code)
                return WriteResult.failure(FailureReason.AUTH, status=r.status_code, attempts=attempt)

            last_detail = self._error_message(r)
            missing_sha = r.status_code == 422 and "sha" in last_detail and not revision
            if r.status_code != 409 and not missing_sha:
                logger.error("%s %s: rejected (%d) %s", method, path, r.status_code, last_detail[:200])
                return WriteResult.failure(
                    FailureReason.REJECTED, status=r.status_code, attempts=attempt, detail=last_detail
                )
            if missing_sha:
                if precondition_retried:
                    break
                precondition_retried = True

            # @@@conflict-reread - refresh the revision, rebuild with the caller's latest content, resubmit.
            logger.warning("%s %s: %d with revision %s, re-reading", method, path, r.status_code, revision)
            try:
                latest = await self.read(path)
            except StoreError as e:
                logger.error("%s %s: re-read after conflict failed: %s", method, path, e)
                reason = FailureReason.AUTH if isinstance(e, AuthError) else FailureReason.NETWORK
                return WriteResult.failure(reason, status=e.status, attempts=attempt, detail=str(e))
            if isinstance(latest, DirectoryListing):
                return WriteResult.failure(
                    FailureReason.REJECTED, status=r.status_code, attempts=attempt, detail=f"{path} is a directory"
                )
            if latest is None and method == "DELETE":
                return WriteResult.success(None, status=404, attempts=attempt)
            revision = latest.revision if latest else None
            if rebase is not None and content is not None:
                content = rebase(latest)

        logger.error("%s %s: conflict unresolved after %d attempts", method, path, attempt)
        return WriteResult.failure(FailureReason.CONFLICT, status=last_status, attempts=attempt, detail=last_detail)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _contents_url(repo: str, path: str) -> str:
        return f"/repos/{repo}/contents/{quote(path.strip('/'), safe='/')}"

    async def _request(self, method: str, url: str, token: str, path: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"}
        try:
            return await self.client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out after {self._timeout}s", path=path) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}", path=path) from e

    @staticmethod
    def _raise_for_status(r: httpx.Response, path: str) -> None:
        if r.status_code in (401, 403):
            raise AuthError(f"Credential rejected for {path}", status=r.status_code, path=path)
        if not r.is_success:
            raise StoreError(f"HTTP {r.status_code} for {path}", status=r.status_code, path=path)

    @staticmethod
    def _json(r: httpx.Response, path: str) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise StoreError(f"Undecodable response body for {path}", status=r.status_code, path=path) from e

    @staticmethod
    def _decode(encoded: str, path: str) -> bytes:
        try:
            return base64.b64decode(encoded)
        except ValueError as e:
            raise StoreError(f"Invalid base64 content for {path}", path=path) from e

    @staticmethod
    def _error_message(r: httpx.Response) -> str:
        try:
            data = r.json()
        except ValueError:
            return r.text
        if isinstance(data, dict):
            return str(data.get("message", ""))
        return str(data)
