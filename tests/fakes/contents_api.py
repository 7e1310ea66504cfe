"""In-memory fake of the Git-hosted contents API for unit tests.

Supports: GET file / directory / blob, PUT with sha compare-and-swap,
DELETE with sha. Served to httpx through MockTransport.
"""

from __future__ import annotations

import base64
import hashlib
import json
from collections.abc import Callable

import httpx


def git_sha(content: bytes) -> str:
    return hashlib.sha1(b"blob %d\0" % len(content) + content).hexdigest()


class FakeContentsAPI:
    def __init__(self, repo: str = "me/data", token: str = "t0ken", inline_limit: int | None = None):
        self.repo = repo
        self.token = token
        self.inline_limit = inline_limit
        self.files: dict[str, tuple[bytes, str]] = {}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.next_shas: list[str] = []
        # Return a Response to short-circuit a request, None to handle it normally.
        self.before_request: Callable[[httpx.Request], httpx.Response | None] | None = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # ------------------------------------------------------------------
    # Direct manipulation (another device writing)
    # ------------------------------------------------------------------

    def seed(self, path: str, content: bytes | str | list, sha: str | None = None) -> str:
        if isinstance(content, list):
            content = json.dumps(content, indent=2)
        if isinstance(content, str):
            content = content.encode("utf-8")
        sha = sha or git_sha(content)
        self.files[path] = (content, sha)
        return sha

    def content(self, path: str) -> bytes:
        return self.files[path][0]

    def json(self, path: str):
        return json.loads(self.content(path))

    def sha(self, path: str) -> str:
        return self.files[path][1]

    def writes(self, method: str = "PUT") -> list[tuple[str, str, dict | None]]:
        return [r for r in self.requests if r[0] == method]

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))

        if self.before_request is not None:
            injected = self.before_request(request)
            if injected is not None:
                return injected

        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"message": "Bad credentials"})

        prefix = f"/repos/{self.repo}/"
        url_path = request.url.path
        if not url_path.startswith(prefix):
            return httpx.Response(404, json={"message": "Not Found"})
        rest = url_path[len(prefix):]

        if rest.startswith("git/blobs/"):
            return self._blob(rest[len("git/blobs/"):])
        if not rest.startswith("contents/"):
            return httpx.Response(404, json={"message": "Not Found"})
        path = rest[len("contents/"):].strip("/")

        if request.method == "GET":
            return self._get(path)
        if request.method == "PUT":
            return self._put(path, body or {})
        if request.method == "DELETE":
            return self._delete(path, body or {})
        return httpx.Response(405, json={"message": "Method Not Allowed"})

    def _new_sha(self, content: bytes) -> str:
        return self.next_shas.pop(0) if self.next_shas else git_sha(content)

    def _get(self, path: str) -> httpx.Response:
        if path in self.files:
            content, sha = self.files[path]
            payload = {
                "type": "file",
                "name": path.rsplit("/", 1)[-1],
                "path": path,
                "sha": sha,
                "size": len(content),
            }
            if self.inline_limit is not None and len(content) > self.inline_limit:
                payload.update(content="", encoding="none")
            else:
                # Real responses wrap base64 at 60 columns.
                encoded = base64.b64encode(content).decode("ascii")
                payload.update(
                    content="\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60)),
                    encoding="base64",
                )
            return httpx.Response(200, json=payload)

        children: dict[str, dict] = {}
        dir_prefix = f"{path}/" if path else ""
        for file_path, (_, sha) in self.files.items():
            if not file_path.startswith(dir_prefix):
                continue
            name, _, below = file_path[len(dir_prefix):].partition("/")
            if below:
                children.setdefault(name, {"name": name, "path": dir_prefix + name, "type": "dir", "sha": "d" * 40})
            else:
                children[name] = {"name": name, "path": file_path, "type": "file", "sha": sha}
        if children:
            return httpx.Response(200, json=[children[k] for k in sorted(children)])
        return httpx.Response(404, json={"message": "Not Found"})

    def _blob(self, sha: str) -> httpx.Response:
        for content, file_sha in self.files.values():
            if file_sha == sha:
                return httpx.Response(
                    200,
                    json={"sha": sha, "encoding": "base64", "content": base64.b64encode(content).decode("ascii")},
                )
        return httpx.Response(404, json={"message": "Not Found"})

    def _put(self, path: str, body: dict) -> httpx.Response:
        content = base64.b64decode(body.get("content", ""))
        sha = body.get("sha")
        if path in self.files:
            current = self.files[path][1]
            if not sha:
                return httpx.Response(422, json={"message": 'Invalid request.\n\n"sha" wasn\'t supplied.'})
            if sha != current:
                return httpx.Response(409, json={"message": f"{path} does not match {sha}"})
            status = 200
        else:
            if sha:
                return httpx.Response(409, json={"message": f"{path} does not match {sha}"})
            status = 201
        new_sha = self._new_sha(content)
        self.files[path] = (content, new_sha)
        return httpx.Response(status, json={"content": {"name": path.rsplit("/", 1)[-1], "path": path, "sha": new_sha}})

    def _delete(self, path: str, body: dict) -> httpx.Response:
        if path not in self.files:
            return httpx.Response(404, json={"message": "Not Found"})
        if body.get("sha") != self.files[path][1]:
            return httpx.Response(409, json={"message": f"{path} does not match {body.get('sha')}"})
        del self.files[path]
        return httpx.Response(200, json={"content": None, "commit": {"sha": "c" * 40}})
