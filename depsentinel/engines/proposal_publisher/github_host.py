"""GitHub implementation of :class:`VcsHost` over the REST API.

Branch writes go through the git data API: blobs, a tree and a commit are
created first (unreachable until referenced), then the branch ref is created
or moved in a single call. An interrupted write therefore never leaves a
half-written branch behind.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import re
import time
from collections.abc import AsyncGenerator
from typing import Any
from urllib.parse import quote, urlsplit

import httpx
import structlog

from depsentinel.engines.proposal_publisher.vcs import (
    BranchWrite,
    GitAuthor,
    Proposal,
    ProposalState,
)
from depsentinel.errors import PublishError, TransientNetworkError

log = structlog.get_logger("depsentinel.engine")

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds
_MAX_RATE_LIMIT_WAIT = 300  # seconds
_IDEMPOTENT = frozenset({"GET", "PATCH", "PUT", "DELETE"})


def git_blob_sha(content: str) -> str:
    """SHA-1 git assigns to a blob holding *content*."""
    data = content.encode()
    return hashlib.sha1(b"blob %d\0" % len(data) + data).hexdigest()


class GitHubHost:
    """Thin async wrapper around the GitHub REST API for branches and pull requests."""

    def __init__(
        self,
        token: str | None = None,
        endpoint: str = "https://api.github.com",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._endpoint = endpoint.rstrip("/")
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"token {token}"
        self._client = client or httpx.AsyncClient(
            base_url=self._endpoint,
            headers=headers,
            timeout=30.0,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubHost:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── repository ─────────────────────────────────────────────────────────

    async def get_default_branch(self, repository: str) -> str:
        data = await self._json("GET", f"/repos/{repository}")
        return data["default_branch"]

    def clone_url(self, repository: str) -> str:
        """HTTPS clone URL, with the token embedded when one is configured."""
        parts = urlsplit(self._endpoint)
        host = parts.hostname or "github.com"
        if host == "api.github.com":
            host = "github.com"
        if self._token:
            return f"https://x-access-token:{self._token}@{host}/{repository}.git"
        return f"https://{host}/{repository}.git"

    async def get_file(self, repository: str, path: str, ref: str) -> str | None:
        """Decoded file content at *ref*, or None when the file does not exist."""
        resp = await self._request(
            "GET", f"/repos/{repository}/contents/{quote(path)}", params={"ref": ref}, allow=(404,)
        )
        if resp.status_code == 404:
            return None
        data = resp.json()
        if isinstance(data, list):
            return None  # a directory
        return base64.b64decode(data.get("content", "")).decode()

    # ── branches ───────────────────────────────────────────────────────────

    async def create_or_update_branch(
        self,
        repository: str,
        branch: str,
        base_branch: str,
        files: dict[str, str],
        message: str,
        author: GitAuthor,
    ) -> BranchWrite:
        """Point *branch* at one commit on top of *base_branch* holding *files*.

        When the branch already sits directly on the base head and its tree is
        the base tree with exactly *files* applied, nothing is written.
        """
        base_sha = await self._ref_sha(repository, base_branch)
        if base_sha is None:
            raise PublishError(f"base branch {base_branch!r} not found in {repository}")
        head_sha = await self._ref_sha(repository, branch)
        base_commit = await self._json("GET", f"/repos/{repository}/git/commits/{base_sha}")

        if head_sha is not None and await self._branch_up_to_date(
            repository, head_sha, base_sha, base_commit["tree"]["sha"], files
        ):
            log.info("github.branch_unchanged", repository=repository, branch=branch)
            return BranchWrite(branch=branch, commit_sha=head_sha, changed=False)

        tree_entries = []
        for path in sorted(files):
            blob = await self._json(
                "POST",
                f"/repos/{repository}/git/blobs",
                json={"content": files[path], "encoding": "utf-8"},
            )
            tree_entries.append(
                {"path": path, "mode": "100644", "type": "blob", "sha": blob["sha"]}
            )
        tree = await self._json(
            "POST",
            f"/repos/{repository}/git/trees",
            json={"base_tree": base_commit["tree"]["sha"], "tree": tree_entries},
        )
        commit = await self._json(
            "POST",
            f"/repos/{repository}/git/commits",
            json={
                "message": message,
                "tree": tree["sha"],
                "parents": [base_sha],
                "author": {"name": author.name, "email": author.email},
            },
        )

        # The single call that makes the new commit visible.
        if head_sha is None:
            await self._json(
                "POST",
                f"/repos/{repository}/git/refs",
                json={"ref": f"refs/heads/{branch}", "sha": commit["sha"]},
            )
        else:
            await self._json(
                "PATCH",
                f"/repos/{repository}/git/refs/heads/{quote(branch)}",
                json={"sha": commit["sha"], "force": True},
            )
        log.info(
            "github.branch_written",
            repository=repository,
            branch=branch,
            commit=commit["sha"][:12],
            created=head_sha is None,
        )
        return BranchWrite(branch=branch, commit_sha=commit["sha"], changed=True)

    # ── proposals ──────────────────────────────────────────────────────────

    async def create_or_update_proposal(
        self,
        repository: str,
        branch: str,
        base_branch: str,
        title: str,
        body: str,
        labels: list[str],
    ) -> Proposal:
        """Open a pull request for *branch*, or refresh the one already open."""
        existing = await self._open_pull_for(repository, branch)
        if existing is not None:
            data = await self._json(
                "PATCH",
                f"/repos/{repository}/pulls/{existing['number']}",
                json={"title": title, "body": body},
            )
        else:
            data = await self._json(
                "POST",
                f"/repos/{repository}/pulls",
                json={"title": title, "head": branch, "base": base_branch, "body": body},
            )
            if labels:
                await self._json(
                    "POST",
                    f"/repos/{repository}/issues/{data['number']}/labels",
                    json={"labels": labels},
                )
        return self._to_proposal(data)

    async def list_open_proposals(self, repository: str) -> list[Proposal]:
        return [
            self._to_proposal(item)
            async for item in self._paginated(
                f"/repos/{repository}/pulls", {"state": "open"}
            )
        ]

    async def find_proposal(self, repository: str, branch: str) -> Proposal | None:
        """Most relevant pull request for *branch* in any state (open first)."""
        pulls = [
            item
            async for item in self._paginated(
                f"/repos/{repository}/pulls",
                {"state": "all", "head": f"{repository.split('/')[0]}:{branch}"},
                max_pages=2,
            )
        ]
        if not pulls:
            return None
        pulls.sort(key=lambda p: (p.get("state") == "open", p.get("number", 0)), reverse=True)
        return self._to_proposal(pulls[0])

    # ── internal ───────────────────────────────────────────────────────────

    async def _ref_sha(self, repository: str, branch: str) -> str | None:
        resp = await self._request(
            "GET", f"/repos/{repository}/git/ref/heads/{quote(branch)}", allow=(404,)
        )
        if resp.status_code == 404:
            return None
        return resp.json()["object"]["sha"]

    async def _branch_up_to_date(
        self,
        repository: str,
        head_sha: str,
        base_sha: str,
        base_tree_sha: str,
        files: dict[str, str],
    ) -> bool:
        head = await self._json("GET", f"/repos/{repository}/git/commits/{head_sha}")
        parents = [p["sha"] for p in head.get("parents", [])]
        if parents != [base_sha]:
            return False
        head_blobs = await self._tree_blobs(repository, head["tree"]["sha"])
        expected = await self._tree_blobs(repository, base_tree_sha)
        expected.update((path, git_blob_sha(content)) for path, content in files.items())
        # Any other path differing from base is a leftover edit.
        return head_blobs == expected

    async def _tree_blobs(self, repository: str, tree_sha: str) -> dict[str, str]:
        tree = await self._json(
            "GET", f"/repos/{repository}/git/trees/{tree_sha}", params={"recursive": "1"}
        )
        return {e["path"]: e["sha"] for e in tree.get("tree", []) if e.get("type") == "blob"}

    async def _open_pull_for(self, repository: str, branch: str) -> dict[str, Any] | None:
        owner = repository.split("/")[0]
        async for item in self._paginated(
            f"/repos/{repository}/pulls",
            {"state": "open", "head": f"{owner}:{branch}"},
            max_pages=1,
        ):
            return item
        return None

    @staticmethod
    def _to_proposal(data: dict[str, Any]) -> Proposal:
        if data.get("merged_at") or data.get("merged"):
            state = ProposalState.MERGED
        elif data.get("state") == "closed":
            state = ProposalState.CLOSED
        else:
            state = ProposalState.OPEN
        return Proposal(
            number=data["number"],
            branch=(data.get("head") or {}).get("ref", ""),
            title=data.get("title", ""),
            url=data.get("html_url", ""),
            state=state,
            body=data.get("body") or "",
        )

    async def _paginated(
        self, path: str, params: dict[str, Any] | None = None, *, max_pages: int = 10
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield items of a paginated list endpoint, following ``Link`` headers."""
        url: str | None = path
        params = dict(params or {})
        params.setdefault("per_page", 100)
        page = 0
        while url and page < max_pages:
            resp = await self._request("GET", url, params=params if page == 0 else None)
            for item in resp.json():
                yield item
            url = self._parse_next_link(resp.headers.get("Link", ""))
            page += 1

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._request(method, path, **kwargs)
        return resp.json()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        allow: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """Request with exponential backoff on 5xx, rate limits and timeouts.

        Non-idempotent calls (POST) are attempted once, except when GitHub
        refuses them for rate limiting before doing any work. Status codes in
        *allow* are returned instead of raised.
        """
        idempotent = method in _IDEMPOTENT
        last_error = "no attempt made"
        for attempt in range(_MAX_RETRIES):
            final = attempt == _MAX_RETRIES - 1
            try:
                resp = await self._client.request(method, url, **kwargs)

                if resp.status_code in (403, 429) and self._is_rate_limited(resp):
                    wait = self._get_rate_limit_wait(resp)
                    log.warning(
                        "github.rate_limit",
                        url=url,
                        wait_seconds=wait,
                        attempt=attempt + 1,
                        max_retries=_MAX_RETRIES,
                    )
                    last_error = "rate limited"
                    if final:
                        break
                    await asyncio.sleep(wait)
                    continue

                if resp.status_code < 500:
                    if resp.status_code not in allow:
                        resp.raise_for_status()
                    return resp

                log.warning(
                    "github.server_error",
                    method=method,
                    url=url,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_error = f"HTTP {resp.status_code}"
            except httpx.TimeoutException:
                log.warning(
                    "github.timeout",
                    method=method,
                    url=url,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_error = "timeout"

            if final or not idempotent:
                break
            await asyncio.sleep(_RETRY_BASE_DELAY * (2**attempt))

        raise TransientNetworkError(
            f"{method} {url} failed after {attempt + 1} attempt(s): {last_error}"
        )

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            try:
                return int(remaining) == 0
            except (ValueError, TypeError):
                pass
        # Secondary rate limits only send Retry-After.
        return "Retry-After" in response.headers

    @staticmethod
    def _get_rate_limit_wait(response: httpx.Response) -> int:
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return min(max(int(retry_after), 1), _MAX_RATE_LIMIT_WAIT)
            except (ValueError, TypeError):
                pass
        reset_ts = response.headers.get("X-RateLimit-Reset")
        if reset_ts is not None:
            try:
                return min(max(int(reset_ts) - int(time.time()), 1), _MAX_RATE_LIMIT_WAIT)
            except (ValueError, TypeError):
                pass
        return 60

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        match = _NEXT_LINK_RE.search(link_header)
        return match.group(1) if match else None
