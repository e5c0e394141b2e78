"""Async GitHub REST client for notifications, pull requests, forks and refs."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pr_relay.exceptions import (
    FatalSchedulerError,
    FeedUnavailableError,
    GitHubAPIError,
    ReferenceExistsError,
)
from pr_relay.models import ActivityRecord, ForkDescriptor, PullRequestSnapshot

if TYPE_CHECKING:
    from pr_relay.config import GitHubSettings
    from pr_relay.models import PullRequestRef

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_API_VERSION = "2022-11-28"
_NOTIFICATIONS_PER_PAGE = 50
_BACKOFF_MAX_SECONDS = 8.0


class _ServerError(Exception):
    """5xx answer, retried before surfacing."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"GitHub returned {response.status_code}")
        self.response = response


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a GitHub ISO-8601 timestamp (``...Z``) into an aware datetime."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way the notifications endpoint expects."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _next_link(response: httpx.Response) -> str | None:
    link_header = response.headers.get("link", "")
    for link in link_header.split(","):
        if 'rel="next"' in link:
            return link.split(";")[0].strip("<> ")
    return None


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    return response.headers.get("x-ratelimit-remaining") == "0" or (
        "rate limit" in response.text.lower()
    )


def _remaining_quota(response: httpx.Response) -> int | None:
    try:
        return int(response.headers["x-ratelimit-remaining"])
    except (KeyError, ValueError):
        return None


class GitHubClient:
    """Thin async wrapper over the endpoints the relay needs.

    Transport errors and 5xx answers are retried with exponential backoff;
    every other status is handed back to the calling method, which decides
    what it means for its endpoint.
    """

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: float = 10.0,
        retries: int = 3,
        backoff_seconds: float = 0.5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._retries = retries
        self._backoff_seconds = backoff_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": _API_VERSION,
        }

    @classmethod
    def from_settings(cls, settings: GitHubSettings) -> GitHubClient:
        token = settings.token.get_secret_value() if settings.token else ""
        return cls(
            token=token,
            api_url=settings.api_url,
            timeout=settings.timeout,
            retries=settings.retries,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        if not url.startswith("http"):
            url = f"{self._api_url}{url}"

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(
                multiplier=self._backoff_seconds, max=_BACKOFF_MAX_SECONDS
            ),
            retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._client.request(
                        method, url, headers=self._headers, params=params, json=json
                    )
                    if response.status_code >= 500:
                        raise _ServerError(response)
        except _ServerError as exc:
            return exc.response

        remaining = _remaining_quota(response)
        if remaining is not None and remaining < 100:
            logger.warning(
                "github_rate_limit_low",
                remaining=remaining,
                reset=response.headers.get("x-ratelimit-reset"),
            )
        return response

    @staticmethod
    def _error(response: httpx.Response, action: str) -> GitHubAPIError:
        try:
            detail = response.json().get("message", "")
        except (ValueError, AttributeError):
            detail = response.text[:200]
        return GitHubAPIError(
            f"{action} failed ({response.status_code}): {detail}",
            status_code=response.status_code,
        )

    # ------------------------------------------------------------------
    # Activity feed
    # ------------------------------------------------------------------

    async def list_activity(
        self, since: datetime, before: datetime
    ) -> list[ActivityRecord]:
        """List every notification updated in ``[since, before)``.

        Raises:
            FatalSchedulerError: If GitHub rejects the credentials.
            FeedUnavailableError: If the feed is temporarily unreachable or
                answers with a page that cannot be decoded.
        """
        url: str | None = "/notifications"
        params: dict[str, Any] | None = {
            "all": "true",
            "since": format_timestamp(since),
            "before": format_timestamp(before),
            "per_page": _NOTIFICATIONS_PER_PAGE,
        }
        records: list[ActivityRecord] = []

        while url:
            try:
                response = await self._request("GET", url, params=params)
            except httpx.HTTPError as exc:
                raise FeedUnavailableError(f"Notification feed unreachable: {exc}") from exc

            if response.status_code == 304:
                break
            if _is_rate_limited(response):
                raise FeedUnavailableError("Notification feed rate limited")
            if response.status_code in (401, 403):
                raise FatalSchedulerError(
                    f"Notification feed rejected credentials ({response.status_code})"
                )
            if response.status_code != 200:
                raise FeedUnavailableError(str(self._error(response, "List notifications")))

            try:
                payload = response.json()
                if not isinstance(payload, list):
                    raise TypeError(f"expected a list, got {type(payload).__name__}")
                records.extend(
                    self._parse_notification(item)
                    for item in payload
                    if isinstance(item, dict)
                )
            except (ValueError, TypeError, AttributeError) as exc:
                raise FeedUnavailableError(
                    f"Notification feed returned an unreadable page: {exc}"
                ) from exc

            url = _next_link(response)
            params = None

        return records

    @staticmethod
    def _parse_notification(item: dict[str, Any]) -> ActivityRecord:
        subject = item.get("subject") or {}
        repository = item.get("repository") or {}
        updated_at = parse_timestamp(item.get("updated_at")) or datetime.now(UTC)
        return ActivityRecord(
            id=str(item.get("id", "")),
            reference_url=subject.get("latest_comment_url") or subject.get("url"),
            updated_at=updated_at,
            subject_type=subject.get("type"),
            subject_title=subject.get("title"),
            repository_full_name=repository.get("full_name"),
            subject_url=subject.get("url"),
        )

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    async def get_pull_request(self, ref: PullRequestRef) -> PullRequestSnapshot:
        response = await self._request(
            "GET", f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.number}"
        )
        if response.status_code != 200:
            raise self._error(response, f"Get pull request {ref}")

        data = response.json()
        return PullRequestSnapshot(
            merged=bool(data.get("merged")),
            closed_at=parse_timestamp(data.get("closed_at")),
        )

    # ------------------------------------------------------------------
    # Forks and refs
    # ------------------------------------------------------------------

    async def create_fork(self, owner: str, repo: str) -> ForkDescriptor:
        """Request a fork for the authenticated user.

        GitHub answers with the existing fork when the user already has
        one, so repeated calls return the same descriptor.
        """
        response = await self._request("POST", f"/repos/{owner}/{repo}/forks", json={})
        if response.status_code not in (200, 202):
            raise self._error(response, f"Fork {owner}/{repo}")

        data = response.json()
        return ForkDescriptor(
            full_name=str(data["full_name"]),
            clone_url=str(data.get("clone_url", "")),
            html_url=str(data.get("html_url", "")),
            default_branch=str(data.get("default_branch") or "main"),
        )

    async def is_fork_ready(self, fork: ForkDescriptor) -> bool:
        """Return True once the fork's default branch can be read."""
        response = await self._request(
            "GET", f"/repos/{fork.full_name}/branches/{fork.default_branch}"
        )
        if response.status_code == 200:
            return True
        if response.status_code in (404, 409):
            return False
        raise self._error(response, f"Check fork {fork.full_name}")

    async def get_branch_sha(self, full_name: str, branch: str) -> str | None:
        """Return the commit a branch points at, or None if it does not exist."""
        response = await self._request(
            "GET", f"/repos/{full_name}/git/ref/heads/{branch}"
        )
        if response.status_code in (404, 409):
            return None
        if response.status_code != 200:
            raise self._error(response, f"Read branch {full_name}:{branch}")
        return str(response.json()["object"]["sha"])

    async def create_branch(self, full_name: str, branch: str, sha: str) -> None:
        """Create ``refs/heads/<branch>`` at ``sha``; never updates an existing ref.

        Raises:
            ReferenceExistsError: If the branch already exists.
        """
        response = await self._request(
            "POST",
            f"/repos/{full_name}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        if response.status_code == 422:
            raise ReferenceExistsError(
                f"Branch {branch} already exists in {full_name}", status_code=422
            )
        if response.status_code != 201:
            raise self._error(response, f"Create branch {full_name}:{branch}")

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def get_authenticated_login(self) -> str:
        response = await self._request("GET", "/user")
        if response.status_code != 200:
            raise self._error(response, "Get authenticated user")
        return str(response.json()["login"])
