"""Fork-and-branch setup run after a pull request merges.

The workflow forks the merged repository into the automation account,
waits for GitHub to finish materialising the fork, reads the fork's head
commit and anchors a fixed-name branch there. Every step is safe to
repeat: GitHub hands back the existing fork, and an existing branch is
never moved.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_delay,
    wait_exponential,
)

from pr_relay.exceptions import (
    BranchConflictError,
    CloneError,
    ForkCreationError,
    ForkNotReadyError,
    ForkReadinessTimeoutError,
    GitHubAPIError,
    ReferenceExistsError,
    SetupError,
)
from pr_relay.models import SetupOutcome, SetupResult

if TYPE_CHECKING:
    from pr_relay.config import SetupSettings
    from pr_relay.models import ForkDescriptor

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

DEFAULT_BRANCH_NAME = "automation-setup"


class ForkAPI(Protocol):
    async def create_fork(self, owner: str, repo: str) -> ForkDescriptor: ...

    async def is_fork_ready(self, fork: ForkDescriptor) -> bool: ...

    async def get_branch_sha(self, full_name: str, branch: str) -> str | None: ...

    async def create_branch(self, full_name: str, branch: str, sha: str) -> None: ...


class HeadResolver(Protocol):
    async def resolve_head(self, clone_url: str) -> str: ...


class AutoSetupWorkflow:
    """Fork a repository and anchor the setup branch at the fork's head."""

    def __init__(
        self,
        api: ForkAPI,
        remote: HeadResolver,
        branch_name: str = DEFAULT_BRANCH_NAME,
        readiness_timeout: float = 60.0,
        initial_backoff: float = 1.0,
        max_backoff: float = 10.0,
    ) -> None:
        self._api = api
        self._remote = remote
        self.branch_name = branch_name
        self._readiness_timeout = readiness_timeout
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff

    @classmethod
    def from_settings(
        cls, settings: SetupSettings, api: ForkAPI, remote: HeadResolver
    ) -> AutoSetupWorkflow:
        return cls(
            api=api,
            remote=remote,
            branch_name=settings.branch_name,
            readiness_timeout=settings.readiness_timeout_seconds,
            initial_backoff=settings.readiness_initial_backoff_seconds,
            max_backoff=settings.readiness_max_backoff_seconds,
        )

    async def run(
        self, owner: str, repo: str, fork: ForkDescriptor | None = None
    ) -> SetupResult:
        """Run every step for ``owner/repo``.

        Args:
            owner: Owner of the merged repository.
            repo: Name of the merged repository.
            fork: The fork if :meth:`fork` was already called for this merge.

        Raises:
            SetupError: A subclass naming the step that failed.
        """
        log = logger.bind(repository=f"{owner}/{repo}", branch=self.branch_name)

        if fork is None:
            fork = await self.fork(owner, repo)
            log.info("fork_requested", fork=fork.full_name)

        await self.wait_until_ready(fork)
        log.debug("fork_ready", fork=fork.full_name)

        head_sha = await self.resolve_head(fork)
        outcome = await self.ensure_branch(fork, head_sha)
        log.info(
            "setup_branch_ready",
            fork=fork.full_name,
            sha=head_sha,
            outcome=outcome.value,
        )
        return SetupResult(
            fork=fork, branch=self.branch_name, head_sha=head_sha, outcome=outcome
        )

    async def fork(self, owner: str, repo: str) -> ForkDescriptor:
        """Request the fork; GitHub may name it differently from ``repo``."""
        try:
            return await self._api.create_fork(owner, repo)
        except (GitHubAPIError, httpx.HTTPError, KeyError, ValueError) as exc:
            raise ForkCreationError(f"Could not fork {owner}/{repo}: {exc}") from exc

    async def _check_ready(self, fork: ForkDescriptor) -> None:
        try:
            ready = await self._api.is_fork_ready(fork)
        except (GitHubAPIError, httpx.HTTPError) as exc:
            raise SetupError(f"Could not check fork {fork.full_name}: {exc}") from exc
        if not ready:
            raise ForkNotReadyError(f"Fork {fork.full_name} is still being created")

    async def wait_until_ready(self, fork: ForkDescriptor) -> None:
        """Poll the fork with exponential backoff until it can be cloned.

        Raises:
            ForkReadinessTimeoutError: If the fork is not ready within the
                configured timeout.
        """
        retrying = AsyncRetrying(
            stop=stop_after_delay(self._readiness_timeout),
            wait=wait_exponential(multiplier=self._initial_backoff, max=self._max_backoff),
            retry=retry_if_exception_type(ForkNotReadyError),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._check_ready(fork)
        except RetryError as exc:
            raise ForkReadinessTimeoutError(
                f"Fork {fork.full_name} not ready after "
                f"{self._readiness_timeout:g}s "
                f"({exc.last_attempt.attempt_number} checks)"
            ) from exc

    async def resolve_head(self, fork: ForkDescriptor) -> str:
        if not fork.clone_url:
            raise CloneError(f"Fork {fork.full_name} has no clone URL")
        return await self._remote.resolve_head(fork.clone_url)

    async def ensure_branch(self, fork: ForkDescriptor, head_sha: str) -> SetupOutcome:
        """Create the setup branch at ``head_sha`` unless it already exists.

        Raises:
            BranchConflictError: If the branch exists at another commit.
        """
        existing = await self._read_branch(fork)
        if existing is None:
            try:
                await self._api.create_branch(fork.full_name, self.branch_name, head_sha)
            except ReferenceExistsError:
                # Created between our read and write
                existing = await self._read_branch(fork)
                if existing is None:
                    raise SetupError(
                        f"GitHub rejected {self.branch_name} in {fork.full_name} "
                        "but the branch cannot be read back"
                    ) from None
            except (GitHubAPIError, httpx.HTTPError) as exc:
                raise SetupError(
                    f"Could not create {self.branch_name} in {fork.full_name}: {exc}"
                ) from exc
            else:
                return SetupOutcome.CREATED

        if existing == head_sha:
            return SetupOutcome.ALREADY_PRESENT
        raise BranchConflictError(
            f"Branch {self.branch_name} in {fork.full_name} points at "
            f"{existing}, not {head_sha}; leaving it untouched"
        )

    async def _read_branch(self, fork: ForkDescriptor) -> str | None:
        try:
            return await self._api.get_branch_sha(fork.full_name, self.branch_name)
        except (GitHubAPIError, httpx.HTTPError) as exc:
            raise SetupError(
                f"Could not read {self.branch_name} in {fork.full_name}: {exc}"
            ) from exc
