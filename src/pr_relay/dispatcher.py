"""Announce classified pull requests and trigger setup on merge."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import structlog

from pr_relay.exceptions import DispatchError, SetupError
from pr_relay.models import (
    GITHUB_WEB_URL,
    ActionLink,
    AnnouncementPayload,
    DispatchResult,
    PullRequestState,
)

if TYPE_CHECKING:
    from pr_relay.models import ForkDescriptor, PullRequestRef, SetupResult

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

VIEW_PULL_REQUEST = "View Pull Request"
OPEN_SETUP_BRANCH = "Open Setup Branch"
DEFAULT_TEXT = "There was some activity on a Pull Request"
DEFAULT_USERNAME = "robot"


class Sender(Protocol):
    async def send(self, url: str, payload: dict[str, Any]) -> list[Exception]: ...


class SetupRunner(Protocol):
    branch_name: str

    async def fork(self, owner: str, repo: str) -> ForkDescriptor: ...

    async def run(
        self, owner: str, repo: str, fork: ForkDescriptor | None = None
    ) -> SetupResult: ...


class NotificationDispatcher:
    """Build the chat announcement for a pull request and deliver it.

    Delivery is attempted once. For merged pull requests the fork is
    requested first so the setup link names the fork GitHub actually
    created; the remaining setup steps run after the announcement has
    gone out, so a slow or failing setup never holds it back or undoes it.
    """

    def __init__(
        self,
        sender: Sender,
        webhook_url: str,
        setup: SetupRunner | None = None,
        actor: str | None = None,
        web_url: str = GITHUB_WEB_URL,
        text: str = DEFAULT_TEXT,
        username: str = DEFAULT_USERNAME,
    ) -> None:
        self._sender = sender
        self._webhook_url = webhook_url
        self._setup = setup
        self._actor = actor
        self._web_url = web_url.rstrip("/")
        self._text = text
        self._username = username

    def setup_link(
        self, ref: PullRequestRef, fork: ForkDescriptor | None = None
    ) -> str:
        """Where the setup branch will live, or the pull request if unknown.

        Without a fork descriptor the fork is assumed to share the merged
        repository's name under the actor's account.
        """
        if self._setup is None:
            return ref.pull_url(self._web_url)
        if fork is not None:
            return f"{self._web_url}/{fork.full_name}/tree/{self._setup.branch_name}"
        if self._actor:
            return (
                f"{self._web_url}/{self._actor}/{ref.repo}"
                f"/tree/{self._setup.branch_name}"
            )
        return ref.pull_url(self._web_url)

    def build_payload(
        self,
        ref: PullRequestRef,
        state: PullRequestState,
        fork: ForkDescriptor | None = None,
    ) -> AnnouncementPayload:
        links = [ActionLink(VIEW_PULL_REQUEST, ref.pull_url(self._web_url))]
        if state is PullRequestState.MERGED:
            links.append(ActionLink(OPEN_SETUP_BRANCH, self.setup_link(ref, fork)))
        return AnnouncementPayload(
            repository_full_name=ref.full_name,
            status=state,
            action_links=tuple(links),
        )

    async def dispatch(
        self, ref: PullRequestRef, state: PullRequestState
    ) -> DispatchResult:
        """Announce ``ref`` and, when merged, run the setup workflow."""
        log = logger.bind(pull_request=str(ref), state=state.value)

        fork: ForkDescriptor | None = None
        setup_error: SetupError | None = None
        if state is PullRequestState.MERGED and self._setup is not None:
            try:
                fork = await self._setup.fork(ref.owner, ref.repo)
            except SetupError as exc:
                setup_error = exc
                _log_setup_failure(log, exc)

        payload = self.build_payload(ref, state, fork)
        result = DispatchResult(payload=payload, setup_error=setup_error)

        result.delivery_errors = await self._sender.send(
            self._webhook_url,
            payload.to_webhook_json(text=self._text, username=self._username),
        )
        if result.delivery_errors:
            error = DispatchError(
                "; ".join(str(exc) for exc in result.delivery_errors)
            )
            log.error("announcement_not_delivered", error=str(error))
        else:
            log.info("announcement_delivered")

        if fork is not None and self._setup is not None:
            try:
                result.setup_result = await self._setup.run(
                    ref.owner, ref.repo, fork=fork
                )
            except SetupError as exc:
                result.setup_error = exc
                _log_setup_failure(log, exc)

        return result


def _log_setup_failure(log: structlog.stdlib.BoundLogger, exc: SetupError) -> None:
    log.error(
        "setup_failed",
        step=exc.step,
        error_type=type(exc).__name__,
        error=str(exc),
    )
