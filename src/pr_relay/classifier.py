"""Classify a pull request as Open, Closed or Merged."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import httpx
import structlog

from pr_relay.exceptions import ClassificationError, GitHubAPIError
from pr_relay.models import PullRequestState

if TYPE_CHECKING:
    from pr_relay.models import PullRequestRef, PullRequestSnapshot

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class PullRequestSource(Protocol):
    async def get_pull_request(self, ref: PullRequestRef) -> PullRequestSnapshot: ...


def classify_snapshot(snapshot: PullRequestSnapshot) -> PullRequestState:
    """Apply the state rule: merged wins, then an unset close time means open."""
    if snapshot.merged:
        return PullRequestState.MERGED
    if snapshot.closed_at is None:
        return PullRequestState.OPEN
    return PullRequestState.CLOSED


class PullRequestStatusClassifier:
    """Fetch a pull request's current state from the API."""

    def __init__(self, source: PullRequestSource) -> None:
        self._source = source

    async def classify(self, ref: PullRequestRef) -> PullRequestState:
        """Return the state of ``ref`` as of now.

        Raises:
            ClassificationError: If the pull request cannot be fetched.
        """
        try:
            snapshot = await self._source.get_pull_request(ref)
        except (GitHubAPIError, httpx.HTTPError) as exc:
            raise ClassificationError(
                f"Could not fetch pull request {ref}: {exc}"
            ) from exc

        state = classify_snapshot(snapshot)
        logger.debug("pull_request_classified", pull_request=str(ref), state=state.value)
        return state
