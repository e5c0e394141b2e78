"""Unit tests for pr_relay.classifier."""

from __future__ import annotations

import httpx
import pytest

from pr_relay.classifier import PullRequestStatusClassifier, classify_snapshot
from pr_relay.exceptions import ClassificationError, GitHubAPIError
from pr_relay.models import PullRequestRef, PullRequestSnapshot, PullRequestState
from tests.conftest import T0, FakePullRequests

REF = PullRequestRef("octo", "repo", 42)


class TestClassifySnapshot:
    """Merged dominates Closed; an unset close time means Open."""

    @pytest.mark.parametrize("closed_at", [None, T0])
    def test_merged_wins_regardless_of_closed_at(self, closed_at: object) -> None:
        snapshot = PullRequestSnapshot(merged=True, closed_at=closed_at)  # type: ignore[arg-type]
        assert classify_snapshot(snapshot) is PullRequestState.MERGED

    def test_open(self) -> None:
        assert classify_snapshot(PullRequestSnapshot(merged=False)) is PullRequestState.OPEN

    def test_closed(self) -> None:
        snapshot = PullRequestSnapshot(merged=False, closed_at=T0)
        assert classify_snapshot(snapshot) is PullRequestState.CLOSED


class TestPullRequestStatusClassifier:
    @pytest.mark.asyncio()
    async def test_fetches_current_state(self) -> None:
        source = FakePullRequests({42: PullRequestSnapshot(merged=True, closed_at=T0)})
        classifier = PullRequestStatusClassifier(source)

        assert await classifier.classify(REF) is PullRequestState.MERGED
        assert source.calls == [REF]

    @pytest.mark.asyncio()
    async def test_refetches_on_every_call(self) -> None:
        source = FakePullRequests({42: PullRequestSnapshot(merged=False)})
        classifier = PullRequestStatusClassifier(source)

        await classifier.classify(REF)
        await classifier.classify(REF)
        assert len(source.calls) == 2

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        "error",
        [
            GitHubAPIError("Not Found", status_code=404),
            httpx.ConnectError("boom"),
            httpx.ReadTimeout("slow"),
        ],
    )
    async def test_api_errors_become_classification_errors(
        self, error: Exception
    ) -> None:
        classifier = PullRequestStatusClassifier(FakePullRequests({42: error}))

        with pytest.raises(ClassificationError) as exc_info:
            await classifier.classify(REF)
        assert exc_info.value.__cause__ is error
