"""Shared pytest fixtures for the pr-relay test suite."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from pr_relay.exceptions import SetupError
from pr_relay.models import (
    ActivityRecord,
    AnnouncementPayload,
    DispatchResult,
    ForkDescriptor,
    PullRequestRef,
    PullRequestSnapshot,
    PullRequestState,
    SetupOutcome,
    SetupResult,
)

T0 = datetime(2026, 10, 19, 12, 0, 0, tzinfo=UTC)
HEAD_SHA = "a" * 40
API_URL = "https://api.github.com"


# ---------------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------------


def make_record(
    url: str | None = f"{API_URL}/repos/octo/repo/pulls/42",
    record_id: str = "1",
    updated_at: datetime = T0,
    subject_type: str | None = "PullRequest",
    subject_url: str | None = None,
) -> ActivityRecord:
    return ActivityRecord(
        id=record_id,
        reference_url=url,
        updated_at=updated_at,
        subject_type=subject_type,
        subject_url=subject_url,
    )


@pytest.fixture()
def fork() -> ForkDescriptor:
    return ForkDescriptor(
        full_name="relay-bot/repo",
        clone_url="https://github.com/relay-bot/repo.git",
        html_url="https://github.com/relay-bot/repo",
        default_branch="main",
    )


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeFeed:
    """Returns queued record batches and remembers every window asked for."""

    def __init__(self, *batches: list[ActivityRecord] | Exception) -> None:
        self._batches = list(batches)
        self.windows: list[tuple[datetime, datetime]] = []

    async def list_activity(
        self, since: datetime, before: datetime
    ) -> list[ActivityRecord]:
        self.windows.append((since, before))
        if not self._batches:
            return []
        batch = self._batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return batch


class FakePullRequests:
    """Serves snapshots keyed by pull request number."""

    def __init__(self, snapshots: dict[int, PullRequestSnapshot | Exception]) -> None:
        self._snapshots = snapshots
        self.calls: list[PullRequestRef] = []

    async def get_pull_request(self, ref: PullRequestRef) -> PullRequestSnapshot:
        self.calls.append(ref)
        snapshot = self._snapshots[ref.number]
        if isinstance(snapshot, Exception):
            raise snapshot
        return snapshot


class FakeSender:
    def __init__(self, errors: list[Exception] | None = None) -> None:
        self._errors = errors or []
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def send(self, url: str, payload: dict[str, Any]) -> list[Exception]:
        self.sent.append((url, payload))
        return list(self._errors)


class FakeSetup:
    branch_name = "automation-setup"

    def __init__(
        self,
        error: Exception | None = None,
        fork_error: Exception | None = None,
        fork_name: str = "repo",
    ) -> None:
        self._error = error
        self._fork_error = fork_error
        self._fork_name = fork_name
        self.fork_calls: list[tuple[str, str]] = []
        self.calls: list[tuple[str, str]] = []
        self.forks_passed: list[ForkDescriptor | None] = []

    async def fork(self, owner: str, repo: str) -> ForkDescriptor:
        self.fork_calls.append((owner, repo))
        if self._fork_error is not None:
            raise self._fork_error
        return ForkDescriptor(
            full_name=f"relay-bot/{self._fork_name}",
            clone_url=f"https://github.com/relay-bot/{self._fork_name}.git",
            html_url=f"https://github.com/relay-bot/{self._fork_name}",
            default_branch="main",
        )

    async def run(
        self, owner: str, repo: str, fork: ForkDescriptor | None = None
    ) -> SetupResult:
        self.calls.append((owner, repo))
        self.forks_passed.append(fork)
        if self._error is not None:
            raise self._error
        if fork is None:
            fork = await self.fork(owner, repo)
        return SetupResult(
            fork=fork,
            branch=self.branch_name,
            head_sha=HEAD_SHA,
            outcome=SetupOutcome.CREATED,
        )


class FakeClassifier:
    def __init__(self, state: PullRequestState = PullRequestState.OPEN) -> None:
        self.state = state
        self.calls: list[PullRequestRef] = []

    async def classify(self, ref: PullRequestRef) -> PullRequestState:
        self.calls.append(ref)
        return self.state


class FakeDispatcher:
    """Records dispatches; ``delivered=False`` simulates a webhook outage."""

    def __init__(
        self, delivered: bool = True, setup_error: SetupError | None = None
    ) -> None:
        self._delivered = delivered
        self._setup_error = setup_error
        self.calls: list[tuple[PullRequestRef, PullRequestState]] = []

    async def dispatch(
        self, ref: PullRequestRef, state: PullRequestState
    ) -> DispatchResult:
        self.calls.append((ref, state))
        return DispatchResult(
            payload=AnnouncementPayload(
                repository_full_name=ref.full_name, status=state, action_links=()
            ),
            delivery_errors=[] if self._delivered else [RuntimeError("webhook down")],
            setup_error=self._setup_error,
        )


class FakeRemote:
    def __init__(self, sha: str = HEAD_SHA) -> None:
        self.sha = sha
        self.calls: list[str] = []

    async def resolve_head(self, clone_url: str) -> str:
        self.calls.append(clone_url)
        return self.sha
