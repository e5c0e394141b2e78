"""Data models shared across the relay pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pr_relay.exceptions import ResolutionError

if TYPE_CHECKING:
    from datetime import datetime

    from pr_relay.exceptions import SetupError

GITHUB_WEB_URL = "https://github.com"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PullRequestState(StrEnum):
    """Current state of a pull request, recomputed on every classification."""

    OPEN = "Open"
    CLOSED = "Closed"
    MERGED = "Merged"


class SetupOutcome(StrEnum):
    """How the setup branch ended up in the fork."""

    CREATED = "created"
    ALREADY_PRESENT = "already_present"


# ---------------------------------------------------------------------------
# Feed records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ActivityRecord:
    """One notification thread from the activity feed."""

    id: str
    reference_url: str | None
    updated_at: datetime
    subject_type: str | None = None
    subject_title: str | None = None
    repository_full_name: str | None = None
    subject_url: str | None = None

    @property
    def dedup_key(self) -> tuple[str, datetime]:
        return (self.id, self.updated_at)


@dataclass(frozen=True, slots=True)
class PullRequestRef:
    """Canonical identity of a pull request."""

    owner: str
    repo: str
    number: int

    def __post_init__(self) -> None:
        if not self.owner or not self.repo:
            raise ResolutionError(
                f"Pull request owner and repo must be non-empty "
                f"(got {self.owner!r}/{self.repo!r})"
            )
        if isinstance(self.number, bool) or self.number <= 0:
            raise ResolutionError(
                f"Pull request number must be positive (got {self.number!r})"
            )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def html_url(self) -> str:
        return self.pull_url()

    def pull_url(self, web_url: str = GITHUB_WEB_URL) -> str:
        return f"{web_url.rstrip('/')}/{self.owner}/{self.repo}/pull/{self.number}"

    def __str__(self) -> str:
        return f"{self.full_name}#{self.number}"


@dataclass(frozen=True, slots=True)
class PullRequestSnapshot:
    """The fields of a pull request that decide its state."""

    merged: bool
    closed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class PollWindow:
    """Half-open time span ``[since, before)`` requested from the feed."""

    since: datetime
    before: datetime

    def __post_init__(self) -> None:
        if self.since > self.before:
            raise ValueError(
                f"PollWindow.since ({self.since.isoformat()}) is after "
                f"before ({self.before.isoformat()})"
            )


# ---------------------------------------------------------------------------
# Announcements
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ActionLink:
    """A labelled button in the chat announcement."""

    label: str
    url: str


@dataclass(frozen=True, slots=True)
class AnnouncementPayload:
    """What the chat channel is told about one pull request event."""

    repository_full_name: str
    status: PullRequestState
    action_links: tuple[ActionLink, ...]

    def to_webhook_json(self, text: str, username: str) -> dict[str, Any]:
        """Render as a Slack-compatible incoming-webhook body."""
        return {
            "text": text,
            "username": username,
            "attachments": [
                {
                    "fields": [
                        {"title": "Repository", "value": self.repository_full_name},
                        {"title": "Status", "value": self.status.value},
                    ],
                    "actions": [
                        {
                            "type": "button",
                            "text": link.label,
                            "url": link.url,
                            "style": "primary",
                        }
                        for link in self.action_links
                    ],
                }
            ],
        }


# ---------------------------------------------------------------------------
# Setup workflow
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ForkDescriptor:
    """A fork as reported by the GitHub forks endpoint."""

    full_name: str
    clone_url: str
    html_url: str
    default_branch: str

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.full_name.split("/", 1)[1]


@dataclass(frozen=True, slots=True)
class SetupResult:
    """Result of a completed setup workflow run."""

    fork: ForkDescriptor
    branch: str
    head_sha: str
    outcome: SetupOutcome


@dataclass(slots=True)
class DispatchResult:
    """What happened when one classified pull request was dispatched."""

    payload: AnnouncementPayload
    delivery_errors: list[Exception] = field(default_factory=list)
    setup_result: SetupResult | None = None
    setup_error: SetupError | None = None

    @property
    def delivered(self) -> bool:
        return not self.delivery_errors


@dataclass(slots=True)
class TickReport:
    """Counters for one scheduler tick."""

    window: PollWindow
    records: int = 0
    dispatched: int = 0
    skipped: int = 0
    failed: int = 0
    duplicates: int = 0
    undelivered: int = 0
    setup_failed: int = 0
