"""Centralized exception hierarchy for the pr-relay package.

All domain-specific exceptions inherit from ``PRRelayError`` so callers
can catch the entire family with a single ``except`` clause. Everything
below ``FeedUnavailableError`` is local to one record and never stops the
scheduler; only ``FatalSchedulerError`` escapes the polling loop.
"""

from __future__ import annotations


class PRRelayError(Exception):
    """Base exception for all pr-relay errors."""


# ---------------------------------------------------------------------------
# GitHub API errors
# ---------------------------------------------------------------------------


class GitHubAPIError(PRRelayError):
    """Raised when the GitHub REST API answers with an error status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReferenceExistsError(GitHubAPIError):
    """Raised when a git reference cannot be created because it exists."""


# ---------------------------------------------------------------------------
# Feed errors
# ---------------------------------------------------------------------------


class FeedUnavailableError(PRRelayError):
    """Raised when the activity feed cannot be fetched for a window."""


class FatalSchedulerError(FeedUnavailableError):
    """Raised when the feed failure is unrecoverable (e.g. bad credentials)."""


# ---------------------------------------------------------------------------
# Per-record pipeline errors
# ---------------------------------------------------------------------------


class ResolutionError(PRRelayError):
    """Raised when a notification URL does not identify a pull request."""


class ClassificationError(PRRelayError):
    """Raised when the current pull request state cannot be fetched."""


class DispatchError(PRRelayError):
    """Raised when an announcement cannot be delivered to the webhook."""


# ---------------------------------------------------------------------------
# Setup workflow errors
# ---------------------------------------------------------------------------


class SetupError(PRRelayError):
    """Base exception for the fork-and-branch setup workflow."""

    step = "setup"


class ForkCreationError(SetupError):
    """Raised when the fork request is rejected."""

    step = "fork"


class ForkNotReadyError(SetupError):
    """Raised while a requested fork is still being created server-side."""

    step = "wait_ready"


class ForkReadinessTimeoutError(SetupError):
    """Raised when a fork does not become clonable within the allowed time."""

    step = "wait_ready"


class CloneError(SetupError):
    """Raised when the fork's head reference cannot be resolved."""

    step = "clone"


class BranchConflictError(SetupError):
    """Raised when the setup branch exists and points somewhere else."""

    step = "create_branch"
