"""Reconstruct a pull request identity from a notification record.

GitHub reports the subject of a notification through whatever URL the
activity happened on: the pull request itself, an issue comment, a
review comment. All of them share the ``owner/repo/<kind>/<number>``
prefix, optionally behind the REST API ``repos`` segment, so the
identity is recovered from the path alone and the kind segment is
rewritten to the canonical ``pull``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlparse

from pr_relay.exceptions import ResolutionError
from pr_relay.models import PullRequestRef

if TYPE_CHECKING:
    from pr_relay.models import ActivityRecord

_MIN_SEGMENTS = 5
_API_PREFIX = "repos"
CANONICAL_KIND = "pull"


def split_path(url: str) -> list[str]:
    """Return the non-empty path segments of ``url``."""
    path = urlparse(url).path.strip("/")
    return [segment for segment in path.split("/") if segment]


def resolve_url(url: str | None) -> PullRequestRef:
    """Derive a :class:`PullRequestRef` from a notification reference URL.

    Args:
        url: The notification's reference URL.

    Returns:
        The pull request the URL points into.

    Raises:
        ResolutionError: If the URL is missing, has fewer than five path
            segments, or its number segment is not a positive integer.
    """
    if not url:
        raise ResolutionError("Notification has no reference URL")

    segments = split_path(url)
    if len(segments) < _MIN_SEGMENTS:
        raise ResolutionError(
            f"Reference URL has {len(segments)} path segments, "
            f"expected at least {_MIN_SEGMENTS}: {url}"
        )

    if segments[0] == _API_PREFIX:
        segments = segments[1:]
    owner, repo, _kind, raw_number = segments[:4]

    try:
        number = int(raw_number)
    except ValueError:
        raise ResolutionError(
            f"Reference URL number segment {raw_number!r} is not numeric: {url}"
        ) from None

    return PullRequestRef(owner=owner, repo=repo, number=number)


def resolve(record: ActivityRecord) -> PullRequestRef:
    """Resolve the pull request an activity record refers to.

    Comment activity is reported with a URL such as
    ``/repos/o/r/issues/comments/77`` that carries no pull request number,
    so when the reference URL does not resolve the subject URL is tried.

    Raises:
        ResolutionError: If neither URL identifies a pull request; the
            error describes the reference URL.
    """
    try:
        return resolve_url(record.reference_url)
    except ResolutionError as exc:
        if not record.subject_url or record.subject_url == record.reference_url:
            raise
        reference_error = exc

    try:
        return resolve_url(record.subject_url)
    except ResolutionError:
        raise reference_error from None


def canonical_path(ref: PullRequestRef) -> str:
    """Return the web path of a pull request, e.g. ``octo/repo/pull/42``."""
    return "/".join([ref.owner, ref.repo, CANONICAL_KIND, str(ref.number)])
