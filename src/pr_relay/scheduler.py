"""Fixed-interval polling of the activity feed.

Each tick asks the feed for everything updated between the previous
watermark (minus a small overlap, so records stamped exactly on the
boundary are not lost) and now, runs every record through
resolve -> classify -> dispatch, and only then moves the watermark.
Records are independent, so a tick processes them concurrently; a
record that fails is logged and counted without touching its siblings
or later ticks.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

import structlog

from pr_relay.exceptions import (
    ClassificationError,
    FatalSchedulerError,
    FeedUnavailableError,
    PRRelayError,
    ResolutionError,
)
from pr_relay.logging import record_logging_context
from pr_relay.models import PollWindow, TickReport
from pr_relay.resolver import resolve

if TYPE_CHECKING:
    from collections.abc import Callable

    from pr_relay.models import (
        ActivityRecord,
        DispatchResult,
        PullRequestRef,
        PullRequestState,
    )

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

PULL_REQUEST_SUBJECT = "PullRequest"


class ActivityFeed(Protocol):
    async def list_activity(
        self, since: datetime, before: datetime
    ) -> list[ActivityRecord]: ...


class Classifier(Protocol):
    async def classify(self, ref: PullRequestRef) -> PullRequestState: ...


class Dispatcher(Protocol):
    async def dispatch(
        self, ref: PullRequestRef, state: PullRequestState
    ) -> DispatchResult: ...


def utc_now() -> datetime:
    return datetime.now(UTC)


class PollingScheduler:
    """Drive the relay pipeline from the activity feed.

    Attributes:
        watermark: End of the last window whose records were all attempted.
        interval: Seconds between tick starts.
        overlap: How far each window reaches back before the watermark.
    """

    def __init__(
        self,
        feed: ActivityFeed,
        classifier: Classifier,
        dispatcher: Dispatcher,
        interval: float = 2.0,
        overlap: float = 1.0,
        max_concurrent_records: int = 4,
        resolver: Callable[[ActivityRecord], PullRequestRef] = resolve,
        clock: Callable[[], datetime] = utc_now,
        start: datetime | None = None,
    ) -> None:
        self._feed = feed
        self._classifier = classifier
        self._dispatcher = dispatcher
        self._resolver = resolver
        self._clock = clock
        self.interval = interval
        self.overlap = timedelta(seconds=overlap)
        self._max_concurrent = max_concurrent_records
        self.watermark = start or clock()
        self._seen: dict[tuple[str, datetime], datetime] = {}

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    def next_window(self, now: datetime) -> PollWindow:
        """Window from ``watermark - overlap`` up to ``now``."""
        since = min(self.watermark - self.overlap, now)
        return PollWindow(since=since, before=now)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def run_once(self) -> TickReport:
        """Run one tick and return its counters.

        Raises:
            FatalSchedulerError: If the feed reports an unrecoverable failure.
        """
        now = self._clock()
        window = self.next_window(now)
        report = TickReport(window=window)

        try:
            records = await self._feed.list_activity(window.since, window.before)
        except FatalSchedulerError:
            raise
        except FeedUnavailableError as exc:
            # Watermark stays put so the next window covers this span
            logger.warning(
                "feed_unavailable",
                since=window.since.isoformat(),
                before=window.before.isoformat(),
                error=str(exc),
            )
            return report
        except Exception:
            logger.exception(
                "feed_failed_unexpectedly",
                since=window.since.isoformat(),
                before=window.before.isoformat(),
            )
            return report

        report.records = len(records)
        fresh: list[ActivityRecord] = []
        for record in records:
            if record.dedup_key in self._seen:
                report.duplicates += 1
                continue
            fresh.append(record)

        semaphore = asyncio.Semaphore(self._max_concurrent)
        await asyncio.gather(
            *(self._process(record, report, semaphore) for record in fresh)
        )

        for record in fresh:
            self._seen[record.dedup_key] = record.updated_at
        self._prune_seen(window.since)
        self.watermark = now

        if records:
            logger.info(
                "tick_complete",
                records=report.records,
                dispatched=report.dispatched,
                skipped=report.skipped,
                failed=report.failed,
                duplicates=report.duplicates,
                undelivered=report.undelivered,
                setup_failed=report.setup_failed,
            )
        return report

    def _prune_seen(self, horizon: datetime) -> None:
        # Anything older than the window start cannot be returned again
        self._seen = {
            key: updated_at
            for key, updated_at in self._seen.items()
            if updated_at >= horizon
        }

    async def _process(
        self,
        record: ActivityRecord,
        report: TickReport,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            with record_logging_context(record.id, url=record.reference_url) as log:
                if record.subject_type and record.subject_type != PULL_REQUEST_SUBJECT:
                    report.skipped += 1
                    log.debug("record_not_pull_request", subject_type=record.subject_type)
                    return

                try:
                    ref = self._resolver(record)
                    state = await self._classifier.classify(ref)
                    result = await self._dispatcher.dispatch(ref, state)
                except ResolutionError as exc:
                    report.skipped += 1
                    log.warning("record_unresolvable", step="resolve", error=str(exc))
                except ClassificationError as exc:
                    report.skipped += 1
                    log.warning("record_unclassifiable", step="classify", error=str(exc))
                except PRRelayError as exc:
                    report.failed += 1
                    log.error(
                        "record_failed",
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                except Exception:
                    report.failed += 1
                    log.exception("record_failed_unexpectedly")
                else:
                    if result.delivered:
                        report.dispatched += 1
                    else:
                        report.undelivered += 1
                    if result.setup_error is not None:
                        report.setup_failed += 1

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run_forever(self, max_ticks: int | None = None) -> None:
        """Tick every ``interval`` seconds until cancelled or a fatal error.

        Args:
            max_ticks: Stop after this many ticks (``None`` runs forever).

        Raises:
            FatalSchedulerError: The only way the loop ends on its own.
        """
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            started = time.monotonic()
            await self.run_once()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.interval - elapsed))
