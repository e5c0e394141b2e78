"""Wire the relay components together from :class:`Settings`."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from pr_relay.classifier import PullRequestStatusClassifier
from pr_relay.dispatcher import NotificationDispatcher
from pr_relay.git_remote import GitRemote
from pr_relay.github import GitHubClient
from pr_relay.scheduler import PollingScheduler
from pr_relay.setup_workflow import AutoSetupWorkflow
from pr_relay.webhook import WebhookSender

if TYPE_CHECKING:
    from pr_relay.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


@dataclass(slots=True)
class Relay:
    """A fully wired scheduler plus the clients it owns."""

    scheduler: PollingScheduler
    github: GitHubClient
    webhook: WebhookSender

    async def aclose(self) -> None:
        await self.github.aclose()
        await self.webhook.aclose()


def build_relay(
    settings: Settings,
    github: GitHubClient | None = None,
    webhook: WebhookSender | None = None,
) -> Relay:
    """Construct every pipeline component from one settings object."""
    github = github or GitHubClient.from_settings(settings.github)
    webhook = webhook or WebhookSender(timeout=settings.webhook.timeout)

    setup: AutoSetupWorkflow | None = None
    if settings.setup.enabled:
        remote = GitRemote(
            executable=settings.setup.git_executable,
            timeout=settings.setup.git_timeout_seconds,
        )
        setup = AutoSetupWorkflow.from_settings(settings.setup, api=github, remote=remote)

    dispatcher = NotificationDispatcher(
        sender=webhook,
        webhook_url=settings.webhook.url or "",
        setup=setup,
        actor=settings.github.username,
        web_url=settings.github.web_url,
        text=settings.webhook.text,
        username=settings.webhook.username,
    )
    scheduler = PollingScheduler(
        feed=github,
        classifier=PullRequestStatusClassifier(github),
        dispatcher=dispatcher,
        interval=settings.polling.interval_seconds,
        overlap=settings.polling.overlap_seconds,
        max_concurrent_records=settings.polling.max_concurrent_records,
    )
    return Relay(scheduler=scheduler, github=github, webhook=webhook)


async def run_relay(settings: Settings, max_ticks: int | None = None) -> None:
    """Build the relay, poll until cancelled or a fatal feed error, then clean up."""
    relay = build_relay(settings)
    if settings.github.username is None:
        logger.info("actor_login_unset", hint="setup links will point at the pull request")
    logger.info(
        "relay_started",
        interval=settings.polling.interval_seconds,
        setup_enabled=settings.setup.enabled,
    )
    try:
        await relay.scheduler.run_forever(max_ticks=max_ticks)
    finally:
        await relay.aclose()
        logger.info("relay_stopped")
