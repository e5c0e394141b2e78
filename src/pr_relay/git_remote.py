"""Ephemeral remote access used to find a fork's head commit.

Only the head reference is needed, so instead of materialising a clone
on disk the remote's ref advertisement is read with ``git ls-remote``.
"""

from __future__ import annotations

import asyncio
import os

import structlog

from pr_relay.exceptions import CloneError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_SHA_LENGTHS = (40, 64)


def parse_head(output: str) -> str:
    """Extract the commit SHA of ``HEAD`` from ``git ls-remote --symref`` output.

    Raises:
        CloneError: If no HEAD line is present.
    """
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) != 2 or parts[1] != "HEAD":
            continue
        sha = parts[0].strip()
        if sha.startswith("ref:"):
            continue
        if len(sha) in _SHA_LENGTHS:
            return sha
    raise CloneError("Remote did not advertise a HEAD commit")


class GitRemote:
    """Run read-only git commands against a remote URL."""

    def __init__(self, executable: str = "git", timeout: float = 30.0) -> None:
        self._executable = executable
        self._timeout = timeout

    async def resolve_head(self, clone_url: str) -> str:
        """Return the commit SHA the remote's HEAD points at.

        Raises:
            CloneError: If git fails, times out, or reports no HEAD.
        """
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            process = await asyncio.create_subprocess_exec(
                self._executable,
                "ls-remote",
                "--symref",
                clone_url,
                "HEAD",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            raise CloneError(f"Could not run {self._executable}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            raise CloneError(
                f"git ls-remote {clone_url} timed out after {self._timeout}s"
            ) from None
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise CloneError(f"git ls-remote {clone_url} failed: {message}")

        sha = parse_head(stdout.decode("utf-8", errors="replace"))
        logger.debug("remote_head_resolved", clone_url=clone_url, sha=sha)
        return sha
