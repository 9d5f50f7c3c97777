"""GitHub issues from chat, and the issue → branch → PR dev pipeline."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from steward_shared.constants import DEFAULT_GITHUB_API, DEFAULT_ISSUE_LABELS, DEV_PIPELINE_MAX_TURNS

from .provider import GenerationEventType, GenerationProvider

type ProgressReporter = Callable[[str], Any]

DEV_TOOLS = ("Read", "Write", "Edit", "Glob", "Grep", "Bash")

DEV_SYSTEM_PROMPT = (
    "You are a developer on this repository. Implement the GitHub issue you are given, "
    "keep the code quality high and follow the existing patterns."
)

DEV_PROMPT = """\
Implement GitHub issue #{number}.

## Issue
**{title}**

{body}

## Rules
- Change the code in this repository only.
- Match the existing code style.
- Make sure the code still imports and the existing checks pass.
- Stage and commit your changes with the message "Fix #{number}: <summary>".
- Report what you did when you are finished."""


class GitHubError(RuntimeError):
    """Raised when the GitHub API rejects a request."""


class GitError(RuntimeError):
    """Raised when a git subprocess exits non-zero."""


@dataclass(slots=True, frozen=True)
class Issue:
    number: int
    title: str
    url: str
    body: str = ""


@dataclass(slots=True, frozen=True)
class PullRequest:
    number: int
    url: str
    branch: str
    summary: str = ""


def parse_issue_command(text: str) -> tuple[str, str]:
    """Split ``"title: body"`` on the first colon; no leading colon means no body."""
    index = text.find(":")
    if index > 0:
        return text[:index].strip(), text[index + 1 :].strip()
    return text.strip(), ""


def issue_body(body: str, requested_by: str, channel_name: str | None) -> str:
    footer = f"Requested by: {requested_by} via Discord\nChannel: #{channel_name or 'unknown'}"
    return f"{body}\n\n---\n{footer}" if body else footer


def format_issue_created(issue: Issue, requested_by: str, bot_name: str = "Steward") -> str:
    return (
        f"📋 Filed **Issue #{issue.number}** 🎩\n\n"
        f"> **{issue.title}**\n"
        f"> {issue.url}\n\n"
        f"Requested by: {requested_by}\n"
        f"Should you wish it implemented, say `@{bot_name} dev #{issue.number}`."
    )


def format_pr_created(pr: PullRequest) -> str:
    return (
        f"✅ Opened **PR #{pr.number}** 🎩\n\n"
        f"> Branch: `{pr.branch}`\n"
        f"> {pr.url}\n\n"
        "It awaits your review."
    )


@dataclass(slots=True)
class GitHubClient:
    """Minimal REST client for one repository."""

    token: str
    repo: str
    base_url: str = DEFAULT_GITHUB_API
    timeout: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Authorization": f"token {self.token}",
                "Accept": "application/vnd.github.v3+json",
            },
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        resp = await self._client.request(method, f"/repos/{self.repo}{path}", **kwargs)
        if resp.is_error:
            raise GitHubError(f"GitHub API error {resp.status_code}: {resp.text[:200]}")
        return resp.json()

    async def create_issue(
        self, title: str, body: str, labels: Sequence[str] = DEFAULT_ISSUE_LABELS
    ) -> Issue:
        data = await self._request(
            "POST", "/issues", json={"title": title, "body": body, "labels": list(labels)}
        )
        logger.info("Created GitHub issue #{} in {}", data["number"], self.repo)
        return Issue(number=data["number"], title=data["title"], url=data["html_url"], body=body)

    async def get_issue(self, number: int) -> Issue:
        data = await self._request("GET", f"/issues/{number}")
        return Issue(
            number=data["number"],
            title=data["title"],
            url=data["html_url"],
            body=data.get("body") or "",
        )

    async def create_pull_request(self, branch: str, title: str, body: str, base: str = "main") -> dict[str, Any]:
        return await self._request(
            "POST", "/pulls", json={"title": title, "body": body, "head": branch, "base": base}
        )


async def _run_git(working_dir: Path, *args: str) -> str:
    proc = await asyncio.create_subprocess_exec(
        "git",
        *args,
        cwd=str(working_dir),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise GitError(f"git {' '.join(args)} failed: {stderr.decode().strip()}")
    return stdout.decode().strip()


class DevPipeline:
    """Fetch an issue, implement it on ``issue-<n>`` and open a pull request."""

    def __init__(
        self,
        github: GitHubClient,
        provider: GenerationProvider,
        repo_dir: str | Path,
        *,
        base_branch: str = "main",
        git: Callable[..., Any] | None = None,
    ):
        self.github = github
        self.provider = provider
        self.repo_dir = Path(repo_dir)
        self.base_branch = base_branch
        self._git = git or _run_git

    async def git(self, *args: str) -> str:
        return await self._git(self.repo_dir, *args)

    async def run(self, issue_number: int, report: ProgressReporter | None = None) -> PullRequest:
        async def progress(text: str) -> None:
            if report is None:
                return
            outcome = report(text)
            if asyncio.iscoroutine(outcome):
                await outcome

        base = self.base_branch
        remote_base = f"origin/{base}"

        await progress("📋 Fetching the issue...")
        issue = await self.github.get_issue(issue_number)
        branch = f"issue-{issue_number}"

        await progress(f"🌿 Preparing branch `{branch}`...")
        await self.git("fetch", "origin", base)
        try:
            await self.git("checkout", "-b", branch, remote_base)
        except GitError:
            # Branch left over from an earlier run
            await self.git("checkout", branch)
            await self.git("rebase", remote_base)

        await progress("🤖 Implementing the change...")
        summary = await self._implement(issue)

        await progress("📤 Pushing...")
        try:
            await self.git("push", "-u", "origin", branch)
        except GitError:
            await self.git("push", "--force-with-lease", "origin", branch)

        await progress("📝 Opening the pull request...")
        data = await self.github.create_pull_request(
            branch,
            f"Fix #{issue_number}: {issue.title}",
            f"## Summary\nCloses #{issue_number}\n\n{issue.title}\n\n"
            f"## Implementation\n{summary[:500]}\n\n"
            "Implemented automatically from a Discord request.",
            base=base,
        )

        await self.git("checkout", base)
        logger.info("Opened PR #{} for issue #{}", data["number"], issue_number)
        return PullRequest(
            number=data["number"],
            url=data["html_url"],
            branch=branch,
            summary=summary[:300],
        )

    async def _implement(self, issue: Issue) -> str:
        prompt = DEV_PROMPT.format(
            number=issue.number,
            title=issue.title,
            body=issue.body or "(no details)",
        )
        result = ""
        async for event in self.provider.stream(prompt, system_prompt=DEV_SYSTEM_PROMPT):
            if event.type is GenerationEventType.RESULT:
                result = event.text
        return result


__all__ = [
    "DEV_PIPELINE_MAX_TURNS",
    "DEV_TOOLS",
    "DevPipeline",
    "GitError",
    "GitHubClient",
    "GitHubError",
    "Issue",
    "PullRequest",
    "format_issue_created",
    "format_pr_created",
    "issue_body",
    "parse_issue_command",
]
