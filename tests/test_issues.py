import json

import httpx
import pytest

from steward_discord.issues import (
    DevPipeline,
    GitError,
    GitHubClient,
    GitHubError,
    Issue,
    PullRequest,
    format_issue_created,
    issue_body,
    parse_issue_command,
)
from steward_discord.provider import content_event, result_event


def _github(handler) -> GitHubClient:
    return GitHubClient(token="gh-token", repo="octo/steward", transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Search is slow: takes 10s on large channels", ("Search is slow", "takes 10s on large channels")),
        ("Add a /stats command", ("Add a /stats command", "")),
        (":no title", (":no title", "")),
        ("Docs: see https://example.com/a:b", ("Docs", "see https://example.com/a:b")),
    ],
)
def test_parse_issue_command(text, expected):
    assert parse_issue_command(text) == expected


def test_issue_body_footer():
    assert issue_body("Details here", "alice", "dev") == (
        "Details here\n\n---\nRequested by: alice via Discord\nChannel: #dev"
    )
    assert issue_body("", "alice", None) == "Requested by: alice via Discord\nChannel: #unknown"


def test_issue_created_message_offers_dev_command():
    issue = Issue(number=7, title="Slow search", url="https://github.com/octo/steward/issues/7")

    text = format_issue_created(issue, "alice", bot_name="Steward")

    assert "**Issue #7**" in text
    assert "`@Steward dev #7`" in text


@pytest.mark.asyncio
async def test_create_issue_posts_labels_and_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            201,
            json={"number": 12, "title": "Slow search", "html_url": "https://github.com/octo/steward/issues/12"},
        )

    github = _github(handler)
    issue = await github.create_issue("Slow search", "body text")
    await github.close()

    assert issue == Issue(12, "Slow search", "https://github.com/octo/steward/issues/12", "body text")
    assert seen["path"] == "/repos/octo/steward/issues"
    assert seen["auth"] == "token gh-token"
    assert seen["body"]["labels"] == ["from-discord"]


@pytest.mark.asyncio
async def test_api_errors_raise():
    github = _github(lambda request: httpx.Response(404, json={"message": "Not Found"}))

    with pytest.raises(GitHubError, match="404"):
        await github.get_issue(99)
    await github.close()


class FakeGit:
    def __init__(self, failing: set[tuple[str, ...]] = frozenset()):
        self.failing = failing
        self.commands: list[tuple[str, ...]] = []

    async def __call__(self, repo_dir, *args):
        self.commands.append(args)
        if args in self.failing:
            raise GitError(f"git {' '.join(args)} failed")
        return ""


class DummyProvider:
    def __init__(self):
        self.prompts: list[str] = []

    async def stream(self, prompt, *, system_prompt, resume=None):
        self.prompts.append(prompt)
        yield content_event("Working")
        yield result_event("Added an index on messages.content.", "dev-session")


def _pipeline_github():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "number": 7,
                    "title": "Slow search",
                    "html_url": "https://github.com/octo/steward/issues/7",
                    "body": "Search takes 10s",
                },
            )
        body = json.loads(request.content)
        assert body["head"] == "issue-7"
        assert body["base"] == "main"
        assert body["title"] == "Fix #7: Slow search"
        return httpx.Response(
            201, json={"number": 8, "html_url": "https://github.com/octo/steward/pull/8"}
        )

    return _github(handler)


@pytest.mark.asyncio
async def test_dev_pipeline_happy_path(tmp_path):
    git = FakeGit()
    provider = DummyProvider()
    reports: list[str] = []
    pipeline = DevPipeline(_pipeline_github(), provider, tmp_path, git=git)

    pr = await pipeline.run(7, reports.append)

    assert pr == PullRequest(
        number=8,
        url="https://github.com/octo/steward/pull/8",
        branch="issue-7",
        summary="Added an index on messages.content.",
    )
    assert git.commands == [
        ("fetch", "origin", "main"),
        ("checkout", "-b", "issue-7", "origin/main"),
        ("push", "-u", "origin", "issue-7"),
        ("checkout", "main"),
    ]
    assert "Search takes 10s" in provider.prompts[0]
    assert len(reports) == 5


@pytest.mark.asyncio
async def test_dev_pipeline_reuses_branch_and_force_pushes(tmp_path):
    git = FakeGit(
        failing={
            ("checkout", "-b", "issue-7", "origin/main"),
            ("push", "-u", "origin", "issue-7"),
        }
    )
    pipeline = DevPipeline(_pipeline_github(), DummyProvider(), tmp_path, git=git)

    async def report(text):
        return None

    await pipeline.run(7, report)

    assert ("checkout", "issue-7") in git.commands
    assert ("rebase", "origin/main") in git.commands
    assert ("push", "--force-with-lease", "origin", "issue-7") in git.commands
