"""
Tests for the review pipeline orchestrator.

Covers the status sequence, the no-code-files fast path, partial and total
fetch failures, analysis aggregation, comment posting and error handling.
"""

import pytest

from conftest import FakeGitHubClient, RecordingConnection, make_finding
from prreview.config import settings
from prreview.database import ReviewStatus
from prreview.integrations.github_api import GitHubAPIError, RepositoryNotFoundError
from prreview.review_service import ReviewService


ALLOWED_PATHS = [
    ["pending", "completed"],
    ["pending", "failed"],
    ["pending", "in_progress", "completed"],
    ["pending", "in_progress", "failed"],
]


async def create_review(store, repository):
    return await store.create_review(
        repository,
        pull_request_number=42,
        pull_request_title="Add security fix",
        pull_request_url="https://github.com/octo/repo/pull/42",
        author="developer",
        commit_sha="abc123def456",
    )


async def run(service, review_id):
    return await service.process_review(
        review_id,
        owner="octo",
        repo="repo",
        pull_number=42,
        commit_sha="abc123def456",
        pr_context="PR #42: Add security fix",
        access_token="gho_test_token",
    )


def status_path(connection):
    """Statuses observed by a client, starting from the implicit pending."""
    path = ["pending"]
    for message in connection.messages:
        status = message["data"].get("status")
        if status and status != path[-1]:
            path.append(status)
    return path


class TestHappyPath:
    """Tests for a review that analyzes files successfully."""

    @pytest.mark.asyncio
    async def test_two_files_reviewed(
        self, store, repository, review_service, user_connection, llm, github
    ):
        """Scenario: two code files scoring 80 and 85 with 2 and 1 findings."""
        llm.responses["src/app.js"] = {
            "summary": "a", "qualityScore": 80,
            "findings": [make_finding(title="A1"), make_finding(title="A2", line=None)],
        }
        llm.responses["src/db.py"] = {
            "summary": "b", "qualityScore": 85, "findings": [make_finding(title="B1")],
        }
        review = await create_review(store, repository)

        result = await run(review_service, review.id)

        assert result.status == ReviewStatus.COMPLETED
        stored = await store.get_review(review.id)
        assert stored.status == ReviewStatus.COMPLETED
        assert stored.files_analyzed == 2
        assert stored.quality_score == 83
        assert stored.issues_found == 3 == len(stored.findings)
        assert stored.summary == "Analyzed 2 files, found 3 issues"
        assert stored.findings[1].line == 0
        assert stored.findings[0].file == "src/app.js"
        assert stored.completed_at is not None

        assert github.fetched == ["src/app.js", "src/db.py"]
        assert github.tokens == ["gho_test_token"]
        assert len(github.comments) == 1
        assert "**83/100**" in github.comments[0]

        assert user_connection.events[0] == "review-updated"
        assert user_connection.events[-1] == "review-completed"
        completed = user_connection.messages[-1]["data"]
        assert completed["reviewId"] == review.id
        assert completed["issuesFound"] == 3
        assert completed["qualityScore"] == 83
        assert completed["filesAnalyzed"] == 2
        assert status_path(user_connection) == ["pending", "in_progress", "completed"]

    @pytest.mark.asyncio
    async def test_team_channel_notified(self, store, repository, review_service, broadcaster):
        teammate = RecordingConnection()
        broadcaster.subscribe("team_t1", teammate)
        review = await create_review(store, repository)

        await run(review_service, review.id)

        assert teammate.events[-1] == "review-completed"

    @pytest.mark.asyncio
    async def test_file_limit(self, store, repository, broadcaster, analyzer, metrics):
        github = FakeGitHubClient(files=[f"src/f{i}.py" for i in range(12)])
        service = ReviewService(
            store, broadcaster, analyzer, github_client_factory=github,
            max_files=10, fetch_delay=0, metrics=metrics,
        )
        review = await create_review(store, repository)

        await run(service, review.id)

        assert github.fetched == [f"src/f{i}.py" for i in range(10)]
        assert (await store.get_review(review.id)).files_analyzed == 10

    @pytest.mark.asyncio
    async def test_explicit_file_limit_overrides_config(
        self, store, repository, broadcaster, analyzer, metrics, monkeypatch
    ):
        monkeypatch.setattr(settings, "review_max_files", 10)
        github = FakeGitHubClient(files=["a.py", "b.py", "c.py"])
        service = ReviewService(
            store, broadcaster, analyzer, github_client_factory=github,
            max_files=1, fetch_delay=0, metrics=metrics,
        )
        review = await create_review(store, repository)

        await run(service, review.id)

        assert github.fetched == ["a.py"]

    def test_file_limit_defaults_to_config(self, store, broadcaster, analyzer, monkeypatch):
        monkeypatch.setattr(settings, "review_max_files", 4)
        service = ReviewService(store, broadcaster, analyzer)
        assert service.max_files == 4

    @pytest.mark.parametrize("max_files", [0, -1])
    def test_non_positive_file_limit_rejected(self, store, broadcaster, analyzer, max_files):
        """A zero limit is not replaced by the configured default."""
        with pytest.raises(ValueError):
            ReviewService(store, broadcaster, analyzer, max_files=max_files)


class TestFastPath:
    """Tests for PRs without any code files."""

    @pytest.mark.asyncio
    async def test_no_code_files(self, store, repository, broadcaster, analyzer, llm, metrics,
                                 user_connection):
        github = FakeGitHubClient(files=[])
        service = ReviewService(
            store, broadcaster, analyzer, github_client_factory=github, fetch_delay=0,
            metrics=metrics,
        )
        review = await create_review(store, repository)

        await run(service, review.id)

        stored = await store.get_review(review.id)
        assert stored.status == ReviewStatus.COMPLETED
        assert stored.files_analyzed == 0
        assert stored.quality_score == 100
        assert stored.summary == "No code files to review in this PR"
        assert stored.findings == []
        assert github.comments == []
        assert llm.calls == []
        assert user_connection.events[-1] == "review-completed"


class TestFailures:
    """Tests for fetch failures and unexpected errors."""

    @pytest.mark.asyncio
    async def test_one_fetch_failure_is_skipped(
        self, store, repository, broadcaster, analyzer, llm, metrics
    ):
        """Fetch failure for one of N files leaves at most N-1 analyzed."""
        github = FakeGitHubClient(
            files=["a.py", "b.py", "c.py"],
            contents={"b.py": RepositoryNotFoundError("gone", status_code=404)},
        )
        service = ReviewService(
            store, broadcaster, analyzer, github_client_factory=github, fetch_delay=0,
            metrics=metrics,
        )
        review = await create_review(store, repository)

        await run(service, review.id)

        stored = await store.get_review(review.id)
        assert stored.status == ReviewStatus.COMPLETED
        assert stored.files_analyzed == 2
        assert llm.calls == ["a.py", "c.py"]
        assert metrics.get_metric("file_fetch_failures_total").value == 1

    @pytest.mark.asyncio
    async def test_content_less_file_skipped(
        self, store, repository, broadcaster, analyzer, llm, metrics
    ):
        github = FakeGitHubClient(files=["a.py", "vendor/lib.go"], contents={"vendor/lib.go": None})
        service = ReviewService(
            store, broadcaster, analyzer, github_client_factory=github, fetch_delay=0,
            metrics=metrics,
        )
        review = await create_review(store, repository)

        await run(service, review.id)

        assert llm.calls == ["a.py"]

    @pytest.mark.asyncio
    async def test_every_fetch_fails(
        self, store, repository, broadcaster, analyzer, llm, metrics, user_connection
    ):
        github = FakeGitHubClient(
            files=["a.py", "b.py"],
            contents={"a.py": GitHubAPIError("boom"), "b.py": GitHubAPIError("boom")},
        )
        service = ReviewService(
            store, broadcaster, analyzer, github_client_factory=github, fetch_delay=0,
            metrics=metrics,
        )
        review = await create_review(store, repository)

        await run(service, review.id)

        stored = await store.get_review(review.id)
        assert stored.status == ReviewStatus.FAILED
        assert stored.summary == "Failed to fetch PR files"
        assert llm.calls == []
        assert github.comments == []
        assert user_connection.events[-1] == "review-updated"
        assert user_connection.messages[-1]["data"]["status"] == "failed"
        assert status_path(user_connection) == ["pending", "in_progress", "failed"]

    @pytest.mark.asyncio
    async def test_listing_error_fails_review(
        self, store, repository, broadcaster, analyzer, metrics, user_connection
    ):
        github = FakeGitHubClient(list_error=GitHubAPIError("Bad credentials", status_code=401))
        service = ReviewService(
            store, broadcaster, analyzer, github_client_factory=github, fetch_delay=0,
            metrics=metrics,
        )
        review = await create_review(store, repository)

        result = await run(service, review.id)

        assert result.status == ReviewStatus.FAILED
        stored = await store.get_review(review.id)
        assert stored.summary == "Review failed: Bad credentials"
        failed_events = [
            m for m in user_connection.messages if m["data"].get("status") == "failed"
        ]
        assert len(failed_events) == 1
        assert metrics.get_metric("reviews_failed_total").value == 1

    @pytest.mark.asyncio
    async def test_all_analyses_fail_still_completes(
        self, store, repository, review_service, llm
    ):
        """Analysis failures degrade to an empty completed result."""
        llm.responses["src/app.js"] = RuntimeError("model down")
        llm.responses["src/db.py"] = "no json at all"
        review = await create_review(store, repository)

        await run(review_service, review.id)

        stored = await store.get_review(review.id)
        assert stored.status == ReviewStatus.COMPLETED
        assert stored.files_analyzed == 0
        assert stored.quality_score == 0
        assert stored.issues_found == 0

    @pytest.mark.asyncio
    async def test_comment_failure_keeps_completed(
        self, store, repository, broadcaster, analyzer, metrics
    ):
        github = FakeGitHubClient(
            files=["a.py"], comment_error=GitHubAPIError("Forbidden", status_code=403)
        )
        service = ReviewService(
            store, broadcaster, analyzer, github_client_factory=github, fetch_delay=0,
            metrics=metrics,
        )
        review = await create_review(store, repository)

        await run(service, review.id)

        stored = await store.get_review(review.id)
        assert stored.status == ReviewStatus.COMPLETED
        assert metrics.get_metric("comment_failures_total").value == 1

    @pytest.mark.asyncio
    async def test_comments_disabled(self, store, repository, broadcaster, analyzer, metrics):
        github = FakeGitHubClient(files=["a.py"])
        service = ReviewService(
            store, broadcaster, analyzer, github_client_factory=github, fetch_delay=0,
            post_comments=False, metrics=metrics,
        )
        review = await create_review(store, repository)

        await run(service, review.id)

        assert github.comments == []

    @pytest.mark.asyncio
    async def test_missing_review(self, review_service, github):
        assert await run(review_service, 9999) is None
        assert github.tokens == []

    @pytest.mark.asyncio
    async def test_terminal_review_not_reprocessed(self, store, repository, review_service, github):
        review = await create_review(store, repository)
        await store.transition(review.id, ReviewStatus.FAILED, summary="earlier failure")

        await run(review_service, review.id)

        stored = await store.get_review(review.id)
        assert stored.status == ReviewStatus.FAILED
        assert stored.summary == "earlier failure"
        assert github.fetched == []


class TestStatusSequences:
    """Every observed status path is a prefix of an allowed path."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "github_kwargs",
        [
            {"files": ["a.py"]},
            {"files": []},
            {"files": ["a.py"], "contents": {"a.py": GitHubAPIError("x")}},
            {"list_error": RuntimeError("network")},
        ],
    )
    async def test_paths(
        self, store, repository, broadcaster, analyzer, metrics, user_connection, github_kwargs
    ):
        github = FakeGitHubClient(**github_kwargs)
        service = ReviewService(
            store, broadcaster, analyzer, github_client_factory=github, fetch_delay=0,
            metrics=metrics,
        )
        review = await create_review(store, repository)

        await run(service, review.id)

        path = status_path(user_connection)
        assert any(allowed[: len(path)] == path for allowed in ALLOWED_PATHS)
        assert path[-1] in ("completed", "failed")


class TestFailReview:
    @pytest.mark.asyncio
    async def test_fail_pending_review(self, store, repository, review_service, user_connection):
        review = await create_review(store, repository)

        failed = await review_service.fail_review(review.id, "Repository has no token")

        assert failed.status == ReviewStatus.FAILED
        assert failed.summary == "Repository has no token"
        assert user_connection.messages[-1]["data"]["message"] == "Repository has no token"

    @pytest.mark.asyncio
    async def test_fail_completed_review_is_noop(self, store, repository, review_service):
        review = await create_review(store, repository)
        await store.transition(review.id, ReviewStatus.COMPLETED, findings=[])

        assert await review_service.fail_review(review.id, "late") is None
        assert (await store.get_review(review.id)).status == ReviewStatus.COMPLETED
