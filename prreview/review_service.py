"""
Review Service - End-to-End Pipeline Orchestration

Coordinates the complete code review workflow for one pull request:
1. Status tracking (pending -> in_progress -> completed/failed)
2. Changed file listing and filtering
3. File content fetching at the head commit
4. Code analysis
5. Result storage and real-time notifications
6. PR commenting
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from prreview.analysis.analyzer import CodeAnalyzer, SourceFile
from prreview.config import settings
from prreview.database import Review, ReviewStatus
from prreview.integrations.github_api import GitHubAPIClient, format_review_comment
from prreview.monitoring import MetricsCollector, get_metrics
from prreview.notifications.broadcaster import (
    REVIEW_COMPLETED,
    REVIEW_CREATED,
    REVIEW_UPDATED,
    NotificationBroadcaster,
    build_event_payload,
)
from prreview.review_store import ReviewStore

logger = logging.getLogger(__name__)

NO_CODE_FILES_SUMMARY = "No code files to review in this PR"
FETCH_FAILED_SUMMARY = "Failed to fetch PR files"


# ============================================================================
# Review Service
# ============================================================================


class ReviewService:
    """
    Orchestrates the complete code review pipeline.

    Responsibilities:
    - Drive the review through its status transitions
    - Fetch changed files from GitHub
    - Run analysis
    - Store results
    - Notify connected clients
    - Post comments
    - Handle errors

    A single instance is shared by all webhook requests; per-review state
    lives only in ``process_review``'s locals.
    """

    def __init__(
        self,
        store: ReviewStore,
        broadcaster: NotificationBroadcaster,
        analyzer: CodeAnalyzer,
        github_client_factory: Callable[[str], GitHubAPIClient] = GitHubAPIClient,
        max_files: Optional[int] = None,
        fetch_delay: Optional[float] = None,
        post_comments: Optional[bool] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize ReviewService.

        Args:
            store: Review record store
            broadcaster: Real-time notification broadcaster
            analyzer: Code analyzer
            github_client_factory: Builds a GitHub client from an access token
            max_files: Maximum files analyzed per PR (uses config if not provided)
            fetch_delay: Seconds between file fetches (uses config if not provided)
            post_comments: Whether to post the review as a PR comment
                (uses config if not provided)
            metrics: Metrics collector (global collector if not provided)

        Raises:
            ValueError: If max_files is less than 1
        """
        self.store = store
        self.broadcaster = broadcaster
        self.analyzer = analyzer
        self.github_client_factory = github_client_factory
        self.max_files = settings.review_max_files if max_files is None else max_files
        if self.max_files < 1:
            raise ValueError("max_files must be at least 1")
        self.fetch_delay = (
            settings.file_fetch_delay_seconds if fetch_delay is None else fetch_delay
        )
        self.post_comments = (
            settings.post_review_comments if post_comments is None else post_comments
        )
        self.metrics = metrics or get_metrics()

    # ========================================================================
    # Notifications
    # ========================================================================

    async def _notify(self, review: Review, event: str, **fields: Any) -> None:
        await self.broadcaster.broadcast(
            review.reviewed_by,
            review.team_id,
            event,
            build_event_payload(review.id, **fields),
        )

    async def announce_created(self, review: Review, repository_name: str) -> None:
        """Broadcast ``review-created`` for a freshly created review."""
        self.metrics.increment("reviews_created_total")
        await self._notify(
            review,
            REVIEW_CREATED,
            pullRequestNumber=review.pull_request_number,
            pullRequestTitle=review.pull_request_title,
            repository=repository_name,
            status=ReviewStatus.PENDING.value,
        )

    async def _complete(self, review: Review) -> None:
        self.metrics.increment("reviews_completed_total")
        await self._notify(
            review,
            REVIEW_COMPLETED,
            pullRequestTitle=review.pull_request_title,
            filesAnalyzed=review.files_analyzed,
            issuesFound=review.issues_found,
            qualityScore=review.quality_score,
            summary=review.summary,
            status=ReviewStatus.COMPLETED.value,
        )

    async def fail_review(self, review_id: int, reason: str) -> Optional[Review]:
        """
        Move a review to ``failed`` and notify its owner.

        Args:
            review_id: Review record ID
            reason: Human readable failure description stored as the summary

        Returns:
            The failed Review, or None if it was already terminal or missing
        """
        review = await self.store.get_review(review_id)
        if review is None:
            logger.error(f"Cannot fail review {review_id}: not found")
            return None
        if ReviewStatus(review.status).is_terminal:
            logger.warning(
                f"Review {review_id} already {ReviewStatus(review.status).value}; "
                f"not marking failed"
            )
            return None

        review = await self.store.transition(
            review_id, ReviewStatus.FAILED, summary=reason
        )
        self.metrics.increment("reviews_failed_total")
        logger.warning(f"Review {review_id} failed: {reason}")
        await self._notify(
            review, REVIEW_UPDATED, status=ReviewStatus.FAILED.value, message=reason
        )
        return review

    # ========================================================================
    # Pipeline
    # ========================================================================

    async def process_review(
        self,
        review_id: int,
        owner: str,
        repo: str,
        pull_number: int,
        commit_sha: str,
        pr_context: str,
        access_token: str,
    ) -> Optional[Review]:
        """
        Process a code review end-to-end.

        Never raises: any unexpected error marks the review failed.

        Args:
            review_id: Review record ID
            owner: Repository owner login
            repo: Repository name
            pull_number: Pull request number
            commit_sha: Head commit the files are read at
            pr_context: Pull request title/description for the LLM
            access_token: Token of the user who connected the repository

        Returns:
            The review in its final state, or None if it does not exist
        """
        review = await self.store.get_review(review_id)
        if review is None:
            logger.error(f"Review {review_id} not found; skipping pipeline")
            return None

        logger.info(f"Processing review {review_id}: {owner}/{repo}#{pull_number}")

        try:
            with self.metrics.timer("review_pipeline_duration_seconds"):
                return await self._run_pipeline(
                    review_id, owner, repo, pull_number, commit_sha, pr_context, access_token
                )
        except Exception as e:
            logger.error(f"Review {review_id} failed: {str(e)}", exc_info=True)
            try:
                return await self.fail_review(review_id, f"Review failed: {str(e)}")
            except Exception as fail_error:
                logger.error(
                    f"Could not record failure of review {review_id}: {str(fail_error)}"
                )
                return None

    async def _run_pipeline(
        self,
        review_id: int,
        owner: str,
        repo: str,
        pull_number: int,
        commit_sha: str,
        pr_context: str,
        access_token: str,
    ) -> Optional[Review]:
        # Mark as in progress
        review = await self.store.transition(review_id, ReviewStatus.IN_PROGRESS)
        await self._notify(
            review,
            REVIEW_UPDATED,
            status=ReviewStatus.IN_PROGRESS.value,
            message="Fetching PR files...",
        )

        async with self.github_client_factory(access_token) as github:
            changed = await github.list_changed_files(owner, repo, pull_number)

            if not changed:
                logger.info(f"No code files in review {review_id}")
                review = await self.store.transition(
                    review_id,
                    ReviewStatus.COMPLETED,
                    files_analyzed=0,
                    quality_score=100,
                    summary=NO_CODE_FILES_SUMMARY,
                    findings=[],
                )
                await self._complete(review)
                return review

            if len(changed) > self.max_files:
                logger.info(
                    f"Review {review_id}: limiting {len(changed)} files to {self.max_files}"
                )
            selected = [f["filename"] for f in changed[: self.max_files]]

            files = await self._fetch_files(github, owner, repo, selected, commit_sha)
            if not files:
                return await self.fail_review(review_id, FETCH_FAILED_SUMMARY)

            await self._notify(
                review,
                REVIEW_UPDATED,
                status=ReviewStatus.IN_PROGRESS.value,
                message=f"Analyzing {len(files)} files...",
            )
            result = await self.analyzer.analyze_batch(files, pr_context)

            review = await self.store.transition(
                review_id,
                ReviewStatus.COMPLETED,
                files_analyzed=result.files_analyzed,
                quality_score=result.quality_score,
                summary=result.summary,
                findings=result.findings,
            )
            logger.info(
                f"Review {review_id} completed: {review.issues_found} findings, "
                f"score {review.quality_score}"
            )
            await self._complete(review)

            if self.post_comments:
                await self._post_comment(github, owner, repo, pull_number, review)

        return review

    async def _fetch_files(
        self,
        github: GitHubAPIClient,
        owner: str,
        repo: str,
        filenames: List[str],
        commit_sha: str,
    ) -> List[SourceFile]:
        """
        Fetch file contents one at a time, skipping files that fail.

        Returns:
            Files whose content could be read
        """
        files: List[SourceFile] = []
        for index, filename in enumerate(filenames):
            if index > 0 and self.fetch_delay > 0:
                await asyncio.sleep(self.fetch_delay)
            try:
                content = await github.get_file_content(owner, repo, filename, commit_sha)
            except Exception as e:
                self.metrics.increment("file_fetch_failures_total")
                logger.error(f"Error fetching file {filename}: {str(e)}")
                continue

            if content is None:
                logger.warning(f"No content for {filename}; skipping")
                continue

            self.metrics.increment("files_fetched_total")
            files.append(SourceFile(name=filename, content=content))

        logger.info(f"Fetched {len(files)} of {len(filenames)} files")
        return files

    async def _post_comment(
        self,
        github: GitHubAPIClient,
        owner: str,
        repo: str,
        pull_number: int,
        review: Review,
    ) -> None:
        """Post the review as a PR comment; failures never affect the review."""
        try:
            await github.post_pr_comment(
                owner, repo, pull_number, format_review_comment(review)
            )
        except Exception as e:
            self.metrics.increment("comment_failures_total")
            logger.error(f"Failed to post comment to PR #{pull_number}: {str(e)}")
            return
        self.metrics.increment("comments_posted_total")
        logger.info(f"Posted review comment to {owner}/{repo}#{pull_number}")
