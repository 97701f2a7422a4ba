"""
Review Record Store

Async facade over the SQLAlchemy session factory. Every operation opens its
own session, touches only the rows it is keyed on and runs in the thread
pool, so concurrent pipelines never share a session or a Review row.

The store also owns the review state machine: status changes go through
``transition`` which rejects anything that would move a review backwards or
out of a terminal state.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func
from sqlalchemy.orm import selectinload, sessionmaker

from prreview.database import (
    Finding,
    FindingCategory,
    FindingSeverity,
    Repository,
    Review,
    ReviewStatus,
    SessionLocal,
)

logger = logging.getLogger(__name__)


# ============================================================================
# State Machine
# ============================================================================

ALLOWED_TRANSITIONS = {
    ReviewStatus.PENDING: {
        ReviewStatus.IN_PROGRESS,
        ReviewStatus.COMPLETED,
        ReviewStatus.FAILED,
    },
    ReviewStatus.IN_PROGRESS: {ReviewStatus.COMPLETED, ReviewStatus.FAILED},
    ReviewStatus.COMPLETED: set(),
    ReviewStatus.FAILED: set(),
}


def can_transition(current: ReviewStatus, target: ReviewStatus) -> bool:
    """Return True if a review may move from ``current`` to ``target``."""
    return target in ALLOWED_TRANSITIONS[ReviewStatus(current)]


# ============================================================================
# Custom Exceptions
# ============================================================================


class ReviewStoreError(Exception):
    """Base exception for review store errors."""

    pass


class ReviewNotFoundError(ReviewStoreError):
    """Raised when a review id does not exist."""

    pass


class InvalidStatusTransitionError(ReviewStoreError):
    """Raised when a status change is not allowed by the state machine."""

    def __init__(self, review_id: int, current: ReviewStatus, target: ReviewStatus):
        self.review_id = review_id
        self.current = ReviewStatus(current)
        self.target = ReviewStatus(target)
        super().__init__(
            f"Review {review_id} cannot move from {self.current.value} "
            f"to {self.target.value}"
        )


# ============================================================================
# Review Store
# ============================================================================


class ReviewStore:
    """
    Persistence for repositories, reviews and findings.

    All public methods are coroutines; the blocking SQLAlchemy work runs in
    the thread pool.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        """
        Initialize ReviewStore.

        Args:
            session_factory: SQLAlchemy session factory (defaults to SessionLocal)
        """
        self.session_factory = session_factory or SessionLocal

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    async def add_repository(self, **fields: Any) -> Repository:
        """Insert a connected repository (seeding and tests)."""
        return await run_in_threadpool(self._add_repository, fields)

    def _add_repository(self, fields: Dict[str, Any]) -> Repository:
        with self.session_factory() as db:
            repository = Repository(**fields)
            db.add(repository)
            db.commit()
            db.refresh(repository)
            return repository

    async def get_repository_by_github_id(
        self, github_repo_id: int
    ) -> Optional[Repository]:
        """Look up a connected repository by GitHub's repository id."""
        return await run_in_threadpool(
            self._get_repository_by_github_id, github_repo_id
        )

    def _get_repository_by_github_id(self, github_repo_id: int) -> Optional[Repository]:
        with self.session_factory() as db:
            return (
                db.query(Repository)
                .filter(Repository.github_repo_id == github_repo_id)
                .first()
            )

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    async def create_review(
        self,
        repository: Repository,
        pull_request_number: int,
        pull_request_title: str,
        pull_request_url: str,
        author: str,
        commit_sha: str,
    ) -> Review:
        """
        Create a pending review owned by the repository's connecting user.

        Returns:
            The new Review with its id assigned
        """
        return await run_in_threadpool(
            self._create_review,
            repository,
            pull_request_number,
            pull_request_title,
            pull_request_url,
            author,
            commit_sha,
        )

    def _create_review(
        self,
        repository: Repository,
        pull_request_number: int,
        pull_request_title: str,
        pull_request_url: str,
        author: str,
        commit_sha: str,
    ) -> Review:
        with self.session_factory() as db:
            review = Review(
                repository_id=repository.id,
                pull_request_number=pull_request_number,
                pull_request_title=pull_request_title,
                pull_request_url=pull_request_url,
                author=author,
                commit_sha=commit_sha,
                status=ReviewStatus.PENDING,
                reviewed_by=repository.connected_by,
                team_id=repository.team_id,
            )
            db.add(review)
            db.commit()
            return self._load_review(db, review.id)

    async def get_review(self, review_id: int) -> Optional[Review]:
        """Fetch a review with its findings, or None if it does not exist."""
        return await run_in_threadpool(self._get_review, review_id)

    def _get_review(self, review_id: int) -> Optional[Review]:
        with self.session_factory() as db:
            return self._load_review(db, review_id)

    @staticmethod
    def _load_review(db, review_id: int) -> Optional[Review]:
        return (
            db.query(Review)
            .options(selectinload(Review.findings))
            .filter(Review.id == review_id)
            .first()
        )

    async def list_reviews(
        self,
        repository_id: Optional[int] = None,
        reviewed_by: Optional[str] = None,
        team_id: Optional[str] = None,
        status: Optional[ReviewStatus] = None,
    ) -> List[Review]:
        """List reviews matching the given filters, newest first."""
        return await run_in_threadpool(
            self._list_reviews, repository_id, reviewed_by, team_id, status
        )

    def _list_reviews(
        self,
        repository_id: Optional[int],
        reviewed_by: Optional[str],
        team_id: Optional[str],
        status: Optional[ReviewStatus],
    ) -> List[Review]:
        with self.session_factory() as db:
            query = db.query(Review).options(selectinload(Review.findings))
            if repository_id is not None:
                query = query.filter(Review.repository_id == repository_id)
            if reviewed_by is not None:
                query = query.filter(Review.reviewed_by == reviewed_by)
            if team_id is not None:
                query = query.filter(Review.team_id == team_id)
            if status is not None:
                query = query.filter(Review.status == ReviewStatus(status))
            return query.order_by(Review.created_at.desc(), Review.id.desc()).all()

    async def transition(
        self,
        review_id: int,
        status: ReviewStatus,
        *,
        summary: Optional[str] = None,
        files_analyzed: Optional[int] = None,
        quality_score: Optional[int] = None,
        findings: Optional[Iterable[Any]] = None,
    ) -> Review:
        """
        Move a review to a new status and persist the accompanying fields.

        Args:
            review_id: Review record ID
            status: Target status
            summary: Summary text to store
            files_analyzed: Number of files analyzed
            quality_score: Aggregate quality score (0-100)
            findings: Findings to store, replacing any existing ones. Items may
                be objects exposing ``to_dict()`` or plain dicts.

        Returns:
            The updated Review

        Raises:
            ReviewNotFoundError: If the review does not exist
            InvalidStatusTransitionError: If the state machine forbids the move
        """
        finding_rows = None
        if findings is not None:
            finding_rows = [
                item.to_dict() if hasattr(item, "to_dict") else dict(item)
                for item in findings
            ]
        return await run_in_threadpool(
            self._transition,
            review_id,
            ReviewStatus(status),
            summary,
            files_analyzed,
            quality_score,
            finding_rows,
        )

    def _transition(
        self,
        review_id: int,
        status: ReviewStatus,
        summary: Optional[str],
        files_analyzed: Optional[int],
        quality_score: Optional[int],
        finding_rows: Optional[List[Dict[str, Any]]],
    ) -> Review:
        with self.session_factory() as db:
            review = db.query(Review).filter(Review.id == review_id).first()
            if review is None:
                raise ReviewNotFoundError(f"Review {review_id} not found")

            if not can_transition(review.status, status):
                raise InvalidStatusTransitionError(review_id, review.status, status)

            review.status = status
            if summary is not None:
                review.summary = summary
            if files_analyzed is not None:
                review.files_analyzed = files_analyzed
            if quality_score is not None:
                review.quality_score = quality_score
            if finding_rows is not None:
                review.findings = [
                    Finding(
                        position=index,
                        file=row.get("file") or "unknown",
                        line=row.get("line") or 0,
                        severity=FindingSeverity(row["severity"]),
                        category=FindingCategory(row["category"]),
                        title=row["title"],
                        description=row["description"],
                        suggestion=row.get("suggestion"),
                        code_snippet=row.get("code_snippet"),
                    )
                    for index, row in enumerate(finding_rows)
                ]
            if status.is_terminal:
                review.completed_at = datetime.now(timezone.utc)

            db.commit()
            logger.debug(f"Review {review_id} status updated to {status.value}")
            return self._load_review(db, review_id)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_stats(self, team_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Aggregate review statistics.

        Returns:
            Dictionary with totals per status, average quality score and
            total issues found
        """
        return await run_in_threadpool(self._get_stats, team_id)

    def _get_stats(self, team_id: Optional[str]) -> Dict[str, Any]:
        with self.session_factory() as db:
            reviews = db.query(Review)
            findings = (
                db.query(func.count(Finding.id))
                .select_from(Finding)
                .join(Review, Finding.review_id == Review.id)
            )
            if team_id is not None:
                reviews = reviews.filter(Review.team_id == team_id)
                findings = findings.filter(Review.team_id == team_id)

            counts = {status: 0 for status in ReviewStatus}
            rows = (
                reviews.with_entities(Review.status, func.count(Review.id))
                .group_by(Review.status)
                .all()
            )
            for status, count in rows:
                counts[ReviewStatus(status)] = count

            avg_score = (
                reviews.filter(Review.quality_score.isnot(None))
                .with_entities(func.avg(Review.quality_score))
                .scalar()
            )

            return {
                "total_reviews": sum(counts.values()),
                "pending_reviews": counts[ReviewStatus.PENDING],
                "in_progress_reviews": counts[ReviewStatus.IN_PROGRESS],
                "completed_reviews": counts[ReviewStatus.COMPLETED],
                "failed_reviews": counts[ReviewStatus.FAILED],
                "avg_quality_score": round(float(avg_score), 1) if avg_score else 0.0,
                "total_issues": findings.scalar() or 0,
            }
