"""
Database configuration, session management, and SQLAlchemy ORM models.

Provides:
- Database engine initialization
- Session factory
- SQLAlchemy ORM models for Repository, Review and Finding
- Table creation helper
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator

from sqlalchemy import (
    create_engine,
    Boolean,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
    event,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker, relationship

from prreview.config import settings

# ============================================================================
# Database Engine & Session Configuration
# ============================================================================


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_engine(database_url: str):
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite connections are shared with the thread pool the review store runs
    in, so same-thread checking is disabled and foreign keys are enforced.
    """
    is_sqlite = database_url.startswith("sqlite")
    kwargs: Dict[str, Any] = {}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        # Connection pooling for production
        kwargs["pool_size"] = 10
        kwargs["max_overflow"] = 20

    new_engine = create_engine(database_url, **kwargs)

    if is_sqlite:

        @event.listens_for(new_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine(settings.database_url)

# Session factory for creating database sessions. Objects stay readable after
# commit because the review store hands them to other tasks.
SessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
)

# Base class for all ORM models
Base = declarative_base()


# ============================================================================
# Enums for ORM Models
# ============================================================================


class ReviewStatus(str, Enum):
    """Status of a pull request review."""

    PENDING = "pending"  # Created from a webhook, waiting for the pipeline
    IN_PROGRESS = "in_progress"  # Files are being fetched and analyzed
    COMPLETED = "completed"  # Analysis complete
    FAILED = "failed"  # Analysis failed with error

    @property
    def is_terminal(self) -> bool:
        return self in (ReviewStatus.COMPLETED, ReviewStatus.FAILED)


class FindingSeverity(str, Enum):
    """Severity level of a finding."""

    CRITICAL = "critical"  # Security issues, crashes
    HIGH = "high"  # Bugs
    MEDIUM = "medium"  # Code quality
    LOW = "low"  # Style
    INFO = "info"  # Suggestions


class FindingCategory(str, Enum):
    """Category of a code finding."""

    BUG = "bug"
    SECURITY = "security"
    PERFORMANCE = "performance"
    STYLE = "style"
    BEST_PRACTICE = "best-practice"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ============================================================================
# ORM Models
# ============================================================================


class Repository(Base):
    """
    A GitHub repository connected to the service.

    Rows are written by the repository management surface; the review
    pipeline only reads them to find the owner and the access token.
    """

    __tablename__ = "repositories"

    id = Column(Integer, primary_key=True, index=True)

    # GitHub's numeric repository id (matches webhook payload repository.id)
    github_repo_id = Column(Integer, unique=True, index=True, nullable=False)

    name = Column(String(255), nullable=False)

    # owner/repo
    full_name = Column(String(512), unique=True, nullable=False)

    owner = Column(String(255), nullable=False)

    default_branch = Column(String(255), default="main", nullable=False)

    # Token used for GitHub API calls on behalf of the connecting user
    access_token = Column(String(255), nullable=True)

    # User who connected the repository (owns the resulting reviews)
    connected_by = Column(String(64), nullable=False, index=True)

    team_id = Column(String(64), nullable=True, index=True)

    webhook_active = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=_utcnow, nullable=False)

    reviews = relationship(
        "Review", back_populates="repository", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Repository(id={self.id}, full_name={self.full_name})>"


class Review(Base):
    """
    Represents one AI review pass over a pull request's changed files.

    Every webhook event creates a new row; there is no uniqueness on
    (repository_id, pull_request_number).
    """

    __tablename__ = "reviews"

    # Primary key
    id = Column(Integer, primary_key=True, index=True)

    repository_id = Column(
        Integer,
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    pull_request_number = Column(Integer, nullable=False, index=True)
    pull_request_title = Column(String(512), nullable=False)
    pull_request_url = Column(String(512), nullable=False)
    author = Column(String(255), nullable=False)

    # Head commit the files are fetched at
    commit_sha = Column(String(64), nullable=False)

    # Review status (pending, in_progress, completed, failed)
    status = Column(
        SQLEnum(ReviewStatus, values_callable=_enum_values),
        default=ReviewStatus.PENDING,
        nullable=False,
        index=True,
    )

    files_analyzed = Column(Integer, default=0, nullable=False)
    summary = Column(Text, default="", nullable=False)

    # 0-100, set once the review completes
    quality_score = Column(Integer, nullable=True)

    reviewed_by = Column(String(64), nullable=False, index=True)
    team_id = Column(String(64), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    repository = relationship("Repository", back_populates="reviews")

    # Relationship to findings, in the order the AI reported them
    findings = relationship(
        "Finding",
        back_populates="review",
        cascade="all, delete-orphan",
        order_by="Finding.position",
    )

    @property
    def issues_found(self) -> int:
        """Number of findings; derived so it can never drift from the list."""
        return len(self.findings)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the review and its findings for API responses."""
        return {
            "id": self.id,
            "repository_id": self.repository_id,
            "pull_request_number": self.pull_request_number,
            "pull_request_title": self.pull_request_title,
            "pull_request_url": self.pull_request_url,
            "author": self.author,
            "commit_sha": self.commit_sha,
            "status": ReviewStatus(self.status).value,
            "files_analyzed": self.files_analyzed,
            "issues_found": self.issues_found,
            "quality_score": self.quality_score,
            "summary": self.summary,
            "reviewed_by": self.reviewed_by,
            "team_id": self.team_id,
            "findings": [finding.to_dict() for finding in self.findings],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }

    def __repr__(self) -> str:
        return (
            f"<Review(id={self.id}, pr={self.pull_request_number}, "
            f"status={self.status})>"
        )


class Finding(Base):
    """
    One issue reported by the AI for a file/line of a review.

    Findings have no identity outside their review.
    """

    __tablename__ = "findings"

    # Primary key
    id = Column(Integer, primary_key=True, index=True)

    # Foreign key to review
    review_id = Column(
        Integer,
        ForeignKey("reviews.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Insertion order within the review
    position = Column(Integer, nullable=False, default=0)

    # File path where the issue was found
    file = Column(String(512), nullable=False)

    # Line number in the file (0 when the AI gave none)
    line = Column(Integer, nullable=False, default=0)

    severity = Column(
        SQLEnum(FindingSeverity, values_callable=_enum_values),
        nullable=False,
        index=True,
    )

    category = Column(
        SQLEnum(FindingCategory, values_callable=_enum_values),
        nullable=False,
        index=True,
    )

    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    suggestion = Column(Text, nullable=True)
    code_snippet = Column(Text, nullable=True)

    # Relationship to review
    review = relationship("Review", back_populates="findings")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "severity": FindingSeverity(self.severity).value,
            "category": FindingCategory(self.category).value,
            "title": self.title,
            "description": self.description,
            "suggestion": self.suggestion,
            "code_snippet": self.code_snippet,
        }

    def __repr__(self) -> str:
        return f"<Finding(id={self.id}, review_id={self.review_id}, severity={self.severity})>"


# ============================================================================
# Database Initialization
# ============================================================================


def init_db(bind=None) -> None:
    """
    Initialize the database by creating all tables.

    Should be called once on application startup or during setup.
    """
    Base.metadata.create_all(bind=bind or engine)



def get_db() -> Iterator[Session]:
    """
    FastAPI dependency that provides a database session.

    Yields a new database session and ensures it's closed after use.

    Example:
        @app.get("/repositories")
        def list_repositories(db: Session = Depends(get_db)):
            return db.query(Repository).all()

    Yields:
        Session: A SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
