"""
Pytest configuration and shared fixtures.
"""

import json
from typing import Dict, List, Optional, Union

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from prreview.analysis.analyzer import CodeAnalyzer
from prreview.database import Base, Repository
from prreview.integrations.github_api import is_code_file
from prreview.llm.provider import LLMProvider
from prreview.monitoring import MetricsCollector
from prreview.notifications.broadcaster import NotificationBroadcaster
from prreview.review_service import ReviewService
from prreview.review_store import ReviewStore


# ============================================================================
# Test Doubles
# ============================================================================


class RecordingConnection:
    """Connection that records every message sent to it."""

    def __init__(self, fail: bool = False):
        self.messages: List[dict] = []
        self.fail = fail

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.messages.append(data)

    @property
    def events(self) -> List[str]:
        return [message["event"] for message in self.messages]


class FakeGitHubClient:
    """In-memory stand-in for GitHubAPIClient."""

    def __init__(
        self,
        files: Optional[List[str]] = None,
        contents: Optional[Dict[str, Union[str, Exception, None]]] = None,
        list_error: Optional[Exception] = None,
        comment_error: Optional[Exception] = None,
    ):
        self.files = files or []
        self.contents = contents or {}
        self.list_error = list_error
        self.comment_error = comment_error
        self.tokens: List[str] = []
        self.fetched: List[str] = []
        self.comments: List[str] = []

    def __call__(self, token: str) -> "FakeGitHubClient":
        self.tokens.append(token)
        return self

    async def __aenter__(self) -> "FakeGitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def list_changed_files(self, owner, repo, pull_number):
        if self.list_error is not None:
            raise self.list_error
        return [
            {"filename": name, "status": "modified"}
            for name in self.files
            if is_code_file(name)
        ]

    async def get_file_content(self, owner, repo, path, ref):
        self.fetched.append(path)
        content = self.contents.get(path, f"// contents of {path}\n")
        if isinstance(content, Exception):
            raise content
        return content

    async def post_pr_comment(self, owner, repo, pull_number, body):
        if self.comment_error is not None:
            raise self.comment_error
        self.comments.append(body)
        return {"id": len(self.comments)}


class FakeLLMProvider(LLMProvider):
    """LLM provider answering from a per-file table."""

    def __init__(self, responses: Optional[Dict[str, Union[str, dict, Exception]]] = None):
        self.responses = responses or {}
        self.calls: List[str] = []

    async def complete(self, prompt: str) -> str:
        raise NotImplementedError

    async def analyze_file(self, code: str, file_name: str, pr_context: str) -> str:
        self.calls.append(file_name)
        response = self.responses.get(
            file_name, {"summary": "Looks fine", "qualityScore": 90, "findings": []}
        )
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response


def make_finding(**overrides) -> dict:
    """LLM-style finding with sensible defaults."""
    finding = {
        "line": 10,
        "severity": "high",
        "category": "security",
        "title": "SQL injection",
        "description": "User input is concatenated into a query",
        "suggestion": "Use parameterized queries",
        "codeSnippet": "db.query('SELECT * FROM t WHERE id = ' + id)",
    }
    finding.update(overrides)
    return finding


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def session_factory():
    """
    Session factory bound to a fresh in-memory SQLite database.

    StaticPool keeps the single in-memory connection alive across the
    threads the review store runs in.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return ReviewStore(session_factory=session_factory)


@pytest.fixture
def repository(session_factory):
    """A connected repository with an access token, owned by user u1 in team t1."""
    with session_factory() as db:
        repo = Repository(
            github_repo_id=111222333,
            name="repo",
            full_name="octo/repo",
            owner="octo",
            access_token="gho_test_token",
            connected_by="u1",
            team_id="t1",
            webhook_active=True,
        )
        db.add(repo)
        db.commit()
        db.refresh(repo)
        return repo


@pytest.fixture
def tokenless_repository(session_factory):
    """A connected repository whose access token was revoked."""
    with session_factory() as db:
        repo = Repository(
            github_repo_id=444555666,
            name="legacy",
            full_name="octo/legacy",
            owner="octo",
            access_token=None,
            connected_by="u2",
            team_id=None,
        )
        db.add(repo)
        db.commit()
        db.refresh(repo)
        return repo


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def broadcaster(metrics):
    return NotificationBroadcaster(metrics=metrics)


@pytest.fixture
def user_connection(broadcaster):
    """Client subscribed to the repository owner's personal channel."""
    connection = RecordingConnection()
    broadcaster.subscribe("user_u1", connection)
    return connection


@pytest.fixture
def github():
    return FakeGitHubClient(files=["src/app.js", "src/db.py"])


@pytest.fixture
def llm():
    return FakeLLMProvider()


@pytest.fixture
def analyzer(llm, metrics):
    return CodeAnalyzer(
        llm_provider=llm,
        call_delay=0,
        max_attempts=1,
        backoff_seconds=0,
        timeout=5,
        metrics=metrics,
    )


@pytest.fixture
def review_service(store, broadcaster, analyzer, github, metrics):
    return ReviewService(
        store=store,
        broadcaster=broadcaster,
        analyzer=analyzer,
        github_client_factory=github,
        max_files=10,
        fetch_delay=0,
        post_comments=True,
        metrics=metrics,
    )


@pytest.fixture
def sample_pr_opened_payload():
    """Sample GitHub webhook payload for PR opened event."""
    return {
        "action": "opened",
        "pull_request": {
            "id": 123456789,
            "number": 42,
            "title": "Add security fix",
            "body": "This PR fixes a SQL injection vulnerability",
            "head": {"sha": "abc123def456", "ref": "feature/security-fix"},
            "base": {"ref": "main"},
            "user": {"login": "developer", "id": 999},
            "html_url": "https://github.com/octo/repo/pull/42",
        },
        "repository": {
            "id": 111222333,
            "name": "repo",
            "full_name": "octo/repo",
            "clone_url": "https://github.com/octo/repo.git",
        },
        "sender": {"login": "developer", "id": 999},
    }
