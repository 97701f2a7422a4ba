"""
Tests for GitHub webhook handler.

Tests signature verification, payload parsing, and pull request event handling.
"""

import json
import hmac
import hashlib

import pytest

from prreview.database import ReviewStatus
from prreview.webhooks.github import (
    build_pr_context,
    handle_pull_request_event,
    parse_github_payload,
    verify_github_signature,
)


# ============================================================================
# Test Data & Fixtures
# ============================================================================

WEBHOOK_SECRET = "test-webhook-secret"


def create_signature(payload: bytes, secret: str) -> str:
    """Create valid GitHub webhook signature."""
    signature = hmac.new(
        secret.encode(),
        payload,
        hashlib.sha256
    ).hexdigest()
    return f"sha256={signature}"


@pytest.fixture
def sample_pr_synchronize_payload(sample_pr_opened_payload):
    """Sample GitHub webhook payload for PR synchronize (push) event."""
    payload = json.loads(json.dumps(sample_pr_opened_payload))
    payload["action"] = "synchronize"
    payload["pull_request"]["head"]["sha"] = "new456sha789"
    return payload


# ============================================================================
# Test Signature Verification
# ============================================================================

class TestSignatureVerification:
    """Tests for GitHub webhook signature verification."""

    def test_verify_valid_signature(self, sample_pr_opened_payload):
        """Test verification of valid signature."""
        payload_bytes = json.dumps(sample_pr_opened_payload).encode()
        signature = create_signature(payload_bytes, WEBHOOK_SECRET)

        assert verify_github_signature(payload_bytes, signature, WEBHOOK_SECRET) is True

    def test_any_flipped_hex_character_fails(self, sample_pr_opened_payload):
        """Test that changing any single hex digit invalidates the signature."""
        payload_bytes = json.dumps(sample_pr_opened_payload).encode()
        signature = create_signature(payload_bytes, WEBHOOK_SECRET)
        prefix, digest = signature.split("=", 1)

        for index, char in enumerate(digest):
            flipped = "0" if char != "0" else "1"
            tampered = f"{prefix}={digest[:index]}{flipped}{digest[index + 1:]}"
            assert verify_github_signature(payload_bytes, tampered, WEBHOOK_SECRET) is False

    def test_verify_wrong_secret(self, sample_pr_opened_payload):
        """Test rejection when wrong secret used."""
        payload_bytes = json.dumps(sample_pr_opened_payload).encode()
        signature = create_signature(payload_bytes, "wrong-secret")

        assert verify_github_signature(payload_bytes, signature, WEBHOOK_SECRET) is False

    def test_verify_tampered_payload(self, sample_pr_opened_payload):
        """Test rejection if payload was tampered with."""
        payload_bytes = json.dumps(sample_pr_opened_payload).encode()
        signature = create_signature(payload_bytes, WEBHOOK_SECRET)

        assert verify_github_signature(payload_bytes + b"extra", signature, WEBHOOK_SECRET) is False

    @pytest.mark.parametrize(
        "header",
        ["", "invalid-format", "sha1=somesignature", "sha256=", "sha256=zzé"],
    )
    def test_malformed_headers_rejected(self, header):
        """Test malformed headers are rejected without raising."""
        assert verify_github_signature(b"{}", header, WEBHOOK_SECRET) is False


# ============================================================================
# Test Payload Parsing
# ============================================================================

class TestPayloadParsing:
    """Tests for GitHub webhook payload parsing."""

    def test_parse_valid_payload(self, sample_pr_opened_payload):
        """Test parsing of valid payload."""
        payload = parse_github_payload(sample_pr_opened_payload)

        assert payload is not None
        assert payload.action == "opened"
        assert payload.pull_request.number == 42
        assert payload.pull_request.title == "Add security fix"
        assert payload.pull_request.head_sha == "abc123def456"
        assert payload.pull_request.user.login == "developer"
        assert payload.repository.id == 111222333
        assert payload.repository.full_name == "octo/repo"
        assert payload.sender.login == "developer"

    def test_parse_pr_synchronize(self, sample_pr_synchronize_payload):
        """Test parsing of PR synchronize (push) event."""
        payload = parse_github_payload(sample_pr_synchronize_payload)

        assert payload.action == "synchronize"
        assert payload.pull_request.head_sha == "new456sha789"

    def test_parse_missing_action(self, sample_pr_opened_payload):
        """Test parsing handles missing action field."""
        del sample_pr_opened_payload["action"]

        assert parse_github_payload(sample_pr_opened_payload) is None

    def test_parse_missing_pull_request(self, sample_pr_opened_payload):
        """Test parsing handles missing pull_request field."""
        del sample_pr_opened_payload["pull_request"]

        assert parse_github_payload(sample_pr_opened_payload) is None

    def test_parse_missing_required_pr_field(self, sample_pr_opened_payload):
        """Test parsing handles missing required PR fields."""
        del sample_pr_opened_payload["pull_request"]["number"]

        with pytest.raises(ValueError, match="Invalid payload structure"):
            parse_github_payload(sample_pr_opened_payload)

    def test_parse_missing_repository(self, sample_pr_opened_payload):
        del sample_pr_opened_payload["repository"]

        with pytest.raises(ValueError, match="Invalid payload structure"):
            parse_github_payload(sample_pr_opened_payload)

    def test_parse_non_object(self):
        with pytest.raises(ValueError):
            parse_github_payload(["not", "an", "object"])

    def test_pr_context_includes_body(self, sample_pr_opened_payload):
        pr = parse_github_payload(sample_pr_opened_payload).pull_request
        assert build_pr_context(pr) == (
            "PR #42: Add security fix\n\nThis PR fixes a SQL injection vulnerability"
        )

        pr.body = None
        assert build_pr_context(pr) == "PR #42: Add security fix"


# ============================================================================
# Test Pull Request Event Handling
# ============================================================================

class TestPullRequestEvent:
    """Tests for creating reviews from pull request events."""

    @pytest.mark.asyncio
    async def test_opened_creates_review_and_job(
        self, store, repository, review_service, user_connection, sample_pr_opened_payload
    ):
        """Test an opened PR on a connected repository creates a pending review."""
        payload = parse_github_payload(sample_pr_opened_payload)

        job = await handle_pull_request_event(payload, store, review_service)

        assert job is not None
        assert job.owner == "octo"
        assert job.repo == "repo"
        assert job.pull_number == 42
        assert job.commit_sha == "abc123def456"
        assert job.access_token == "gho_test_token"
        assert job.pr_context.startswith("PR #42: Add security fix")

        review = await store.get_review(job.review_id)
        assert review.status == ReviewStatus.PENDING
        assert review.author == "developer"
        assert review.reviewed_by == "u1"

        assert user_connection.events == ["review-created"]
        data = user_connection.messages[0]["data"]
        assert data["reviewId"] == job.review_id
        assert data["pullRequestNumber"] == 42
        assert data["repository"] == "octo/repo"
        assert "timestamp" in data

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ["reopened", "synchronize"])
    async def test_other_reviewable_actions(
        self, store, repository, review_service, sample_pr_opened_payload, action
    ):
        sample_pr_opened_payload["action"] = action
        payload = parse_github_payload(sample_pr_opened_payload)

        assert await handle_pull_request_event(payload, store, review_service) is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action", ["closed", "edited", "labeled"])
    async def test_ignored_actions(
        self, store, repository, review_service, user_connection, sample_pr_opened_payload, action
    ):
        """Test non-review actions create nothing."""
        sample_pr_opened_payload["action"] = action
        payload = parse_github_payload(sample_pr_opened_payload)

        assert await handle_pull_request_event(payload, store, review_service) is None
        assert await store.list_reviews() == []
        assert user_connection.messages == []

    @pytest.mark.asyncio
    async def test_unknown_repository(
        self, store, review_service, user_connection, sample_pr_opened_payload
    ):
        """Test events for repositories that were never connected are ignored."""
        payload = parse_github_payload(sample_pr_opened_payload)

        assert await handle_pull_request_event(payload, store, review_service) is None
        assert await store.list_reviews() == []
        assert user_connection.messages == []

    @pytest.mark.asyncio
    async def test_missing_token_fails_review(
        self, store, tokenless_repository, review_service, broadcaster, github,
        sample_pr_opened_payload,
    ):
        """Test a repository without a token fails the review without any fetch."""
        from conftest import RecordingConnection

        connection = RecordingConnection()
        broadcaster.subscribe("user_u2", connection)
        sample_pr_opened_payload["repository"]["id"] = 444555666
        payload = parse_github_payload(sample_pr_opened_payload)

        job = await handle_pull_request_event(payload, store, review_service)

        assert job is None
        [review] = await store.list_reviews()
        assert review.status == ReviewStatus.FAILED
        assert "access token" in review.summary
        assert connection.events == ["review-created", "review-updated"]
        assert connection.messages[1]["data"]["status"] == "failed"
        assert github.tokens == []
        assert github.fetched == []
