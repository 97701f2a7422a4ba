"""
GitHub Webhook Handler

Handles GitHub webhook events with signature verification.
Supports pull request opened, reopened and synchronize (push) events.
"""

import hmac
import hashlib
import logging
from typing import Dict, Any, Optional, TYPE_CHECKING
from dataclasses import dataclass

from prreview.review_store import ReviewStore

if TYPE_CHECKING:
    from prreview.review_service import ReviewService

logger = logging.getLogger(__name__)

REVIEWABLE_ACTIONS = ("opened", "reopened", "synchronize")


# ============================================================================
# GitHub Webhook Payload Models
# ============================================================================


@dataclass
class GitHubUser:
    """GitHub user information."""

    login: str
    id: int


@dataclass
class GitHubRepository:
    """GitHub repository information."""

    id: int
    name: str
    full_name: str
    clone_url: Optional[str] = None


@dataclass
class GitHubPullRequest:
    """GitHub pull request information."""

    id: int
    number: int
    title: str
    body: Optional[str]
    head_sha: str
    head_ref: str
    base_ref: str
    user: GitHubUser
    url: str


@dataclass
class GitHubWebhookPayload:
    """GitHub webhook payload."""

    action: str  # opened, synchronize, closed, etc.
    pull_request: GitHubPullRequest
    repository: GitHubRepository
    sender: Optional[GitHubUser] = None


@dataclass
class ReviewJob:
    """Everything the review pipeline needs, captured at webhook time."""

    review_id: int
    owner: str
    repo: str
    pull_number: int
    commit_sha: str
    pr_context: str
    access_token: str


# ============================================================================
# Webhook Signature Verification
# ============================================================================


def verify_github_signature(
    payload: bytes, signature_header: str, webhook_secret: str
) -> bool:
    """
    Verify GitHub webhook signature.

    GitHub sends X-Hub-Signature-256 header with format:
    sha256=<hex_digest>

    Args:
        payload: Raw request body bytes
        signature_header: Value of X-Hub-Signature-256 header
        webhook_secret: Secret configured in GitHub webhook settings

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature_header:
        logger.warning("Empty signature header")
        return False

    # Extract algorithm and signature from header
    try:
        algorithm, signature = signature_header.split("=", 1)
    except ValueError:
        logger.warning("Invalid signature header format")
        return False

    if algorithm != "sha256":
        logger.warning(f"Unexpected signature algorithm: {algorithm}")
        return False

    # Compute expected signature
    expected_signature = hmac.new(
        webhook_secret.encode(), payload, hashlib.sha256
    ).hexdigest()

    # Constant-time comparison
    return hmac.compare_digest(signature.encode(), expected_signature.encode())


# ============================================================================
# Webhook Payload Parsing
# ============================================================================


def parse_github_payload(
    payload_dict: Dict[str, Any],
) -> Optional[GitHubWebhookPayload]:
    """
    Parse GitHub webhook payload from JSON.

    Args:
        payload_dict: Parsed JSON webhook payload

    Returns:
        GitHubWebhookPayload if valid, None if it is not a pull request payload

    Raises:
        ValueError: If the payload structure cannot be parsed
    """
    if not isinstance(payload_dict, dict):
        raise ValueError("Invalid payload structure: expected a JSON object")

    try:
        # Extract action
        action = payload_dict.get("action")
        if not action:
            logger.warning("Webhook missing 'action' field")
            return None

        # Extract PR information
        pr_dict = payload_dict.get("pull_request", {})
        if not pr_dict:
            logger.warning("Webhook missing 'pull_request' field")
            return None

        pr = GitHubPullRequest(
            id=pr_dict["id"],
            number=int(pr_dict["number"]),
            title=pr_dict["title"],
            body=pr_dict.get("body"),
            head_sha=pr_dict["head"]["sha"],
            head_ref=pr_dict["head"]["ref"],
            base_ref=pr_dict["base"]["ref"],
            user=GitHubUser(login=pr_dict["user"]["login"], id=pr_dict["user"]["id"]),
            url=pr_dict["html_url"],
        )

        # Extract repository information
        repo_dict = payload_dict["repository"]
        repo = GitHubRepository(
            id=int(repo_dict["id"]),
            name=repo_dict["name"],
            full_name=repo_dict["full_name"],
            clone_url=repo_dict.get("clone_url"),
        )

        # Extract sender information
        sender = None
        sender_dict = payload_dict.get("sender")
        if sender_dict:
            sender = GitHubUser(login=sender_dict["login"], id=sender_dict["id"])

        return GitHubWebhookPayload(
            action=action,
            pull_request=pr,
            repository=repo,
            sender=sender,
        )

    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"Failed to parse GitHub webhook payload: {str(e)}")
        raise ValueError(f"Invalid payload structure: {str(e)}")


def build_pr_context(pull_request: GitHubPullRequest) -> str:
    """Title line plus the PR body, given to the LLM as context."""
    context = f"PR #{pull_request.number}: {pull_request.title}"
    if pull_request.body:
        context = f"{context}\n\n{pull_request.body}"
    return context


# ============================================================================
# Webhook Event Handler
# ============================================================================


async def handle_pull_request_event(
    payload: GitHubWebhookPayload,
    store: ReviewStore,
    review_service: "ReviewService",
) -> Optional[ReviewJob]:
    """
    Handle a pull_request webhook event.

    Creates a pending Review for opened/reopened/synchronize actions on a
    connected repository and announces it. Other actions and unknown
    repositories are ignored.

    Args:
        payload: Parsed GitHub webhook payload
        store: Review record store
        review_service: Pipeline orchestrator (used for notifications and
            for failing reviews that cannot start)

    Returns:
        ReviewJob to run after the HTTP response, or None when nothing is
        left to do
    """
    pr = payload.pull_request
    repo = payload.repository

    # Only handle opened, reopened and synchronize (code push) actions
    if payload.action not in REVIEWABLE_ACTIONS:
        logger.info(f"Ignoring PR action '{payload.action}' for PR #{pr.number}")
        return None

    repository = await store.get_repository_by_github_id(repo.id)
    if repository is None:
        logger.info(f"Repository not found in database: {repo.full_name}")
        return None

    logger.info(f"Processing PR #{pr.number} ({payload.action}) in {repo.full_name}")

    review = await store.create_review(
        repository,
        pull_request_number=pr.number,
        pull_request_title=pr.title,
        pull_request_url=pr.url,
        author=pr.user.login,
        commit_sha=pr.head_sha,
    )
    logger.info(f"Review {review.id} created for PR #{pr.number}")
    await review_service.announce_created(review, repo.full_name)

    if not repository.access_token:
        await review_service.fail_review(
            review.id,
            "Repository has no GitHub access token; reconnect the repository",
        )
        return None

    owner, _, name = repository.full_name.partition("/")
    return ReviewJob(
        review_id=review.id,
        owner=owner or repository.owner,
        repo=name or repository.name,
        pull_number=pr.number,
        commit_sha=pr.head_sha,
        pr_context=build_pr_context(pr),
        access_token=repository.access_token,
    )
