"""
Webhooks Package

Provides webhook handlers for GitHub pull request events.
"""

from prreview.webhooks.github import (
    verify_github_signature,
    parse_github_payload,
    handle_pull_request_event,
    GitHubWebhookPayload,
    ReviewJob,
)

__all__ = [
    "verify_github_signature",
    "parse_github_payload",
    "handle_pull_request_event",
    "GitHubWebhookPayload",
    "ReviewJob",
]
