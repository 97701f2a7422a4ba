"""
Integrations Package

Provides integrations with external services (GitHub REST API).
"""

from prreview.integrations.github_api import (
    GitHubAPIClient,
    GitHubAPIError,
    RateLimitError,
    RepositoryNotFoundError,
    SecondaryRateLimitError,
    TransientGitHubError,
    format_review_comment,
    is_code_file,
)

__all__ = [
    "GitHubAPIClient",
    "GitHubAPIError",
    "RateLimitError",
    "RepositoryNotFoundError",
    "SecondaryRateLimitError",
    "TransientGitHubError",
    "format_review_comment",
    "is_code_file",
]
