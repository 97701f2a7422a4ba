"""
GitHub API Integration

Provides an async GitHub REST client for the review pipeline: listing the
files changed by a pull request, fetching file contents at a commit and
posting the review summary back as a PR comment. Handles authentication,
retries with backoff, comment formatting, and error handling.
"""

import base64
import logging
from urllib.parse import quote
from typing import Any, Dict, List, Optional

import httpx

from prreview.config import settings
from prreview.resilience import call_with_retry

logger = logging.getLogger(__name__)


# ============================================================================
# Code File Filter
# ============================================================================

CODE_EXTENSIONS = frozenset(
    [
        ".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".go",
        ".rb", ".php", ".cpp", ".c", ".cs", ".swift", ".kt",
    ]
)


def is_code_file(filename: str) -> bool:
    """
    Return True if the file's extension is on the code allow-list.

    The extension is the suffix starting at the last ``.`` and is matched
    case-sensitively; names without a ``.`` are never code files.
    """
    dot = filename.rfind(".")
    if dot == -1:
        return False
    return filename[dot:] in CODE_EXTENSIONS


# ============================================================================
# Severity Indicators
# ============================================================================

SEVERITY_ORDER = ["critical", "high", "medium", "low", "info"]

SEVERITY_HEADINGS = {
    "critical": "🚨 Critical Issues",
    "high": "⚠️ High Priority Issues",
    "medium": "⚡ Medium Priority Issues",
    "low": "ℹ️ Low Priority Issues",
    "info": "💡 Suggestions",
}

CATEGORY_EMOJI = {
    "bug": "🐛",
    "security": "🛡️",
    "performance": "⚡",
    "style": "🎨",
    "best-practice": "✨",
}

SNIPPET_LANGUAGES = {
    "ts": "typescript", "js": "javascript", "jsx": "jsx", "tsx": "tsx",
    "py": "python", "java": "java", "go": "go", "rb": "ruby",
    "php": "php", "cpp": "cpp", "c": "c", "cs": "csharp",
    "swift": "swift", "kt": "kotlin",
}


# ============================================================================
# Custom Exceptions
# ============================================================================


class GitHubAPIError(Exception):
    """Raised when GitHub API request fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


class TransientGitHubError(GitHubAPIError):
    """Raised for failures worth retrying (network errors, 5xx, 429)."""

    pass


class RepositoryNotFoundError(GitHubAPIError):
    """Raised when repository or resource cannot be found."""

    pass


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded."""

    pass


class SecondaryRateLimitError(RateLimitError, TransientGitHubError):
    """Raised on 429 responses; these are retried with backoff."""

    pass


# ============================================================================
# GitHub API Client
# ============================================================================


class GitHubAPIClient:
    """
    Async client for the GitHub REST API v3.

    Use as an async context manager so the underlying HTTP connection pool
    is closed when the pipeline is done:

        async with GitHubAPIClient(token) as github:
            files = await github.list_changed_files("owner", "repo", 42)
    """

    PER_PAGE = 100

    def __init__(
        self,
        github_token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize GitHub API client.

        Args:
            github_token: Token of the user who connected the repository
            base_url: API base URL (uses config if not provided)
            timeout: Per-request timeout in seconds (uses config if not provided)
            max_attempts: Attempts per request (uses config if not provided)
            backoff_seconds: Base retry backoff (uses config if not provided)
            http_client: Shared httpx client; one is created and owned otherwise

        Raises:
            ValueError: If no GitHub token is given
        """
        if not github_token:
            raise ValueError("GitHub token is required")
        self.token = github_token
        self.base_url = (base_url or settings.github_api_url).rstrip("/")
        self.timeout = timeout or settings.github_timeout_seconds
        self.max_attempts = max_attempts or settings.upstream_max_attempts
        self.backoff_seconds = (
            settings.upstream_backoff_seconds
            if backoff_seconds is None
            else backoff_seconds
        )
        self._owns_client = http_client is None
        self._client = http_client

    async def __aenter__(self) -> "GitHubAPIClient":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "prreview/0.1",
        }

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make an authenticated request, retrying transient failures.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path (e.g., "/repos/owner/repo/issues/1/comments")
            data: Request body data (for POST/PATCH)
            params: Query string parameters

        Returns:
            JSON response from API

        Raises:
            GitHubAPIError: If request fails
            RateLimitError: If rate limit exceeded
            RepositoryNotFoundError: If repository not found
        """
        return await call_with_retry(
            lambda: self._send(method, endpoint, data, params),
            attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            timeout=self.timeout,
            retry_on=(TransientGitHubError,),
            description=f"GitHub {method} {endpoint}",
        )

    async def _send(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
    ) -> Any:
        if self._client is None:
            raise RuntimeError("GitHubAPIClient must be used as an async context manager")

        url = f"{self.base_url}{endpoint}"
        try:
            response = await self._client.request(
                method, url, json=data, params=params, headers=self._headers()
            )
        except httpx.TimeoutException as e:
            logger.warning(f"GitHub API request timed out: {endpoint}")
            raise TransientGitHubError(f"GitHub API request timed out: {str(e)}")
        except httpx.HTTPError as e:
            logger.warning(f"GitHub API request failed: {str(e)}")
            raise TransientGitHubError(f"GitHub API request failed: {str(e)}")

        # Handle rate limiting
        if response.status_code == 429 or (
            response.status_code == 403
            and response.headers.get("X-RateLimit-Remaining") == "0"
        ):
            remaining = response.headers.get("X-RateLimit-Remaining", "unknown")
            reset_time = response.headers.get("X-RateLimit-Reset", "unknown")
            logger.warning(
                f"GitHub API rate limit exceeded. Remaining: {remaining}, Reset: {reset_time}"
            )
            error_cls = (
                SecondaryRateLimitError if response.status_code == 429 else RateLimitError
            )
            raise error_cls(
                f"GitHub API rate limit exceeded. Remaining: {remaining}",
                status_code=response.status_code,
                response=response.text,
            )

        # Handle 404 (repository not found)
        if response.status_code == 404:
            logger.error(f"Repository or resource not found: {endpoint}")
            raise RepositoryNotFoundError(
                f"Repository or resource not found: {endpoint}",
                status_code=404,
                response=response.text,
            )

        if response.status_code >= 500:
            raise TransientGitHubError(
                f"GitHub API request failed: {response.status_code}",
                status_code=response.status_code,
                response=response.text,
            )

        # Handle other errors
        if response.status_code >= 400:
            logger.error(f"GitHub API error: {response.status_code} {response.text}")
            raise GitHubAPIError(
                f"GitHub API request failed: {response.status_code}",
                status_code=response.status_code,
                response=response.text,
            )

        return response.json()

    # ------------------------------------------------------------------
    # Pull request files
    # ------------------------------------------------------------------

    async def list_pull_request_files(
        self, owner: str, repo: str, pull_number: int
    ) -> List[Dict[str, Any]]:
        """
        List every file changed by a pull request, following pagination.

        Returns:
            File objects as returned by GitHub, in GitHub's order
        """
        files: List[Dict[str, Any]] = []
        page = 1
        while True:
            batch = await self._make_request(
                "GET",
                f"/repos/{owner}/{repo}/pulls/{pull_number}/files",
                params={"per_page": self.PER_PAGE, "page": page},
            )
            if not isinstance(batch, list):
                raise GitHubAPIError(f"Unexpected response shape for PR files: {batch!r}")
            files.extend(batch)
            if len(batch) < self.PER_PAGE:
                break
            page += 1
        return files

    async def list_changed_files(
        self, owner: str, repo: str, pull_number: int
    ) -> List[Dict[str, Any]]:
        """
        List the changed files of a pull request that are source code.

        Returns:
            File objects whose ``filename`` passes ``is_code_file``
        """
        files = await self.list_pull_request_files(owner, repo, pull_number)
        code_files = [f for f in files if is_code_file(f.get("filename", ""))]
        logger.info(
            f"{owner}/{repo}#{pull_number}: {len(code_files)} of {len(files)} "
            f"changed files are code"
        )
        return code_files

    async def get_file_content(
        self, owner: str, repo: str, path: str, ref: str
    ) -> Optional[str]:
        """
        Fetch a file's content at a specific commit.

        Returns:
            The decoded UTF-8 text, or None if the response carries no
            content (directories, submodules)
        """
        data = await self._make_request(
            "GET",
            f"/repos/{owner}/{repo}/contents/{quote(path, safe='/')}",
            params={"ref": ref},
        )
        if not isinstance(data, dict) or not data.get("content"):
            return None
        return base64.b64decode(data["content"]).decode("utf-8")

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def post_pr_comment(
        self, owner: str, repo: str, pull_number: int, body: str
    ) -> Dict[str, Any]:
        """
        Post a new comment on the pull request's conversation.

        Pull requests are issues in this part of the API, so the comment goes
        to the issue comments endpoint. Every call creates a new comment.

        Returns:
            API response with comment details

        Raises:
            GitHubAPIError: If posting comment fails
        """
        endpoint = f"/repos/{owner}/{repo}/issues/{pull_number}/comments"
        try:
            response = await self._make_request("POST", endpoint, data={"body": body})
        except GitHubAPIError as e:
            logger.error(
                f"Failed to post comment to {owner}/{repo}#{pull_number}: {str(e)}"
            )
            raise
        logger.info(f"Posted review comment to {owner}/{repo}#{pull_number}")
        return response


# ============================================================================
# Comment Formatting
# ============================================================================


def _quality_badge(score: int) -> str:
    if score >= 90:
        return "![Quality](https://img.shields.io/badge/Quality-Excellent-brightgreen)"
    if score >= 80:
        return "![Quality](https://img.shields.io/badge/Quality-Good-green)"
    if score >= 60:
        return "![Quality](https://img.shields.io/badge/Quality-Fair-yellow)"
    if score >= 40:
        return "![Quality](https://img.shields.io/badge/Quality-Needs%20Improvement-orange)"
    return "![Quality](https://img.shields.io/badge/Quality-Poor-red)"


def _quality_emoji(score: int) -> str:
    if score >= 90:
        return "🌟"
    if score >= 80:
        return "✅"
    if score >= 60:
        return "⚠️"
    return "❌"


def _value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def format_review_comment(review) -> str:
    """
    Format a completed review as a markdown comment for the pull request.

    Args:
        review: Object exposing quality_score, files_analyzed, issues_found,
            summary and findings (e.g. a Review row)

    Returns:
        Formatted markdown comment body
    """
    score = review.quality_score or 0
    findings = list(review.findings or [])
    lines = []

    # Header
    lines.append("## 🤖 AI Code Review")
    lines.append("")
    lines.append("| Quality Score | Files Analyzed | Issues Found |")
    lines.append("|:---:|:---:|:---:|")
    lines.append(
        f"| {_quality_emoji(score)} **{score}/100** {_quality_badge(score)} "
        f"| **{review.files_analyzed or 0}** | **{len(findings)}** |"
    )
    lines.append("")

    if review.summary:
        lines.append("### 📋 Summary")
        lines.append("")
        lines.append(f"> {review.summary}")
        lines.append("")

    if findings:
        groups: Dict[str, list] = {}
        for finding in findings:
            groups.setdefault(_value(finding.severity), []).append(finding)

        for severity in SEVERITY_ORDER:
            if severity not in groups:
                continue
            group = groups[severity]
            lines.append(f"### {SEVERITY_HEADINGS[severity]} ({len(group)})")
            lines.append("")
            for index, finding in enumerate(group, start=1):
                lines.append(_format_single_finding(index, finding))
                lines.append("")
    else:
        lines.append("### ✅ No Issues Found")
        lines.append("")
        lines.append("The changed code looks clean and well-written.")
        lines.append("")

    # Footer
    lines.append("---")
    lines.append("_Automated review powered by an LLM code reviewer_")

    return "\n".join(lines)


def _format_single_finding(index: int, finding) -> str:
    """Format one finding as a collapsible markdown block."""
    category = _value(finding.category)
    location = f"{finding.file}:{finding.line or '?'}"
    lines = [
        "<details>",
        f"<summary><b>{index}. {finding.title}</b> - <code>{location}</code></summary>",
        "",
        f"**Description:** {finding.description or 'No description provided.'}",
        "",
        f"**Category:** {CATEGORY_EMOJI.get(category, '•')} `{category}`",
    ]

    if finding.suggestion:
        lines.append("")
        lines.append(f"**Suggestion:** {finding.suggestion}")

    if finding.code_snippet:
        extension = finding.file.rsplit(".", 1)[-1].lower() if "." in finding.file else ""
        lines.append("")
        lines.append(f"```{SNIPPET_LANGUAGES.get(extension, '')}")
        lines.append(finding.code_snippet)
        lines.append("```")

    lines.append("")
    lines.append("</details>")
    return "\n".join(lines)
