"""
LLM Review Prompt

Builds the per-file review prompt. The model is asked for a single JSON
object with a summary, a 0-100 quality score and a list of findings.
"""

LANGUAGE_NAMES = {
    ".js": "javascript",
    ".ts": "typescript",
    ".jsx": "javascript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".go": "go",
    ".rb": "ruby",
    ".php": "php",
    ".cpp": "c++",
    ".c": "c",
    ".cs": "c#",
    ".swift": "swift",
    ".kt": "kotlin",
}


FILE_REVIEW_PROMPT = """You are an expert code reviewer analyzing a {language} file.

File: {file_name}
Pull Request Context: {pr_context}

Code to review:
```{language}
{code}
```

Provide a code review focusing on:

1. Bugs & Logic Errors: runtime errors, null dereferences, off-by-one errors, logic flaws
2. Security Vulnerabilities: injection, XSS, CSRF, authentication issues, exposed secrets
3. Performance Issues: inefficient algorithms, memory leaks, unnecessary queries, N+1 problems
4. Code Quality: readability, maintainability, naming, duplication
5. Best Practices: language-specific idioms and design patterns

For EACH issue found, provide:
- Line number (estimate from the code structure)
- Severity: "critical" (security/crashes), "high" (bugs), "medium" (quality), "low" (style), "info" (suggestions)
- Category: "bug", "security", "performance", "style", "best-practice"
- A clear title (max 60 chars)
- A detailed description
- An actionable suggestion
- The problematic code snippet, if applicable

Return ONLY valid JSON (no markdown, no extra text):

{{
  "summary": "Brief overall assessment (2-3 sentences)",
  "qualityScore": 85,
  "findings": [
    {{
      "file": "{file_name}",
      "line": 42,
      "severity": "high",
      "category": "security",
      "title": "SQL Injection Vulnerability",
      "description": "User input concatenated directly into SQL query",
      "suggestion": "Use parameterized queries",
      "codeSnippet": "db.query('SELECT * FROM users WHERE id = ' + userId)"
    }}
  ]
}}

If the code has no issues, return:
{{"summary": "Code looks good! No major issues found.", "qualityScore": 95, "findings": []}}

Focus on real issues, not nitpicking. Return ONLY the JSON object."""


def language_for(file_name: str) -> str:
    """Map a file name to the language name used in the prompt."""
    dot = file_name.rfind(".")
    if dot == -1:
        return "code"
    return LANGUAGE_NAMES.get(file_name[dot:].lower(), "code")


def build_file_review_prompt(code: str, file_name: str, pr_context: str) -> str:
    """
    Build the review prompt for a single file.

    Args:
        code: Full file content at the PR head commit
        file_name: Repository-relative path of the file
        pr_context: Pull request title/description

    Returns:
        Prompt text
    """
    return FILE_REVIEW_PROMPT.format(
        language=language_for(file_name),
        file_name=file_name,
        pr_context=pr_context or "(none)",
        code=code,
    )
