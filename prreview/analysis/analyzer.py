"""
Code Analysis Orchestration

Sends changed files to the LLM one at a time, parses the JSON answers into
findings and aggregates the per-file results into one review outcome.
A file whose analysis fails is skipped; the rest of the batch continues.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from prreview.config import settings
from prreview.database import FindingCategory, FindingSeverity
from prreview.llm.provider import LLMProvider
from prreview.monitoring import MetricsCollector, get_metrics
from prreview.resilience import call_with_retry

logger = logging.getLogger(__name__)


# ============================================================================
# Finding Data Model
# ============================================================================


@dataclass
class AnalyzedFinding:
    """
    Represents a finding parsed from LLM response.

    Intermediate model between LLM response and database Finding rows.
    """

    file: str
    line: int
    severity: FindingSeverity
    category: FindingCategory
    title: str
    description: str
    suggestion: Optional[str] = None
    code_snippet: Optional[str] = None

    @classmethod
    def from_response(cls, raw: Dict[str, Any], default_file: str) -> "AnalyzedFinding":
        """
        Build a finding from one entry of the model's ``findings`` array.

        Unknown severities become ``info`` and unknown categories become
        ``best-practice``; a missing file falls back to the analyzed file.
        """
        severity_value = str(raw.get("severity", "")).lower().strip()
        try:
            severity = FindingSeverity(severity_value)
        except ValueError:
            logger.debug(f"Unknown severity {severity_value!r}, using info")
            severity = FindingSeverity.INFO

        category_value = (
            str(raw.get("category", "")).lower().strip().replace("_", "-")
        )
        try:
            category = FindingCategory(category_value)
        except ValueError:
            logger.debug(f"Unknown category {category_value!r}, using best-practice")
            category = FindingCategory.BEST_PRACTICE

        try:
            line = int(raw.get("line") or 0)
        except (TypeError, ValueError):
            line = 0

        return cls(
            file=raw.get("file") or default_file,
            line=max(line, 0),
            severity=severity,
            category=category,
            title=str(raw["title"]),
            description=str(raw["description"]),
            suggestion=raw.get("suggestion") or None,
            code_snippet=raw.get("codeSnippet") or raw.get("code_snippet") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "severity": self.severity.value,
            "category": self.category.value,
            "title": self.title,
            "description": self.description,
            "suggestion": self.suggestion,
            "code_snippet": self.code_snippet,
        }


@dataclass
class SourceFile:
    """A changed file and its content at the PR head commit."""

    name: str
    content: str


@dataclass
class FileAnalysis:
    """Result of analyzing one file."""

    file_name: str
    summary: str
    quality_score: int
    findings: List[AnalyzedFinding] = field(default_factory=list)


@dataclass
class BatchAnalysis:
    """Aggregate result over all files of a pull request."""

    files_analyzed: int
    quality_score: int
    summary: str
    findings: List[AnalyzedFinding] = field(default_factory=list)

    @property
    def issues_found(self) -> int:
        return len(self.findings)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


# ============================================================================
# Code Analyzer
# ============================================================================


class CodeAnalyzer:
    """
    Runs LLM reviews over pull request files.

    Responsibilities:
    - Call the LLM once per file, sequentially, with a pause between calls
    - Retry transient failures and bound each call with a timeout
    - Parse and normalize findings
    - Aggregate scores and findings across files
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        call_delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize CodeAnalyzer.

        Args:
            llm_provider: LLM provider instance
            call_delay: Seconds to wait between per-file calls (uses config if not provided)
            max_attempts: Attempts per file (uses config if not provided)
            backoff_seconds: Base retry backoff (uses config if not provided)
            timeout: Per-attempt timeout (uses config if not provided)
            metrics: Metrics collector (global collector if not provided)
        """
        self.llm_provider = llm_provider
        self.call_delay = (
            settings.analysis_delay_seconds if call_delay is None else call_delay
        )
        self.max_attempts = max_attempts or settings.upstream_max_attempts
        self.backoff_seconds = (
            settings.upstream_backoff_seconds
            if backoff_seconds is None
            else backoff_seconds
        )
        self.timeout = timeout or settings.llm_timeout_seconds
        self.metrics = metrics or get_metrics()

    async def analyze_file(
        self, code: str, file_name: str, pr_context: str
    ) -> FileAnalysis:
        """
        Analyze a single file.

        Args:
            code: File content
            file_name: Repository-relative path
            pr_context: Pull request title/description

        Returns:
            FileAnalysis with summary, score and findings

        Raises:
            ValueError: If the response holds no usable JSON object
            TimeoutError: If every attempt timed out
            RuntimeError: If the provider keeps failing
        """
        raw = await call_with_retry(
            lambda: self.llm_provider.analyze_file(code, file_name, pr_context),
            attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            timeout=self.timeout,
            retry_on=(RuntimeError, TimeoutError),
            description=f"LLM analysis of {file_name}",
        )
        data = LLMProvider.validate_response(LLMProvider.extract_json_object(raw))

        findings = [
            AnalyzedFinding.from_response(item, default_file=file_name)
            for item in data["findings"]
        ]
        return FileAnalysis(
            file_name=file_name,
            summary=data["summary"],
            quality_score=data["qualityScore"],
            findings=findings,
        )

    async def analyze_batch(
        self, files: List[SourceFile], pr_context: str
    ) -> BatchAnalysis:
        """
        Analyze files one after another and aggregate the results.

        A file whose analysis raises is logged and left out of the aggregate.
        If no file succeeds the result has a score of 0 and no findings; this
        is still a valid result, not an error.

        Args:
            files: Files with their content
            pr_context: Pull request title/description

        Returns:
            BatchAnalysis over the files that were analyzed successfully
        """
        results: List[FileAnalysis] = []

        for index, source in enumerate(files):
            if index > 0 and self.call_delay > 0:
                # Fixed pause between provider calls
                await asyncio.sleep(self.call_delay)

            self.metrics.increment("llm_calls_total")
            try:
                with self.metrics.timer("llm_call_duration_seconds"):
                    analysis = await self.analyze_file(
                        source.content, source.name, pr_context
                    )
            except Exception as e:
                self.metrics.increment("llm_failures_total")
                logger.error(f"Error analyzing file {source.name}: {str(e)}")
                continue

            logger.info(
                f"Analyzed {source.name}: score {analysis.quality_score}, "
                f"{len(analysis.findings)} finding(s)"
            )
            results.append(analysis)

        findings = [finding for result in results for finding in result.findings]
        quality_score = (
            round_half_up(sum(r.quality_score for r in results) / len(results))
            if results
            else 0
        )

        return BatchAnalysis(
            files_analyzed=len(results),
            quality_score=quality_score,
            summary=f"Analyzed {len(results)} files, found {len(findings)} issues",
            findings=findings,
        )
