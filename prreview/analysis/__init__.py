"""
Analysis Package

Provides LLM-backed file review and result aggregation.
"""

from prreview.analysis.analyzer import (
    AnalyzedFinding,
    BatchAnalysis,
    CodeAnalyzer,
    FileAnalysis,
    SourceFile,
)

__all__ = [
    "AnalyzedFinding",
    "BatchAnalysis",
    "CodeAnalyzer",
    "FileAnalysis",
    "SourceFile",
]
