"""
Abstract LLM Provider Interface

Defines the interface that all LLM providers must implement.
Provides factory for creating provider instances based on configuration.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict
import json
import logging

from prreview.config import settings
from prreview.llm.prompts import build_file_review_prompt

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    All LLM providers (Claude, Ollama) must implement this interface
    to be compatible with the review pipeline.
    """

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """
        Send a prompt to the model and return its raw text answer.

        Args:
            prompt: Prompt text

        Returns:
            Model response text

        Raises:
            TimeoutError: If the call takes too long
            RuntimeError: If provider is unavailable or returns an error
        """
        pass

    async def analyze_file(self, code: str, file_name: str, pr_context: str) -> str:
        """
        Review one file in the context of its pull request.

        Args:
            code: File content
            file_name: Repository-relative path
            pr_context: Pull request title/description

        Returns:
            Raw model response; expected to contain a JSON object with
            structure:
            {
                "summary": "Overall assessment",
                "qualityScore": 85,
                "findings": [
                    {
                        "file": "path/to/file.py",
                        "line": 42,
                        "severity": "critical|high|medium|low|info",
                        "category": "bug|security|performance|style|best-practice",
                        "title": "Issue title",
                        "description": "Detailed explanation",
                        "suggestion": "How to fix it",
                        "codeSnippet": "offending code"
                    }
                ]
            }
        """
        prompt = build_file_review_prompt(code, file_name, pr_context)
        return await self.complete(prompt)

    @staticmethod
    def extract_json_object(response: str) -> Dict[str, Any]:
        """
        Extract the JSON object from an LLM response.

        Models sometimes wrap the object in prose or markdown fences, so when
        the text is not JSON as a whole the outermost ``{...}`` span is
        parsed instead.

        Args:
            response: Raw response from LLM

        Returns:
            Parsed JSON object

        Raises:
            ValueError: If no JSON object can be found in the response
        """
        text = (response or "").strip()
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            start = text.find("{")
            end = text.rfind("}")
            if start == -1 or end <= start:
                logger.error(f"No JSON object in LLM response: {text[:200]!r}")
                raise ValueError("Failed to parse AI response: no JSON object found")
            try:
                data = json.loads(text[start:end + 1])
            except json.JSONDecodeError as e:
                logger.error(f"Failed to parse LLM response as JSON: {e}")
                raise ValueError(f"Invalid JSON response from LLM: {str(e)}")

        if not isinstance(data, dict):
            raise ValueError("LLM response is not a JSON object")
        return data

    @staticmethod
    def validate_response(data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a parsed review response and coerce its scalar fields.

        Args:
            data: Parsed JSON object

        Returns:
            Dictionary with ``summary`` (str), ``qualityScore`` (int, 0-100)
            and ``findings`` (list of dicts)

        Raises:
            ValueError: If findings are missing or malformed
        """
        findings = data.get("findings", [])
        if not isinstance(findings, list):
            raise ValueError("'findings' must be a list")

        for idx, finding in enumerate(findings):
            if not isinstance(finding, dict):
                raise ValueError(f"Finding {idx} is not an object")
            missing = {"title", "description"} - set(finding.keys())
            if missing:
                raise ValueError(f"Finding {idx} missing required fields: {missing}")

        try:
            score = int(round(float(data.get("qualityScore", 0))))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid qualityScore: {data.get('qualityScore')!r}")

        return {
            "summary": str(data.get("summary") or ""),
            "qualityScore": max(0, min(100, score)),
            "findings": findings,
        }


def get_llm_provider() -> LLMProvider:
    """
    Factory function to create LLM provider based on configuration.

    Returns:
        Configured LLM provider instance (ClaudeProvider or OllamaProvider)

    Raises:
        ValueError: If configured provider is not supported or required config is missing
    """
    provider_name = settings.llm_provider.lower()

    if provider_name == "claude":
        from prreview.llm.claude import ClaudeProvider

        if not settings.claude_api_key:
            raise ValueError(
                "Claude provider selected but CLAUDE_API_KEY not configured"
            )

        return ClaudeProvider(
            api_key=settings.claude_api_key,
            model=settings.claude_model,
            timeout=settings.llm_timeout_seconds,
        )

    elif provider_name == "ollama":
        from prreview.llm.ollama import OllamaProvider

        return OllamaProvider(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            timeout=settings.llm_timeout_seconds,
        )

    else:
        raise ValueError(
            f"Unknown LLM provider: {provider_name}. "
            f"Must be 'claude' or 'ollama'"
        )
