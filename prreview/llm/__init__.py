"""
LLM Provider Module

Provides pluggable abstraction for different LLM backends (Claude, Ollama)
"""

from prreview.llm.provider import LLMProvider, get_llm_provider
from prreview.llm.claude import ClaudeProvider
from prreview.llm.ollama import OllamaProvider

__all__ = [
    "LLMProvider",
    "get_llm_provider",
    "ClaudeProvider",
    "OllamaProvider",
]
