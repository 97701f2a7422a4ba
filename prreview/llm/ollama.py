"""
Ollama LLM Provider Implementation

Connects to a local Ollama instance for running open-source models locally.
Useful for development and testing without API costs.
"""

import logging
from typing import Optional

import httpx

from prreview.llm.provider import LLMProvider

logger = logging.getLogger(__name__)


class OllamaProvider(LLMProvider):
    """
    Ollama LLM Provider for local model inference.

    Supports any model installed in Ollama (llama3, mistral, etc.)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3",
        timeout: float = 120,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Ollama provider.

        Args:
            base_url: Base URL of Ollama instance (default: http://localhost:11434)
            model: Model name to use (default: llama3)
            timeout: Request timeout in seconds (default: 120, as local inference is slower)
            http_client: Shared httpx client; a new one is used per call otherwise
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.http_client = http_client

    async def complete(self, prompt: str) -> str:
        """
        Make a request to Ollama API.

        Args:
            prompt: The prompt to send to Ollama

        Returns:
            Ollama's response text

        Raises:
            TimeoutError: If request exceeds timeout
            RuntimeError: If Ollama returns an error
        """
        url = f"{self.base_url}/api/generate"
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.3},  # Lower temperature for more consistent output
        }

        try:
            if self.http_client is not None:
                response = await self.http_client.post(url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()

        except httpx.TimeoutException:
            logger.error(f"Ollama request timeout after {self.timeout}s")
            raise TimeoutError(
                f"Ollama analysis timed out after {self.timeout}s. "
                f"Try a smaller file or increase the timeout."
            )

        except httpx.ConnectError as e:
            logger.error(f"Connection error to Ollama: {str(e)}")
            raise RuntimeError(
                f"Connection error to Ollama at {self.base_url}: {str(e)}"
            )

        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama HTTP error: {str(e)}")
            raise RuntimeError(f"Ollama HTTP error: {str(e)}")

        except httpx.HTTPError as e:
            logger.error(f"Ollama request failed: {str(e)}")
            raise RuntimeError(f"Ollama request failed: {str(e)}")

        if "response" not in data:
            raise RuntimeError("Ollama returned unexpected response format")

        response_text = data["response"]
        logger.debug(f"Ollama response: {response_text[:200]}...")
        return response_text
