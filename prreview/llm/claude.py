"""
Claude LLM Provider Implementation

Uses the Anthropic SDK's async client to review files with Claude models.
"""

import logging

from anthropic import AsyncAnthropic, APIError, APITimeoutError

from prreview.llm.provider import LLMProvider

logger = logging.getLogger(__name__)


class ClaudeProvider(LLMProvider):
    """
    Claude LLM Provider using Anthropic API.

    Implements file review using Claude models via the Anthropic SDK.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-20241022",
        timeout: float = 60,
        max_tokens: int = 4096,
    ):
        """
        Initialize Claude provider.

        Args:
            api_key: Anthropic API key
            model: Claude model ID (default: claude-3-5-sonnet-20241022)
            timeout: Request timeout in seconds (default: 60)
            max_tokens: Maximum tokens in the answer
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        # Retries are handled by the analyzer's retry policy
        self.client = AsyncAnthropic(api_key=api_key, max_retries=0)

    async def complete(self, prompt: str) -> str:
        """
        Make a request to Claude API.

        Args:
            prompt: The prompt to send to Claude

        Returns:
            Claude's response text

        Raises:
            TimeoutError: If request exceeds timeout
            RuntimeError: If API returns an error
        """
        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[
                    {
                        "role": "user",
                        "content": prompt,
                    }
                ],
                timeout=self.timeout,
            )
        except APITimeoutError as e:
            logger.error(f"Claude API timeout after {self.timeout}s: {str(e)}")
            raise TimeoutError(f"Claude analysis timed out: {str(e)}")

        except APIError as e:
            logger.error(f"Claude API error: {str(e)}")
            raise RuntimeError(f"Claude API error: {str(e)}")

        # Extract text from response
        if message.content and len(message.content) > 0:
            response_text = message.content[0].text
            logger.debug(f"Claude response: {response_text[:200]}...")
            return response_text
        raise RuntimeError("Claude returned empty response")
