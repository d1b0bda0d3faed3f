"""Claude Agent SDK wrapper used for delegated canon classification."""

import logging
from typing import Optional

from claude_agent_sdk import (
    query,
    ClaudeAgentOptions,
    ResultMessage,
    AssistantMessage,
)

from config.exceptions import LLMError, LLMResponseParseError
from config.settings import Settings
from tools.llm_client import parse_json_response

logger = logging.getLogger(__name__)


class AgentSDKClient:
    """Single-turn text and JSON calls through ``claude_agent_sdk.query()``.

    Authentication is handled by the SDK's own CLI login.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.total_calls = 0

    async def chat(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
    ) -> str:
        """Send a request and return the text result.

        Raises:
            LLMError: If the query fails.
        """
        model = model or self.settings.llm_model_canon
        self.total_calls += 1

        logger.debug("AgentSDK call #%d: model=%s", self.total_calls, model)

        result_text = ""
        fallback_text = ""
        try:
            # The generator must be exhausted; leaving the loop early breaks
            # the SDK's internal cancel scopes.
            async for message in query(
                prompt=user_prompt,
                options=ClaudeAgentOptions(system_prompt=system_prompt, model=model, max_turns=1),
            ):
                if isinstance(message, ResultMessage):
                    result_text = message.result or ""
                elif isinstance(message, AssistantMessage) and not fallback_text:
                    fallback_text = "".join(
                        getattr(block, "text", "") or "" for block in message.content
                    )
        except Exception as e:
            raise LLMError(f"Agent SDK query failed: {e}") from e

        result_text = result_text or fallback_text
        if not result_text:
            logger.warning("AgentSDK returned no content")
        return result_text

    async def chat_json(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
    ) -> dict:
        """Send a request and parse the response as JSON.

        Raises:
            LLMResponseParseError: If response cannot be parsed as JSON.
        """
        text = await self.chat(system_prompt, user_prompt, model)
        try:
            return parse_json_response(text)
        except ValueError as e:
            raise LLMResponseParseError(str(e), raw_response=text) from e
