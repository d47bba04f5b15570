"""
Tool-calling LLM collaborator.

``LLMClient`` is the narrow contract the tool bridge depends on: send chat
messages plus tool schemas, get back text and/or tool invocations.
``OpenAIToolClient`` implements it with the official async OpenAI SDK.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from clinic_booking.config import ModelConfig
from clinic_booking.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class ToolInvocation:
    """One function call requested by the model. ``arguments`` is raw JSON text."""
    id: str
    name: str
    arguments: str = "{}"


@dataclass
class LLMReply:
    text: str = ""
    tool_calls: list[ToolInvocation] = field(default_factory=list)

    def as_message(self) -> dict[str, Any]:
        """The assistant turn to echo back before the tool results."""
        message: dict[str, Any] = {"role": "assistant", "content": self.text or None}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in self.tool_calls
            ]
        return message


class LLMClient(Protocol):
    async def complete(
        self, messages: list[dict[str, Any]], tools: Optional[list[dict[str, Any]]] = None
    ) -> LLMReply: ...


class OpenAIToolClient:
    """Chat Completions with automatic tool choice."""

    def __init__(self, config: ModelConfig, client: Optional[AsyncOpenAI] = None) -> None:
        self._config = config
        self._client = client or AsyncOpenAI(api_key=config.api_key)

    async def complete(
        self, messages: list[dict[str, Any]], tools: Optional[list[dict[str, Any]]] = None
    ) -> LLMReply:
        """
        Run one completion.

        Raises:
            UpstreamError: On any API or network failure.
        """
        params: dict[str, Any] = {
            "model": self._config.llm_model,
            "messages": messages,
            "temperature": self._config.llm_temperature,
        }
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"

        try:
            response = await self._client.chat.completions.create(**params)
        except OpenAIError as exc:
            logger.error("LLM request failed: %s", exc)
            raise UpstreamError("LLM request failed") from exc

        if not response.choices:
            return LLMReply()
        message = response.choices[0].message
        calls = [
            ToolInvocation(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "{}",
            )
            for tc in (message.tool_calls or [])
        ]
        return LLMReply(text=(message.content or "").strip(), tool_calls=calls)
