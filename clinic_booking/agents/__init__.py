from clinic_booking.agents.llm_client import LLMClient, LLMReply, OpenAIToolClient, ToolInvocation
from clinic_booking.agents.tool_bridge import TOOL_SCHEMAS, ToolCallBridge

__all__ = [
    "LLMClient", "LLMReply", "OpenAIToolClient", "ToolInvocation",
    "TOOL_SCHEMAS", "ToolCallBridge",
]
