"""Tools package: Agent SDK client and JSON parsing."""

from tools.agent_sdk_client import AgentSDKClient
from tools.llm_client import parse_json_response

__all__ = [
    "AgentSDKClient",
    "parse_json_response",
]
