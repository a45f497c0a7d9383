"""
LLM module for upstream model support.

Providers:
- Anthropic Claude (native SDK)
- OpenAI GPT (native SDK, also OpenAI-compatible endpoints)
"""

from .base import BaseLLM, LLMMessage, LLMResponse, StreamEvent, ToolCall, ToolDefinition
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "LLMMessage",
    "LLMResponse",
    "StreamEvent",
    "ToolCall",
    "ToolDefinition",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
]
