"""
Agent module - the conversational core.

Includes:
- ChatOrchestrator: streaming turns with tool dispatch
- SessionStateMachine: session lifecycle through the Unfolding
- Compaction: bounded history for the upstream model
- Prompts: the Sage's system prompt per stage
"""

from .compaction import CompactionConfig, CompressedHistory, compress_history
from .core import GREETING_TRIGGER, ChatOrchestrator, TurnResult
from .prompts import build_system_prompt
from .session import LoadedSession, SessionStateMachine

__all__ = [
    "ChatOrchestrator",
    "TurnResult",
    "GREETING_TRIGGER",
    "SessionStateMachine",
    "LoadedSession",
    "CompactionConfig",
    "CompressedHistory",
    "compress_history",
    "build_system_prompt",
]
