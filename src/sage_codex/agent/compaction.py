"""
Conversation Compaction - bounded context for the upstream model.

The full transcript stays in the store; only the outbound copy is compacted:

- the most recent messages are kept verbatim
- older messages, up to the total cap, are truncated and tagged with
  "[earlier in conversation]"
- anything older than that is dropped

The compacted transcript always opens with a user turn. When the first
surviving message is from the assistant, a synthetic "[Session started]"
user message is put in front of it.
"""

import structlog
from dataclasses import dataclass, field

from ..llm.base import LLMMessage

logger = structlog.get_logger()

# Approximate tokens per character (conservative estimate)
CHARS_PER_TOKEN = 4

DEFAULT_RECENT_WINDOW = 10
DEFAULT_MAX_TOTAL_MESSAGES = 30
DEFAULT_MAX_COMPRESSED_LENGTH = 200

EARLIER_MARKER = "[earlier in conversation]"
SESSION_STARTED = "[Session started]"


@dataclass
class CompactionConfig:
    """Configuration for conversation compaction."""

    recent_window: int = DEFAULT_RECENT_WINDOW
    max_total_messages: int = DEFAULT_MAX_TOTAL_MESSAGES
    max_compressed_length: int = DEFAULT_MAX_COMPRESSED_LENGTH


@dataclass
class CompressedHistory:
    """Outbound transcript plus how each original message was handled."""

    messages: list[LLMMessage] = field(default_factory=list)
    original_count: int = 0
    compressed_count: int = 0
    dropped_count: int = 0

    @property
    def verbatim_count(self) -> int:
        return self.original_count - self.compressed_count - self.dropped_count


def estimate_tokens(messages: list[LLMMessage]) -> int:
    """Estimate token count for a list of messages."""
    total_chars = sum(len(m.content) for m in messages)
    # Add overhead for role markers and formatting
    overhead = len(messages) * 20
    return (total_chars + overhead) // CHARS_PER_TOKEN


def truncate(text: str, max_length: int) -> str:
    """Cut text to max_length characters, ending with an ellipsis when cut."""
    if len(text) <= max_length:
        return text
    if max_length <= 3:
        return text[:max_length]
    return text[: max_length - 3] + "..."


def _compress_message(message: LLMMessage, max_length: int) -> LLMMessage:
    return LLMMessage(
        role=message.role,
        content=f"{EARLIER_MARKER} {truncate(message.content, max_length)}",
    )


def compress_history(
    messages: list[LLMMessage],
    config: CompactionConfig | None = None,
) -> CompressedHistory:
    """Compact a transcript for the upstream model.

    Never fails for a well-formed list, including an empty one. Each original
    message lands in exactly one bucket: verbatim, compressed or dropped. The
    synthetic opener is not an original and is not counted.
    """
    config = config or CompactionConfig()
    original_count = len(messages)

    if original_count == 0:
        return CompressedHistory()

    # Room for the opener plus one message
    cap = max(2, config.max_total_messages)
    window = min(max(0, config.recent_window), cap)

    if window and original_count > window:
        recent = list(messages[-window:])
        older = list(messages[:-window])
    elif window:
        recent = list(messages)
        older = []
    else:
        recent = []
        older = list(messages)

    older_budget = max(0, cap - len(recent))
    dropped_count = max(0, len(older) - older_budget)
    kept_older = older[dropped_count:]

    def _needs_opener(first: LLMMessage) -> bool:
        return first.role != "user"

    # Make room for the opener inside the cap by dropping more of the oldest,
    # reaching into the verbatim window only when nothing older is left
    while len(kept_older) + len(recent) + 1 > cap:
        head = kept_older if kept_older else recent
        if not _needs_opener(head[0]):
            break
        head.pop(0)
        dropped_count += 1

    compressed = [_compress_message(m, config.max_compressed_length) for m in kept_older]
    result = compressed + recent

    if result and _needs_opener(result[0]):
        result.insert(0, LLMMessage(role="user", content=SESSION_STARTED))

    history = CompressedHistory(
        messages=result,
        original_count=original_count,
        compressed_count=len(compressed),
        dropped_count=dropped_count,
    )

    if history.compressed_count or history.dropped_count:
        logger.info(
            "Conversation compacted",
            original=history.original_count,
            compressed=history.compressed_count,
            dropped=history.dropped_count,
            estimated_tokens=estimate_tokens(result),
        )

    return history
