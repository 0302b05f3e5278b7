"""
Memory management policy for agent contexts.

Keeps an agent's turn history bounded by folding the oldest turns into a
size-limited memory summary, and trims the chat messages rendered for the
reasoning backend when they approach the model's token budget.
"""

import logging
from typing import List

from langchain_core.messages import BaseMessage, SystemMessage
from langchain_core.messages.utils import count_tokens_approximately, trim_messages

from asuka.models.context import AgentContext


logger = logging.getLogger("asuka.memory")

# Results that change on-chain state stay visible to the model when trimming
_CRITICAL_MARKERS = (
    "TX_ID",
    "EXHAUSTED RETRIES",
    "SUBMITTED AS",
)


class ContextMemoryPolicy:
    """
    Bounded memory for agent contexts.

    Key features:
    - Turn compaction once a context exceeds ``max_turns``
    - A rolling summary capped at ``max_summary_chars`` (newest text wins)
    - Token-based trimming of rendered messages, preserving system prompts
      and on-chain outcomes
    """

    def __init__(
        self,
        max_turns: int = 200,
        keep_recent_turns: int = 50,
        max_summary_chars: int = 4000,
        max_tokens: int = 100_000,
    ):
        if keep_recent_turns >= max_turns:
            raise ValueError("keep_recent_turns must be smaller than max_turns")
        self.max_turns = max_turns
        self.keep_recent_turns = keep_recent_turns
        self.max_summary_chars = max_summary_chars
        self.max_tokens = max_tokens
        # Trim rendered messages at 70% of the budget
        self.compression_threshold = int(max_tokens * 0.7)

    def should_compact(self, context: AgentContext) -> bool:
        return len(context.turns) > self.max_turns

    def compact(self, context: AgentContext) -> int:
        """
        Fold the oldest turns into the memory summary.

        Turn indices of the remaining turns are untouched, so ordering is
        preserved. Returns the number of turns folded.
        """
        if not self.should_compact(context):
            return 0

        cut = len(context.turns) - self.keep_recent_turns
        folded = context.turns[:cut]
        context.turns = context.turns[cut:]

        lines = [context.memory_summary] if context.memory_summary else []
        lines.extend(turn.describe() for turn in folded)
        summary = "\n".join(lines)
        if len(summary) > self.max_summary_chars:
            summary = summary[-self.max_summary_chars:]
            # Drop the partial first line left by the cut
            newline = summary.find("\n")
            if newline != -1:
                summary = summary[newline + 1:]

        context.memory_summary = summary
        context.compacted_turns += len(folded)

        logger.info(
            "Compacted %d turn(s) for agent %s (summary %d chars)",
            len(folded),
            context.agent_id,
            len(summary),
        )
        return len(folded)

    def should_trim_messages(self, messages: List[BaseMessage]) -> bool:
        return count_tokens_approximately(messages) > self.compression_threshold

    def trim_conversation(self, messages: List[BaseMessage]) -> List[BaseMessage]:
        """
        Trim rendered messages while keeping critical context.

        Strategy:
        1. Always keep system messages
        2. Keep messages mentioning on-chain outcomes
        3. Keep the most recent remaining messages within budget
        """
        system_messages = [m for m in messages if isinstance(m, SystemMessage)]
        other_messages = [m for m in messages if not isinstance(m, SystemMessage)]

        critical = [m for m in other_messages if self._is_critical_message(m)]
        non_critical = [m for m in other_messages if not self._is_critical_message(m)]

        budget = self.max_tokens - count_tokens_approximately(system_messages + critical)
        trimmed = trim_messages(
            non_critical,
            max_tokens=max(budget, 0),
            strategy="last",
            token_counter=count_tokens_approximately,
        )

        result = system_messages + critical + trimmed
        old_tokens = count_tokens_approximately(messages)
        new_tokens = count_tokens_approximately(result)
        logger.debug("Trimmed messages: %d -> %d tokens", old_tokens, new_tokens)
        return result

    def _is_critical_message(self, message: BaseMessage) -> bool:
        content = str(message.content).upper()
        return any(marker in content for marker in _CRITICAL_MARKERS)
