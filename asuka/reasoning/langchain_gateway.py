"""
LangChain-backed reasoning gateway.

Renders an agent's context as chat messages, binds the registered actions
as tools and turns the model's reply into a ToolCall or FinalResponse.
"""

import asyncio
import logging
from typing import Any, List, Optional

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from asuka.config import RuntimeConfig
from asuka.errors import BackendUnavailable, ReasoningTimeout
from asuka.models.actions import ActionSpec, FinalResponse, ToolCall
from asuka.models.character import Character
from asuka.models.context import AgentContext
from asuka.models.enums import TurnKind
from asuka.reasoning.gateway import Proposal
from asuka.state.memory_policy import ContextMemoryPolicy


logger = logging.getLogger("asuka.reasoning.langchain")

DEFAULT_PREAMBLE = (
    "You are an autonomous character in a persistent world. "
    "Use the available tools to act, or reply in plain text when no action is needed."
)

_AGENT_TURNS = frozenset({TurnKind.ACTION, TurnKind.FINAL_RESPONSE})


def build_chat_model(config: RuntimeConfig) -> BaseChatModel:
    """Create the default chat model from runtime configuration"""
    return ChatAnthropic(
        model=config.model,
        api_key=config.api_key,
        temperature=0.7,
        max_tokens=1024,
    )


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)


class LangChainReasoningGateway:
    """Reasoning gateway over any LangChain chat model that supports tool binding"""

    def __init__(
        self,
        llm: BaseChatModel,
        character: Optional[Character] = None,
        memory_policy: Optional[ContextMemoryPolicy] = None,
    ):
        self.llm = llm
        self.character = character
        self.memory_policy = memory_policy

    def build_messages(self, context: AgentContext) -> List[BaseMessage]:
        """Render the context as a chat transcript"""
        preamble = self.character.system_prompt() if self.character else DEFAULT_PREAMBLE
        messages: List[BaseMessage] = [SystemMessage(content=preamble)]

        if context.memory_summary:
            messages.append(
                SystemMessage(content=f"Summary of earlier turns:\n{context.memory_summary}")
            )

        for turn in context.turns:
            if turn.kind in _AGENT_TURNS:
                messages.append(AIMessage(content=turn.describe()))
            else:
                messages.append(HumanMessage(content=turn.describe()))

        if self.memory_policy is not None and self.memory_policy.should_trim_messages(messages):
            messages = self.memory_policy.trim_conversation(messages)
        return messages

    async def propose(
        self,
        context: AgentContext,
        actions: list[ActionSpec],
        timeout: float,
    ) -> Proposal:
        messages = self.build_messages(context)
        model = self.llm
        if actions:
            model = self.llm.bind_tools([spec.to_tool_definition() for spec in actions])

        try:
            response = await asyncio.wait_for(model.ainvoke(messages), timeout)
        except asyncio.TimeoutError as exc:
            raise ReasoningTimeout(f"model did not answer within {timeout:g}s") from exc
        except Exception as exc:
            raise BackendUnavailable(f"{type(exc).__name__}: {exc}") from exc

        tool_calls = getattr(response, "tool_calls", None) or []
        if tool_calls:
            call = tool_calls[0]
            if len(tool_calls) > 1:
                logger.info(
                    "Agent %s: model proposed %d tool calls, using the first (%s)",
                    context.agent_id,
                    len(tool_calls),
                    call["name"],
                )
            return ToolCall(name=call["name"], arguments=call.get("args") or {})

        return FinalResponse(text=_content_text(response.content))
