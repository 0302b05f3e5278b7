"""Tests for the LangChain reasoning gateway"""
import asyncio

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from pydantic import Field

from asuka.errors import BackendUnavailable, ReasoningTimeout
from asuka.models.actions import ActionInvocation, ActionResult, FinalResponse, ToolCall
from asuka.models.character import Character
from asuka.models.context import AgentContext, Turn
from asuka.models.enums import EffectClass, TurnKind
from asuka.models.events import WorldEvent
from asuka.reasoning.gateway import propose_with_timeout
from asuka.reasoning.langchain_gateway import DEFAULT_PREAMBLE, LangChainReasoningGateway
from asuka.state.memory_policy import ContextMemoryPolicy


class ToolCallingFakeModel(GenericFakeChatModel):
    """Fake chat model that accepts tool binding"""
    bound_tools: list = Field(default_factory=list)

    def bind_tools(self, tools, **kwargs):
        self.bound_tools.extend(tools)
        return self


class BrokenModel:
    def bind_tools(self, tools, **kwargs):
        return self

    async def ainvoke(self, messages):
        raise ConnectionError("api.anthropic.com unreachable")


class SlowModel:
    def bind_tools(self, tools, **kwargs):
        return self

    async def ainvoke(self, messages):
        await asyncio.sleep(10)


def _context():
    invocation = ActionInvocation(
        agent_id="npc-1",
        action="look",
        effect=EffectClass.READ_ONLY,
        params={"target": "door"},
        sequence=1,
    )
    return AgentContext(
        agent_id="npc-1",
        memory_summary="[event] message: we met yesterday",
        turns=[
            Turn(index=1, kind=TurnKind.EVENT, event=WorldEvent(agent_ids=["npc-1"], data={"text": "hello"})),
            Turn(index=2, kind=TurnKind.ACTION, invocation=invocation),
            Turn(index=3, kind=TurnKind.RESULT, result=ActionResult.success(invocation, "a door")),
        ],
    )


def test_build_messages_renders_turns_in_order():
    gateway = LangChainReasoningGateway(ToolCallingFakeModel(messages=iter([])))
    messages = gateway.build_messages(_context())

    assert isinstance(messages[0], SystemMessage)
    assert messages[0].content == DEFAULT_PREAMBLE
    assert isinstance(messages[1], SystemMessage)
    assert "we met yesterday" in messages[1].content
    assert [type(m) for m in messages[2:]] == [HumanMessage, AIMessage, HumanMessage]
    assert messages[2].content == "[event] message: hello"
    assert messages[3].content == "[action] #1 look(target='door')"


def test_character_sets_system_prompt():
    character = Character(name="Guide", preamble="You help travellers.", adjectives=["patient"])
    gateway = LangChainReasoningGateway(ToolCallingFakeModel(messages=iter([])), character=character)
    prompt = gateway.build_messages(AgentContext(agent_id="npc-1"))[0].content

    assert prompt.startswith("You help travellers.")
    assert "Your name: Guide" in prompt
    assert "You are: patient" in prompt


def test_long_transcripts_are_trimmed():
    policy = ContextMemoryPolicy(max_turns=1000, keep_recent_turns=10, max_tokens=200)
    gateway = LangChainReasoningGateway(ToolCallingFakeModel(messages=iter([])), memory_policy=policy)
    context = AgentContext(
        agent_id="npc-1",
        turns=[
            Turn(index=n, kind=TurnKind.FINAL_RESPONSE, text=f"reply number {n} " * 10)
            for n in range(1, 60)
        ],
    )

    messages = gateway.build_messages(context)
    assert isinstance(messages[0], SystemMessage)
    assert len(messages) < 60
    assert "reply number 59" in messages[-1].content


@pytest.mark.asyncio
async def test_tool_call_becomes_proposal(registry):
    reply = AIMessage(
        content="",
        tool_calls=[
            {"name": "mint_item", "args": {"itemId": 42}, "id": "call-1"},
            {"name": "look", "args": {"target": "anvil"}, "id": "call-2"},
        ],
    )
    model = ToolCallingFakeModel(messages=iter([reply]))
    gateway = LangChainReasoningGateway(model)

    proposal = await gateway.propose(_context(), registry.specs, timeout=5)

    assert proposal == ToolCall(name="mint_item", arguments={"itemId": 42})
    assert [tool["function"]["name"] for tool in model.bound_tools] == ["look", "remember", "mint_item"]


@pytest.mark.asyncio
async def test_plain_reply_becomes_final_response(registry):
    model = ToolCallingFakeModel(messages=iter([AIMessage(content="Good morning, traveller.")]))
    gateway = LangChainReasoningGateway(model)

    proposal = await gateway.propose(_context(), registry.specs, timeout=5)
    assert proposal == FinalResponse(text="Good morning, traveller.")


@pytest.mark.asyncio
async def test_no_actions_skips_tool_binding():
    model = ToolCallingFakeModel(messages=iter(["Nothing to do."]))
    gateway = LangChainReasoningGateway(model)

    proposal = await gateway.propose(_context(), [], timeout=5)
    assert proposal.text == "Nothing to do."
    assert model.bound_tools == []


@pytest.mark.asyncio
async def test_model_errors_map_to_backend_unavailable(registry):
    gateway = LangChainReasoningGateway(BrokenModel())
    with pytest.raises(BackendUnavailable, match="ConnectionError"):
        await gateway.propose(_context(), registry.specs, timeout=5)


@pytest.mark.asyncio
async def test_slow_model_maps_to_reasoning_timeout(registry):
    gateway = LangChainReasoningGateway(SlowModel())
    with pytest.raises(ReasoningTimeout):
        await gateway.propose(_context(), registry.specs, timeout=0.01)


@pytest.mark.asyncio
async def test_propose_with_timeout_normalises_failures(registry):
    class Raising:
        async def propose(self, context, actions, timeout):
            raise KeyError("content")

    class Wrong:
        async def propose(self, context, actions, timeout):
            return "just a string"

    class Hanging:
        async def propose(self, context, actions, timeout):
            await asyncio.sleep(10)

    context = _context()
    with pytest.raises(BackendUnavailable, match="KeyError"):
        await propose_with_timeout(Raising(), context, registry.specs, 1)
    with pytest.raises(BackendUnavailable, match="unexpected proposal type"):
        await propose_with_timeout(Wrong(), context, registry.specs, 1)
    with pytest.raises(ReasoningTimeout, match="no proposal within"):
        await propose_with_timeout(Hanging(), context, registry.specs, 0.01)
