"""Tests for context memory management"""
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from asuka.models.context import AgentContext, Turn
from asuka.models.enums import TurnKind
from asuka.state.memory_policy import ContextMemoryPolicy


def _context(turn_count, text="line"):
    return AgentContext(
        agent_id="npc-1",
        turns=[
            Turn(index=n, kind=TurnKind.FINAL_RESPONSE, text=f"{text} {n}")
            for n in range(1, turn_count + 1)
        ],
    )


def test_keep_recent_must_be_smaller_than_max():
    with pytest.raises(ValueError):
        ContextMemoryPolicy(max_turns=10, keep_recent_turns=10)


def test_small_context_is_left_alone():
    policy = ContextMemoryPolicy(max_turns=10, keep_recent_turns=4)
    context = _context(10)
    assert policy.compact(context) == 0
    assert len(context.turns) == 10
    assert context.memory_summary == ""


def test_compact_folds_oldest_turns_into_summary():
    policy = ContextMemoryPolicy(max_turns=10, keep_recent_turns=4)
    context = _context(11)

    assert policy.compact(context) == 7
    assert [turn.index for turn in context.turns] == [8, 9, 10, 11]
    assert context.compacted_turns == 7
    assert context.memory_summary.splitlines()[0] == "[reply] line 1"
    assert context.memory_summary.splitlines()[-1] == "[reply] line 7"


def test_summary_is_capped_keeping_newest_lines():
    policy = ContextMemoryPolicy(max_turns=10, keep_recent_turns=2, max_summary_chars=60)
    context = _context(30, text="a fairly long reply")
    policy.compact(context)

    assert len(context.memory_summary) <= 60
    assert context.memory_summary.endswith("[reply] a fairly long reply 28")
    # Cut lands on a line boundary
    assert context.memory_summary.startswith("[reply]")


def test_repeated_compaction_extends_summary():
    policy = ContextMemoryPolicy(max_turns=5, keep_recent_turns=2)
    context = _context(6)
    policy.compact(context)
    context.turns.extend(
        Turn(index=n, kind=TurnKind.FINAL_RESPONSE, text=f"line {n}") for n in range(7, 11)
    )
    policy.compact(context)

    assert context.compacted_turns == 8
    assert [turn.index for turn in context.turns] == [9, 10]
    assert "[reply] line 1" in context.memory_summary
    assert "[reply] line 8" in context.memory_summary


def test_trim_keeps_system_and_on_chain_messages():
    policy = ContextMemoryPolicy(max_turns=100, keep_recent_turns=10, max_tokens=120)
    messages = [SystemMessage(content="You are a blacksmith.")]
    messages.append(HumanMessage(content="[result] #1 mint_item submitted as 0x01"))
    messages.extend(HumanMessage(content=f"chatter {n} " * 20) for n in range(20))
    messages.append(AIMessage(content="latest reply"))

    assert policy.should_trim_messages(messages)
    trimmed = policy.trim_conversation(messages)

    assert trimmed[0].content == "You are a blacksmith."
    assert trimmed[1].content == "[result] #1 mint_item submitted as 0x01"
    assert trimmed[-1].content == "latest reply"
    assert len(trimmed) < len(messages)


def test_short_transcript_needs_no_trim():
    policy = ContextMemoryPolicy(max_tokens=10_000)
    assert not policy.should_trim_messages([SystemMessage(content="hi"), HumanMessage(content="hello")])
