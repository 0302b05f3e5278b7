"""Tests for the action registry"""
import pytest

from asuka.errors import DuplicateAction, SchemaMismatch, UnknownAction
from asuka.models.actions import ActionInvocation, ActionSpec
from asuka.models.enums import EffectClass


def test_register_and_lookup(registry):
    assert len(registry) == 3
    assert "look" in registry
    assert registry.get("missing") is None
    assert registry.names() == ["look", "remember", "mint_item"]


def test_duplicate_registration_rejected(registry):
    with pytest.raises(DuplicateAction):
        registry.register(ActionSpec(name="look", executor=lambda target: target))


def test_invalid_schema_rejected_at_registration(registry):
    spec = ActionSpec(
        name="broken",
        parameters={"type": "object", "properties": {"x": {"type": "tensor"}}},
        executor=lambda x: x,
    )
    with pytest.raises(SchemaMismatch):
        registry.register(spec)
    assert "broken" not in registry


def test_resolve_builds_invocation(registry):
    invocation = registry.resolve("npc-1", 4, "mint_item", {"itemId": 42})
    assert invocation.agent_id == "npc-1"
    assert invocation.sequence == 4
    assert invocation.effect == EffectClass.ON_CHAIN_WRITE
    assert invocation.params == {"itemId": 42}


def test_resolve_drops_unsupplied_optionals(registry):
    invocation = registry.resolve("npc-1", 1, "remember", {"note": "hi"})
    assert invocation.params == {"note": "hi"}


def test_resolve_unknown_action(registry):
    with pytest.raises(UnknownAction) as exc_info:
        registry.resolve("npc-1", 1, "fly", {})
    assert exc_info.value.name == "fly"


def test_resolve_schema_mismatch(registry):
    with pytest.raises(SchemaMismatch) as exc_info:
        registry.resolve("npc-1", 1, "mint_item", {"itemId": "forty-two"})
    assert exc_info.value.problems


def test_validate_detects_changed_effect_class(registry):
    """An invocation built against a different effect class is refused"""
    invocation = ActionInvocation(
        agent_id="npc-1",
        action="mint_item",
        effect=EffectClass.READ_ONLY,
        params={"itemId": 1},
        sequence=1,
    )
    with pytest.raises(SchemaMismatch):
        registry.validate(invocation)


def test_tool_definitions(registry):
    names = [d["function"]["name"] for d in registry.tool_definitions()]
    assert names == ["look", "remember", "mint_item"]
