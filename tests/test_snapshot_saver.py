"""Tests for agent snapshot persistence"""
import json

from asuka.models.actions import ActionInvocation
from asuka.models.context import AgentContext, Turn
from asuka.models.enums import AgentState, EffectClass, TurnKind
from asuka.models.transactions import TransactionRecord
from asuka.state.snapshot_saver import SnapshotSaver


def _record():
    invocation = ActionInvocation(
        agent_id="npc/1",
        action="mint_item",
        effect=EffectClass.ON_CHAIN_WRITE,
        params={"itemId": 42},
        sequence=1,
    )
    return TransactionRecord(
        record_id="txr-1",
        chain_id="txr-1",
        tx_id="0x0001",
        idempotency_key="key-42",
        invocation=invocation,
    )


def test_save_and_load_context(tmp_path):
    saver = SnapshotSaver(str(tmp_path))
    context = AgentContext(
        agent_id="npc/1",
        state=AgentState.TERMINATED,
        turns=[Turn(index=1, kind=TurnKind.FINAL_RESPONSE, text="farewell")],
    )

    paths = saver.save(context, [_record()])

    # Path separators in agent ids are neutralised
    assert paths["context"] == str(tmp_path / "npc_1" / "context.json")
    loaded = saver.load_context("npc/1")
    assert loaded == context

    saved = json.loads((tmp_path / "npc_1" / "transactions.json").read_text(encoding="utf-8"))
    assert saved["agent_id"] == "npc/1"
    assert saved["records"][0]["tx_id"] == "0x0001"
    assert saved["records"][0]["state"] == "submitted"


def test_save_without_transactions(tmp_path):
    saver = SnapshotSaver(str(tmp_path / "nested" / "dir"))
    saver.save(AgentContext(agent_id="npc-2"))

    saved = json.loads((tmp_path / "nested" / "dir" / "npc-2" / "transactions.json").read_text(encoding="utf-8"))
    assert saved == {"agent_id": "npc-2", "records": []}
