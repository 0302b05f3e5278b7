"""Tests for FastAPI endpoints"""
import time

import pytest
from fastapi.testclient import TestClient

from asuka.agents.runtime import AgentRuntime
from asuka.config import RuntimeConfig
from asuka.main import API_VERSION, create_app
from asuka.models.actions import ToolCall


def _wait_until(client, agent_id, predicate, attempts=200):
    """Poll the agent endpoint; the runtime reacts on the server's loop"""
    data = None
    for _ in range(attempts):
        response = client.get(f"/agents/{agent_id}")
        if response.status_code == 200:
            data = response.json()
            if predicate(data):
                return data
        time.sleep(0.01)
    return data


@pytest.fixture
def runtime(registry, scripted_gateway, fake_chain, fake_clock):
    gateway = scripted_gateway(ToolCall(name="mint_item", arguments={"itemId": 42}))
    return AgentRuntime(
        registry,
        gateway,
        fake_chain,
        config=RuntimeConfig(poll_interval=1.0, confirmation_timeout=30.0, reasoning_retry_delay=0),
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


def _settled(data):
    return (
        data["state"] == "idle"
        and not data["pending_actions"]
        and data["turns"]
        and data["turns"][-1]["kind"] == "final_response"
    )


def test_root_endpoint(client):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Asuka Agent Runtime"
    assert data["version"] == API_VERSION
    assert data["status"] == "running"
    assert data["actions"] == 3
    assert data["agents"] == 0


def test_list_actions(client):
    response = client.get("/actions")
    assert response.status_code == 200
    actions = {a["name"]: a for a in response.json()}
    assert set(actions) == {"look", "remember", "mint_item"}
    assert actions["mint_item"]["effect"] == "on_chain_write"
    assert actions["look"]["parameters"]["required"] == ["target"]


def test_post_event_drives_agent(client, fake_chain):
    """A posted event is accepted immediately and the agent acts on it"""
    response = client.post(
        "/agents/npc-1/events",
        json={"kind": "message", "source": "discord", "data": {"text": "forge me a sword"}},
    )
    assert response.status_code == 202
    accepted = response.json()
    assert accepted["agent_id"] == "npc-1"
    assert accepted["event_id"]

    data = _wait_until(client, "npc-1", _settled)
    assert data is not None and _settled(data)

    kinds = [turn["kind"] for turn in data["turns"]]
    assert kinds[:3] == ["event", "action", "result"]
    statuses = [turn["result"]["status"] for turn in data["turns"] if turn["kind"] == "result"]
    assert statuses == ["submitted", "success"]
    assert data["turns"][0]["event"]["source"] == "discord"
    assert len(fake_chain.submitted) == 1

    assert client.get("/agents").json() == ["npc-1"]


def test_transactions_endpoints(client):
    client.post("/agents/npc-1/events", json={"data": {"text": "mint"}})
    data = _wait_until(client, "npc-1", _settled)
    handle = next(
        turn["result"]["transaction"]
        for turn in data["turns"]
        if turn["kind"] == "result" and turn["result"]["transaction"]
    )

    response = client.get(f"/transactions/{handle['record_id']}")
    assert response.status_code == 200
    record = response.json()
    assert record["state"] == "confirmed"
    assert record["tx_id"] == handle["tx_id"]

    by_key = client.get("/transactions", params={"key": handle["idempotency_key"]}).json()
    assert [r["record_id"] for r in by_key] == [handle["record_id"]]
    assert len(client.get("/transactions").json()) == 1
    assert client.get("/transactions/txr-999").status_code == 404


def test_get_unknown_agent(client):
    response = client.get("/agents/nobody")
    assert response.status_code == 404


def test_terminate_and_discard(client):
    client.post("/agents/npc-1/events", json={"data": {"text": "hi"}})
    _wait_until(client, "npc-1", _settled)

    # Discarding a live agent is refused
    assert client.post("/agents/npc-1/discard").status_code == 409

    response = client.delete("/agents/npc-1")
    assert response.status_code == 200
    assert response.json() == {"agent_id": "npc-1", "terminated": True}
    assert client.delete("/agents/npc-1").json()["terminated"] is False

    rejected = client.post("/agents/npc-1/events", json={"data": {"text": "still there?"}})
    assert rejected.status_code == 409

    discarded = client.post("/agents/npc-1/discard")
    assert discarded.status_code == 200
    assert discarded.json()["state"] == "terminated"
    assert client.get("/agents/npc-1").status_code == 404
    assert client.post("/agents/npc-1/discard").status_code == 404


def test_terminate_unknown_agent(client):
    assert client.delete("/agents/nobody").status_code == 404


def test_recent_events(client):
    client.post("/agents/npc-1/events", json={"data": {"text": "hi"}})
    _wait_until(client, "npc-1", _settled)

    response = client.get("/events/agent_responses")
    assert response.status_code == 200
    events = response.json()
    assert events[-1]["agent_id"] == "npc-1"
    assert events[-1]["details"]["text"] == "done"

    limited = client.get("/events/context_updated", params={"limit": 2}).json()
    assert len(limited) == 2


def test_recent_events_rejects_bad_input(client):
    unknown = client.get("/events/gossip")
    assert unknown.status_code == 400
    assert "Valid topics" in unknown.json()["detail"]
    assert client.get("/events/world_events", params={"limit": -1}).status_code == 400
