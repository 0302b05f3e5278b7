"""FastAPI service exposing the agent runtime"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from asuka.actions.tokens import TokenDirectory, register_token_actions
from asuka.agents.runtime import AgentRuntime
from asuka.config import RuntimeConfig
from asuka.errors import InvalidTransition
from asuka.logging_utils import configure_root_logger
from asuka.models.context import AgentContext
from asuka.models.enums import Topic
from asuka.models.events import BusEvent, WorldEvent
from asuka.models.transactions import TransactionRecord
from asuka.registry.action_registry import ActionRegistry


logger = logging.getLogger("asuka.main")

API_VERSION = "0.1.0"


class EventRequest(BaseModel):
    """World event addressed to a single agent"""
    kind: str = Field("message", description="Event type, e.g. 'message' or 'world_tick'")
    source: Optional[str] = Field(None, description="Originating system or user")
    data: dict[str, Any] = Field(default_factory=dict)


class EventAccepted(BaseModel):
    event_id: str
    agent_id: str


class ActionInfo(BaseModel):
    name: str
    description: str
    effect: str
    parameters: dict[str, Any]


class TerminationResult(BaseModel):
    agent_id: str
    terminated: bool


def build_default_runtime() -> AgentRuntime:
    """Runtime configured from ASUKA_* variables with the built-in token actions"""
    config = RuntimeConfig.from_env()
    registry = ActionRegistry()
    register_token_actions(registry, TokenDirectory())
    return AgentRuntime.from_config(config, registry)


def create_app(runtime: Optional[AgentRuntime] = None) -> FastAPI:
    """
    Build the HTTP app around ``runtime``.

    The runtime is started and stopped with the app; with no runtime a
    default one is built from the environment.
    """
    if runtime is None:
        runtime = build_default_runtime()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting agent runtime...")
        await runtime.start()
        yield
        logger.info("Shutting down agent runtime...")
        await runtime.stop()

    app = FastAPI(
        title="Asuka Agent Runtime",
        description="Agent action loop and on-chain transaction lifecycle",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    @app.get("/")
    def root():
        """Service status"""
        return {
            "name": "Asuka Agent Runtime",
            "version": API_VERSION,
            "status": "running" if runtime.running else "stopped",
            "agents": len(runtime.store.list_agents()),
            "actions": len(runtime.registry),
        }

    @app.get("/actions", response_model=list[ActionInfo])
    def list_actions():
        """Registered actions as offered to the reasoning backend"""
        return [
            ActionInfo(
                name=spec.name,
                description=spec.description,
                effect=spec.effect.value,
                parameters=spec.parameters,
            )
            for spec in runtime.registry.specs
        ]

    @app.get("/agents", response_model=list[str])
    def list_agents():
        return runtime.store.list_agents()

    @app.post("/agents/{agent_id}/events", response_model=EventAccepted, status_code=202)
    async def post_event(agent_id: str, request: EventRequest):
        """Publish a world event for an agent; the agent reacts asynchronously"""
        context = runtime.store.find_context(agent_id)
        if context is not None and context.is_terminated:
            raise HTTPException(status_code=409, detail=f"Agent {agent_id} has been terminated")

        event = WorldEvent(agent_ids=[agent_id], kind=request.kind, source=request.source, data=request.data)
        runtime.publish_world_event(event)
        return EventAccepted(event_id=event.event_id, agent_id=agent_id)

    @app.get("/agents/{agent_id}", response_model=AgentContext)
    def get_agent(agent_id: str):
        context = runtime.store.find_context(agent_id)
        if context is None:
            raise HTTPException(status_code=404, detail=f"Agent {agent_id} not found")
        return context

    @app.delete("/agents/{agent_id}", response_model=TerminationResult)
    async def terminate_agent(agent_id: str):
        """Terminate an agent. Already-broadcast transactions still settle."""
        try:
            changed = runtime.terminate(agent_id)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return TerminationResult(agent_id=agent_id, terminated=changed)

    @app.post("/agents/{agent_id}/discard", response_model=AgentContext)
    def discard_agent(agent_id: str):
        """Drop a terminated agent's context and return its final state"""
        try:
            return runtime.discard(agent_id)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except InvalidTransition as e:
            raise HTTPException(status_code=409, detail=str(e))

    @app.get("/transactions/{record_id}", response_model=TransactionRecord)
    def get_transaction(record_id: str):
        record = runtime.transactions.get_record(record_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Transaction record {record_id} not found")
        return record

    @app.get("/transactions", response_model=list[TransactionRecord])
    def list_transactions(key: Optional[str] = None):
        """All retained records, or the attempt history for one idempotency key"""
        if key is not None:
            return runtime.transactions.records_for_key(key)
        return runtime.transactions.all_records()

    @app.get("/events/{topic}", response_model=list[BusEvent])
    def recent_events(topic: str, limit: int = 50):
        """Most recent events published on a bus topic"""
        try:
            resolved = Topic(topic)
        except ValueError:
            valid = ", ".join(t.value for t in Topic)
            raise HTTPException(status_code=400, detail=f"Unknown topic '{topic}'. Valid topics: {valid}")
        if limit < 0:
            raise HTTPException(status_code=400, detail="limit must be non-negative")
        return runtime.bus.history(resolved, limit)

    return app


def main() -> None:
    """Run the service with uvicorn"""
    load_dotenv()
    log_file = configure_root_logger(service_name="api")
    if log_file:
        logger.info("API log file initialised at %s", log_file)

    uvicorn.run(
        create_app(),
        host=os.getenv("ASUKA_HOST", "0.0.0.0"),
        port=int(os.getenv("ASUKA_PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
