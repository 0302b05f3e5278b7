"""Pytest configuration and shared fakes for the test suite.

Registers no-op ``--cov`` options when ``pytest-cov`` is unavailable so
the suite still runs in minimal environments, and provides deterministic
stand-ins for the reasoning backend, the chain client and the clock.
"""
from __future__ import annotations

import asyncio
import importlib.util
from datetime import datetime, timedelta, timezone
from typing import Any, Final, Optional

import pytest

from asuka.chain.client import ChainStatus
from asuka.errors import SubmissionError
from asuka.models.actions import ActionSpec, FinalResponse
from asuka.models.enums import EffectClass
from asuka.registry.action_registry import ActionRegistry


def _has_pytest_cov() -> bool:
    """Return True if the ``pytest-cov`` plugin can be imported."""

    return importlib.util.find_spec("pytest_cov") is not None


_HAS_PYTEST_COV: Final[bool] = _has_pytest_cov()


if not _HAS_PYTEST_COV:

    def pytest_addoption(parser):  # type: ignore[override]
        """Register no-op coverage flags when pytest-cov is missing."""

        parser.addoption(
            "--cov",
            action="append",
            default=[],
            dest="cov",
            metavar="COV",
            help="(no-op) Enable coverage reporting when pytest-cov is installed.",
        )
        parser.addoption(
            "--cov-report",
            action="append",
            default=[],
            dest="cov_report",
            metavar="REPORT",
            help="(no-op) Coverage reports require pytest-cov.",
        )


class FakeClock:
    """Clock whose sleep advances time instantly"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)
        await asyncio.sleep(0)


class FakeChain:
    """
    Chain client double.

    ``script`` is the sequence of statuses every transaction reports, one
    per poll; the last entry repeats. ``scripts`` overrides it per tx id.
    """

    def __init__(self, script: Optional[list[ChainStatus]] = None):
        self.script = script if script is not None else [ChainStatus.CONFIRMED]
        self.scripts: dict[str, list[ChainStatus]] = {}
        self.submitted: list[Any] = []
        self.polls: dict[str, int] = {}
        self.submit_error: Optional[Exception] = None
        # When set, status polls block until the event fires
        self.gate: Optional[asyncio.Event] = None

    async def submit(self, payload: Any) -> str:
        await asyncio.sleep(0)
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(payload)
        return f"0x{len(self.submitted):04x}"

    async def get_status(self, tx_id: str) -> ChainStatus:
        if self.gate is not None:
            await self.gate.wait()
        self.polls[tx_id] = self.polls.get(tx_id, 0) + 1
        script = self.scripts.get(tx_id, self.script)
        if not script:
            return ChainStatus.PENDING
        return script[min(self.polls[tx_id], len(script)) - 1]

    def reject_submissions(self, message: str = "insufficient fee") -> None:
        self.submit_error = SubmissionError(message)


class ScriptedGateway:
    """
    Reasoning gateway returning scripted proposals in order.

    Exceptions in the script are raised; once the script runs out the
    gateway replies with a FinalResponse.
    """

    def __init__(self, *steps: Any):
        self.steps = list(steps)
        self.contexts = []
        self.actions_seen = []

    async def propose(self, context, actions, timeout):
        self.contexts.append(context)
        self.actions_seen.append([spec.name for spec in actions])
        await asyncio.sleep(0)
        if not self.steps:
            return FinalResponse(text="done")
        step = self.steps.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def scripted_gateway():
    """Factory for ScriptedGateway instances"""
    return ScriptedGateway


@pytest.fixture
def executed() -> list:
    """Records executor calls made by the ``registry`` fixture's actions"""
    return []


@pytest.fixture
def registry(executed) -> ActionRegistry:
    """Registry with a read-only, an off-chain and an on-chain action"""

    def look(target: str) -> str:
        executed.append(("look", target))
        return f"You see {target}"

    async def remember(note: str, importance: int = 1) -> dict:
        executed.append(("remember", note))
        return {"stored": note, "importance": importance}

    def mint_item(itemId: int) -> dict:
        executed.append(("mint_item", itemId))
        return {"entry_point": "mint", "calldata": [itemId]}

    registry = ActionRegistry()
    registry.register(
        ActionSpec(
            name="look",
            description="Look at something",
            parameters={
                "type": "object",
                "properties": {"target": {"type": "string"}},
                "required": ["target"],
            },
            effect=EffectClass.READ_ONLY,
            executor=look,
        )
    )
    registry.register(
        ActionSpec(
            name="remember",
            description="Store a note",
            parameters={
                "type": "object",
                "properties": {
                    "note": {"type": "string"},
                    "importance": {"type": "integer"},
                },
                "required": ["note"],
            },
            effect=EffectClass.OFF_CHAIN_WRITE,
            executor=remember,
        )
    )
    registry.register(
        ActionSpec(
            name="mint_item",
            description="Mint an item on chain",
            parameters={
                "type": "object",
                "properties": {"itemId": {"type": "integer"}},
                "required": ["itemId"],
            },
            effect=EffectClass.ON_CHAIN_WRITE,
            executor=mint_item,
        )
    )
    return registry
