"""
Agent runtime - the decision loop tying the core components together.

World events land in the agent state store, wake the agent, and drive
reasoning cycles: propose, resolve, dispatch, record. On-chain outcomes
come back through the event bus from the transaction lifecycle manager and
are appended as ordinary turns, which wakes the agent again.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from asuka.chain.client import ChainClient, JsonRpcChainClient
from asuka.config import RuntimeConfig
from asuka.errors import (
    ActionValidationError,
    AgentTerminatedError,
    BackendError,
    ConcurrentActionError,
)
from asuka.events.event_bus import EventBus, Subscription
from asuka.models.actions import ActionResult, FinalResponse, ToolCall
from asuka.models.character import Character
from asuka.models.context import AgentContext
from asuka.models.enums import AgentState, ResultStatus, Topic
from asuka.models.events import BusEvent, WorldEvent
from asuka.reasoning.gateway import Proposal, ReasoningGateway, propose_with_timeout
from asuka.reasoning.langchain_gateway import LangChainReasoningGateway, build_chat_model
from asuka.registry.action_registry import ActionRegistry
from asuka.state.action_dispatcher import ActionDispatcher
from asuka.state.agent_store import AgentStateStore
from asuka.state.snapshot_saver import SnapshotSaver
from asuka.state.transaction_manager import TransactionLifecycleManager


logger = logging.getLogger("asuka.agents.runtime")

_BUSY_STATES = (AgentState.AWAITING_REASONING, AgentState.AWAITING_ACTION_RESULT)


class AgentRuntime:
    """
    Runs every agent's decision loop.

    Each agent gets at most one activation task at a time; distinct agents
    run concurrently. All context mutation goes through the state store,
    whose state machine is what keeps a single agent from reasoning or
    acting twice at once.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        gateway: ReasoningGateway,
        chain: ChainClient,
        config: Optional[RuntimeConfig] = None,
        bus: Optional[EventBus] = None,
        snapshot_saver: Optional[SnapshotSaver] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.config = config or RuntimeConfig()
        self.registry = registry
        self.gateway = gateway
        self.bus = bus or EventBus(history_size=self.config.bus_history_size)
        self.store = AgentStateStore(bus=self.bus, memory_policy=self.config.memory_policy())
        self.transactions = TransactionLifecycleManager(
            chain,
            bus=self.bus,
            policy=self.config.retry_policy(),
            retention_seconds=self.config.transaction_retention_seconds,
            clock=clock,
            sleep=sleep,
        )
        self.dispatcher = ActionDispatcher(registry, self.transactions, bus=self.bus)
        if snapshot_saver is None and self.config.auto_save_snapshots:
            snapshot_saver = SnapshotSaver(self.config.snapshot_dir)
        self.snapshot_saver = snapshot_saver
        self._sleep = sleep or asyncio.sleep

        self._activations: dict[str, asyncio.Task] = {}
        # Agents with turns they have not reasoned about yet
        self._dirty: set[str] = set()
        # Agent -> sequence it is blocked on (await_confirmation mode)
        self._awaiting: dict[str, int] = {}
        # Attempt chain id -> invocations waiting for its outcome
        self._waiters: dict[str, list[tuple[str, int]]] = {}
        self._dispatching: set[tuple[str, int]] = set()
        self._early_outcomes: dict[str, BusEvent] = {}

        self._subscriptions: list[Subscription] = []
        self._consumers: list[asyncio.Task] = []
        self._running = False

    @classmethod
    def from_config(
        cls,
        config: RuntimeConfig,
        registry: ActionRegistry,
        gateway: Optional[ReasoningGateway] = None,
        chain: Optional[ChainClient] = None,
    ) -> "AgentRuntime":
        """Build a runtime with the default LangChain gateway and JSON-RPC chain client"""
        if gateway is None:
            character = Character.from_toml(config.character_path) if config.character_path else None
            gateway = LangChainReasoningGateway(
                build_chat_model(config),
                character=character,
                memory_policy=config.memory_policy(),
            )
        if chain is None:
            chain = JsonRpcChainClient(config.chain_rpc_url)
        return cls(registry, gateway, chain, config=config)

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for topic, handler in (
            (Topic.WORLD_EVENTS, self._on_world_event),
            (Topic.TRANSACTION_OUTCOMES, self.handle_transaction_outcome),
        ):
            subscription = self.bus.subscribe(topic)
            self._subscriptions.append(subscription)
            self._consumers.append(
                asyncio.create_task(self._consume(subscription, handler), name=f"consume-{topic.value}")
            )
        logger.info("Agent runtime started with %d registered action(s)", len(self.registry))

    async def stop(self) -> None:
        """Cancel activations and reconciliation. Broadcast transactions are not revoked."""
        if not self._running:
            return
        self._running = False

        activations = list(self._activations.values())
        for task in activations:
            task.cancel()
        if activations:
            await asyncio.gather(*activations, return_exceptions=True)

        await self.transactions.shutdown()

        for subscription in self._subscriptions:
            subscription.close()
        if self._consumers:
            await asyncio.gather(*self._consumers, return_exceptions=True)
        self._subscriptions.clear()
        self._consumers.clear()
        logger.info("Agent runtime stopped")

    async def __aenter__(self) -> "AgentRuntime":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _consume(self, subscription: Subscription, handler: Callable[[BusEvent], None]) -> None:
        async for event in subscription:
            try:
                handler(event)
            except Exception:
                logger.exception("Failed to handle %s event %s", subscription.topic.value, event.event_id)

    # Inbound

    def publish_world_event(self, event: WorldEvent) -> BusEvent:
        """Put a world event on the bus for the runtime to pick up"""
        return self.bus.publish(Topic.WORLD_EVENTS, event)

    def _on_world_event(self, bus_event: BusEvent) -> None:
        payload = bus_event.payload
        if isinstance(payload, dict):
            payload = WorldEvent.model_validate(payload)
        if not isinstance(payload, WorldEvent):
            logger.warning("Ignoring %s on world events", type(payload).__name__)
            return
        self.handle_world_event(payload)

    def handle_world_event(self, event: WorldEvent) -> None:
        """Record ``event`` for every addressed agent and wake them"""
        for agent_id in event.agent_ids:
            try:
                self.store.append_turn(agent_id, event)
            except AgentTerminatedError:
                logger.info("Dropped event %s for terminated agent %s", event.event_id, agent_id)
                continue
            self._wake(agent_id)

    def handle_transaction_outcome(self, bus_event: BusEvent) -> None:
        """Deliver a terminal on-chain outcome to every invocation waiting on it"""
        result = bus_event.payload
        if not isinstance(result, ActionResult):
            logger.warning("Ignoring %s on transaction outcomes", type(result).__name__)
            return

        chain_id = bus_event.details.get("chain_id")
        if chain_id is not None and self._dispatching:
            # Invocations still inside dispatch may yet get a handle to this
            # chain; they claim the outcome once they register
            self._early_outcomes[chain_id] = bus_event

        waiters = self._waiters.pop(chain_id, None)
        if waiters is None:
            origin = (bus_event.agent_id, bus_event.sequence)
            if origin in self._dispatching or bus_event.agent_id is None:
                return
            waiters = [origin]
        self._route_outcome(result, waiters)

    def _route_outcome(self, result: ActionResult, waiters: list[tuple[str, int]]) -> None:
        for agent_id, sequence in waiters:
            outcome = result
            if (agent_id, sequence) != (result.agent_id, result.sequence):
                outcome = result.model_copy(update={"agent_id": agent_id, "sequence": sequence})
            self._deliver_outcome(agent_id, sequence, outcome)

    def _deliver_outcome(self, agent_id: str, sequence: int, result: ActionResult) -> None:
        self.store.clear_pending(agent_id, sequence)
        try:
            self.store.append_turn(agent_id, result, create=False)
        except AgentTerminatedError:
            logger.info(
                "Suppressed %s outcome of #%d for terminated agent %s",
                result.status.value,
                sequence,
                agent_id,
            )
            return
        except ValueError:
            logger.info(
                "Dropped %s outcome of #%d for discarded agent %s",
                result.status.value,
                sequence,
                agent_id,
            )
            return

        if self._awaiting.get(agent_id) == sequence:
            del self._awaiting[agent_id]
            self.store.transition(agent_id, AgentState.AWAITING_ACTION_RESULT, AgentState.IDLE)
        self._wake(agent_id)

    # Activation

    def _wake(self, agent_id: str) -> None:
        self._dirty.add(agent_id)
        task = self._activations.get(agent_id)
        if task is not None and not task.done():
            return
        if self.store.state_of(agent_id) != AgentState.IDLE:
            return
        self._activations[agent_id] = asyncio.create_task(
            self._activate(agent_id), name=f"agent-{agent_id}"
        )

    async def _activate(self, agent_id: str) -> None:
        try:
            while agent_id in self._dirty and self.store.state_of(agent_id) == AgentState.IDLE:
                await self._run_activation(agent_id)
        except AgentTerminatedError:
            logger.info("Agent %s terminated mid-activation", agent_id)
        except asyncio.CancelledError:
            logger.info("Activation of agent %s cancelled", agent_id)
            raise
        except Exception:
            logger.exception("Activation of agent %s failed", agent_id)
            self._release(agent_id)
        finally:
            if self._activations.get(agent_id) is asyncio.current_task():
                del self._activations[agent_id]

    def _release(self, agent_id: str) -> None:
        """Return a busy agent to idle after an unexpected failure"""
        self._awaiting.pop(agent_id, None)
        state = self.store.state_of(agent_id)
        if state in _BUSY_STATES:
            self.store.transition(agent_id, state, AgentState.IDLE)

    async def _run_activation(self, agent_id: str) -> None:
        for _ in range(self.config.max_steps):
            if not await self._cycle(agent_id):
                return
        logger.info("Agent %s reached the step limit of %d", agent_id, self.config.max_steps)

    async def _cycle(self, agent_id: str) -> bool:
        """One reason/act step. Returns True if the agent should reason again."""
        try:
            self.store.transition(agent_id, AgentState.IDLE, AgentState.AWAITING_REASONING)
        except ConcurrentActionError as exc:
            logger.debug("%s", exc)
            return False

        proposal = await self._reason(agent_id)
        if proposal is None:
            return False

        if isinstance(proposal, FinalResponse):
            self.store.append_turn(agent_id, proposal)
            self.bus.publish(
                Topic.AGENT_RESPONSES,
                proposal,
                agent_id=agent_id,
                details={"text": proposal.text},
            )
            self.store.transition(agent_id, AgentState.AWAITING_REASONING, AgentState.IDLE)
            return False

        return await self._act(agent_id, proposal)

    async def _reason(self, agent_id: str) -> Optional[Proposal]:
        """
        Ask the gateway for a proposal, retrying backend failures.

        Every failure is recorded as a backend_error turn. After the last
        attempt the agent goes back to idle and None is returned.
        """
        attempts = self.config.max_reasoning_attempts
        for attempt in range(1, attempts + 1):
            self._dirty.discard(agent_id)
            context = self.store.get_context(agent_id)
            try:
                return await propose_with_timeout(
                    self.gateway,
                    context,
                    self.registry.specs,
                    self.config.reasoning_timeout,
                )
            except BackendError as exc:
                logger.warning(
                    "Reasoning for agent %s failed (attempt %d/%d): %s",
                    agent_id,
                    attempt,
                    attempts,
                    exc,
                )
                self.store.append_turn(agent_id, exc)
                if attempt < attempts:
                    await self._sleep(self.config.reasoning_retry_delay)

        self.store.transition(agent_id, AgentState.AWAITING_REASONING, AgentState.IDLE)
        return None

    async def _act(self, agent_id: str, call: ToolCall) -> bool:
        sequence = self.store.next_sequence(agent_id)
        try:
            invocation = self.registry.resolve(agent_id, sequence, call.name, call.arguments)
        except ActionValidationError as exc:
            logger.info("Agent %s proposed an invalid action %s: %s", agent_id, call.name, exc)
            result = ActionResult.rejected(agent_id, sequence, call.name, str(exc))
            self.store.transition(agent_id, AgentState.AWAITING_REASONING, AgentState.AWAITING_ACTION_RESULT)
            self.store.append_turn(agent_id, result)
            self.bus.publish(Topic.ACTION_RESULTS, result, agent_id=agent_id, sequence=sequence)
            self.store.transition(agent_id, AgentState.AWAITING_ACTION_RESULT, AgentState.IDLE)
            return True

        self.store.transition(agent_id, AgentState.AWAITING_REASONING, AgentState.AWAITING_ACTION_RESULT)
        self.store.append_turn(agent_id, invocation)

        key = (agent_id, sequence)
        self._dispatching.add(key)
        try:
            result = await self.dispatcher.dispatch(invocation)
            self.store.append_turn(agent_id, result)

            if result.status != ResultStatus.SUBMITTED or result.transaction is None:
                self.store.transition(agent_id, AgentState.AWAITING_ACTION_RESULT, AgentState.IDLE)
                return True

            self.store.mark_pending(agent_id, sequence)
            keep_going = not self.config.await_confirmation
            if keep_going:
                self.store.transition(agent_id, AgentState.AWAITING_ACTION_RESULT, AgentState.IDLE)
            else:
                self._awaiting[agent_id] = sequence

            chain_id = result.transaction.chain_id
            early = self._early_outcomes.get(chain_id)
            if early is not None:
                self._route_outcome(early.payload, [key])
            else:
                self._waiters.setdefault(chain_id, []).append(key)
            return keep_going
        finally:
            self._dispatching.discard(key)
            if not self._dispatching:
                self._early_outcomes.clear()

    # Control

    def terminate(self, agent_id: str) -> bool:
        """
        Retire an agent. An in-flight reasoning call is abandoned; submitted
        transactions keep reconciling but their outcomes are no longer
        written to the context.

        Raises:
            ValueError: the agent is unknown
        """
        changed = self.store.terminate(agent_id)
        task = self._activations.pop(agent_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._awaiting.pop(agent_id, None)
        self._dirty.discard(agent_id)

        if changed and self.snapshot_saver is not None:
            paths = self.save_snapshot(agent_id)
            logger.info("Saved snapshot of agent %s to %s", agent_id, paths["context"])
        return changed

    def discard(self, agent_id: str) -> AgentContext:
        """Drop a terminated agent's context. Late on-chain outcomes for it are dropped too."""
        return self.store.discard(agent_id)

    def save_snapshot(self, agent_id: str) -> dict[str, str]:
        if self.snapshot_saver is None:
            raise ValueError("No snapshot saver configured")
        context = self.store.find_context(agent_id)
        if context is None:
            raise ValueError(f"Agent {agent_id} not found")
        records = [r for r in self.transactions.all_records() if r.agent_id == agent_id]
        return self.snapshot_saver.save(context, records)

    def is_settled(self, agent_id: Optional[str] = None) -> bool:
        """True when nothing is queued, reasoning, or awaiting reconciliation"""
        if any(subscription.pending for subscription in self._subscriptions):
            return False
        agent_ids = [agent_id] if agent_id is not None else self.store.list_agents()
        for current in agent_ids:
            task = self._activations.get(current)
            if task is not None and not task.done():
                return False
            context = self.store.find_context(current)
            if context is None or context.is_terminated:
                continue
            if context.state == AgentState.AWAITING_REASONING or context.pending_actions:
                return False
        return True

    async def wait_until_settled(
        self,
        agent_id: Optional[str] = None,
        timeout: float = 5.0,
        interval: float = 0.01,
    ) -> bool:
        """Poll until ``is_settled``; returns False if ``timeout`` elapses first."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.is_settled(agent_id):
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(interval)
        return True
