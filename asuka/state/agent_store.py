"""Agent state store - owns every agent's decision context"""
import logging
import threading
from datetime import datetime, timezone
from typing import Optional, Union

from asuka.errors import (
    AgentTerminatedError,
    BackendError,
    ConcurrentActionError,
    InvalidTransition,
)
from asuka.events.event_bus import EventBus
from asuka.models.actions import ActionInvocation, ActionResult, FinalResponse
from asuka.models.context import AgentContext, Turn
from asuka.models.enums import AgentState, Topic, TurnKind
from asuka.models.events import WorldEvent
from asuka.state.memory_policy import ContextMemoryPolicy


logger = logging.getLogger("asuka.state.store")

TurnItem = Union[WorldEvent, ActionInvocation, ActionResult, FinalResponse, BackendError]

_BUSY_STATES = frozenset({AgentState.AWAITING_REASONING, AgentState.AWAITING_ACTION_RESULT})

_ALLOWED_TRANSITIONS: dict[AgentState, frozenset[AgentState]] = {
    AgentState.IDLE: frozenset({AgentState.AWAITING_REASONING, AgentState.TERMINATED}),
    AgentState.AWAITING_REASONING: frozenset(
        {AgentState.AWAITING_ACTION_RESULT, AgentState.IDLE, AgentState.TERMINATED}
    ),
    AgentState.AWAITING_ACTION_RESULT: frozenset({AgentState.IDLE, AgentState.TERMINATED}),
    AgentState.TERMINATED: frozenset(),
}


class AgentStateStore:
    """
    Holds each agent's context keyed by agent id and enforces the per-agent
    state machine.

    Callers only ever receive copies of a context; every mutation goes
    through this class under a single lock, which is what serialises an
    agent's own decision loop while leaving other agents untouched.
    """

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        memory_policy: Optional[ContextMemoryPolicy] = None,
    ):
        self.bus = bus
        self.memory_policy = memory_policy
        self._contexts: dict[str, AgentContext] = {}
        self._lock = threading.RLock()

    def _get_or_create(self, agent_id: str) -> AgentContext:
        context = self._contexts.get(agent_id)
        if context is None:
            context = AgentContext(agent_id=agent_id)
            self._contexts[agent_id] = context
            logger.info("Created context for agent %s", agent_id)
        return context

    def _require(self, agent_id: str) -> AgentContext:
        context = self._contexts.get(agent_id)
        if context is None:
            raise ValueError(f"Agent {agent_id} not found")
        return context

    def get_context(self, agent_id: str) -> AgentContext:
        """Snapshot of the agent's context, creating it if absent"""
        with self._lock:
            return self._get_or_create(agent_id).model_copy(deep=True)

    def find_context(self, agent_id: str) -> Optional[AgentContext]:
        """Snapshot of an existing context, or None"""
        with self._lock:
            context = self._contexts.get(agent_id)
            return context.model_copy(deep=True) if context else None

    def has_agent(self, agent_id: str) -> bool:
        with self._lock:
            return agent_id in self._contexts

    def list_agents(self) -> list[str]:
        with self._lock:
            return list(self._contexts)

    def state_of(self, agent_id: str) -> Optional[AgentState]:
        with self._lock:
            context = self._contexts.get(agent_id)
            return context.state if context else None

    def append_turn(self, agent_id: str, item: TurnItem, create: bool = True) -> Turn:
        """
        Atomically append a turn and notify subscribers.

        With ``create=False`` an unknown agent is an error instead of a new
        context.

        Raises:
            AgentTerminatedError: the agent was terminated; nothing is written
            ValueError: ``create`` is False and the agent does not exist
        """
        with self._lock:
            context = self._get_or_create(agent_id) if create else self._require(agent_id)
            if context.is_terminated:
                raise AgentTerminatedError(agent_id)

            turn = self._build_turn(context.next_turn_index, item)
            context.next_turn_index += 1
            context.turns.append(turn)
            context.updated_at = turn.timestamp

            if self.memory_policy is not None:
                self.memory_policy.compact(context)

        logger.debug("Agent %s turn %d: %s", agent_id, turn.index, turn.describe())

        if self.bus is not None:
            self.bus.publish(
                Topic.CONTEXT_UPDATED,
                turn,
                agent_id=agent_id,
                sequence=self._sequence_of(turn),
                details={"turn_index": turn.index, "kind": turn.kind.value},
            )
        return turn

    @staticmethod
    def _build_turn(index: int, item: TurnItem) -> Turn:
        if isinstance(item, WorldEvent):
            return Turn(index=index, kind=TurnKind.EVENT, event=item)
        if isinstance(item, ActionInvocation):
            return Turn(index=index, kind=TurnKind.ACTION, invocation=item)
        if isinstance(item, ActionResult):
            return Turn(index=index, kind=TurnKind.RESULT, result=item)
        if isinstance(item, FinalResponse):
            return Turn(index=index, kind=TurnKind.FINAL_RESPONSE, text=item.text)
        if isinstance(item, BackendError):
            return Turn(
                index=index,
                kind=TurnKind.BACKEND_ERROR,
                error=f"{type(item).__name__}: {item}",
            )
        raise TypeError(f"Cannot record {type(item).__name__} as a turn")

    @staticmethod
    def _sequence_of(turn: Turn) -> Optional[int]:
        if turn.invocation is not None:
            return turn.invocation.sequence
        if turn.result is not None:
            return turn.result.sequence
        return None

    def transition(self, agent_id: str, from_state: AgentState, to_state: AgentState) -> None:
        """
        Move an agent between lifecycle states.

        Raises:
            ConcurrentActionError: caller expected an idle agent that is busy
            AgentTerminatedError: the agent is already terminated
            InvalidTransition: any other mismatch or disallowed edge
        """
        with self._lock:
            context = self._get_or_create(agent_id)
            current = context.state

            if current != from_state:
                if current == AgentState.TERMINATED:
                    raise AgentTerminatedError(agent_id)
                if from_state == AgentState.IDLE and current in _BUSY_STATES:
                    raise ConcurrentActionError(agent_id, current.value)
                raise InvalidTransition(
                    f"agent {agent_id}", from_state.value, to_state.value, current.value
                )

            if to_state not in _ALLOWED_TRANSITIONS[from_state]:
                raise InvalidTransition(f"agent {agent_id}", from_state.value, to_state.value)

            context.state = to_state
            context.updated_at = datetime.now(timezone.utc)

        logger.debug("Agent %s: %s -> %s", agent_id, from_state.value, to_state.value)

    def terminate(self, agent_id: str) -> bool:
        """
        Terminate an agent from any non-terminal state.

        Returns False when the agent was already terminated.
        """
        with self._lock:
            context = self._require(agent_id)
            if context.is_terminated:
                return False
            previous = context.state
            context.state = AgentState.TERMINATED
            context.updated_at = datetime.now(timezone.utc)

        logger.info("Agent %s terminated (was %s)", agent_id, previous.value)
        return True

    def discard(self, agent_id: str) -> AgentContext:
        """Drop a terminated agent's context and return the final snapshot"""
        with self._lock:
            context = self._require(agent_id)
            if not context.is_terminated:
                raise InvalidTransition(
                    f"agent {agent_id}", context.state.value, "discarded", context.state.value
                )
            del self._contexts[agent_id]
        logger.info("Discarded context for agent %s", agent_id)
        return context

    def next_sequence(self, agent_id: str) -> int:
        """Allocate the next invocation sequence number for an agent"""
        with self._lock:
            context = self._get_or_create(agent_id)
            sequence = context.next_sequence
            context.next_sequence += 1
            return sequence

    def mark_pending(self, agent_id: str, sequence: int) -> None:
        with self._lock:
            context = self._require(agent_id)
            if sequence not in context.pending_actions:
                context.pending_actions.append(sequence)

    def clear_pending(self, agent_id: str, sequence: int) -> bool:
        """Forget a pending on-chain action. Returns False if it was not pending."""
        with self._lock:
            context = self._contexts.get(agent_id)
            if context is None or sequence not in context.pending_actions:
                return False
            context.pending_actions.remove(sequence)
            return True
