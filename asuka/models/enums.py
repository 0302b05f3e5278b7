"""Core enumerations"""
from enum import Enum


class AgentState(str, Enum):
    """Lifecycle of an agent's decision loop"""
    IDLE = "idle"
    AWAITING_REASONING = "awaiting_reasoning"
    AWAITING_ACTION_RESULT = "awaiting_action_result"
    TERMINATED = "terminated"


class EffectClass(str, Enum):
    """Declared side effect of an action"""
    READ_ONLY = "read_only"
    OFF_CHAIN_WRITE = "off_chain_write"
    ON_CHAIN_WRITE = "on_chain_write"


class ResultStatus(str, Enum):
    """Outcome of an action invocation"""
    SUCCESS = "success"
    REJECTED = "rejected"  # failed validation, never attempted
    FAILED = "failed"  # attempted, did not complete
    SUBMITTED = "submitted"  # on-chain, awaiting reconciliation


class TransactionState(str, Enum):
    """Lifecycle of a single on-chain submission"""
    SUBMITTED = "submitted"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TRANSACTION_STATES


TERMINAL_TRANSACTION_STATES = frozenset(
    {TransactionState.CONFIRMED, TransactionState.FAILED, TransactionState.TIMED_OUT}
)


class TurnKind(str, Enum):
    """Kinds of entries in an agent's context"""
    EVENT = "event"
    ACTION = "action"
    RESULT = "result"
    BACKEND_ERROR = "backend_error"
    FINAL_RESPONSE = "final_response"


class Topic(str, Enum):
    """Event bus topics"""
    WORLD_EVENTS = "world_events"
    CONTEXT_UPDATED = "context_updated"
    ACTION_RESULTS = "action_results"
    TRANSACTION_OUTCOMES = "transaction_outcomes"
    AGENT_RESPONSES = "agent_responses"
