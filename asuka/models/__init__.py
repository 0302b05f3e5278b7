"""Agent core data models"""
from asuka.models.enums import (
    AgentState,
    EffectClass,
    ResultStatus,
    TransactionState,
    TurnKind,
    Topic,
)
from asuka.models.actions import (
    ActionSpec,
    ActionInvocation,
    ActionResult,
    TransactionHandle,
    ToolCall,
    FinalResponse,
)
from asuka.models.events import WorldEvent, BusEvent
from asuka.models.context import AgentContext, Turn
from asuka.models.transactions import TransactionRecord
from asuka.models.character import Character

__all__ = [
    "AgentState",
    "EffectClass",
    "ResultStatus",
    "TransactionState",
    "TurnKind",
    "Topic",
    "ActionSpec",
    "ActionInvocation",
    "ActionResult",
    "TransactionHandle",
    "ToolCall",
    "FinalResponse",
    "WorldEvent",
    "BusEvent",
    "AgentContext",
    "Turn",
    "TransactionRecord",
    "Character",
]
