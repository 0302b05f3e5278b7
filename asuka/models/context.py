"""Per-agent decision context"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from asuka.models.actions import ActionInvocation, ActionResult
from asuka.models.enums import AgentState, TurnKind
from asuka.models.events import WorldEvent


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Turn(BaseModel):
    """One entry in an agent's ordered history"""
    index: int = Field(..., ge=1, description="Append order within the agent")
    kind: TurnKind
    timestamp: datetime = Field(default_factory=_utcnow)

    event: Optional[WorldEvent] = None
    invocation: Optional[ActionInvocation] = None
    result: Optional[ActionResult] = None
    error: Optional[str] = None
    text: Optional[str] = None

    def describe(self) -> str:
        """Single-line rendering used for prompts and memory summaries"""
        if self.kind == TurnKind.EVENT and self.event:
            return f"[event] {self.event.describe()}"
        if self.kind == TurnKind.ACTION and self.invocation:
            return f"[action] {self.invocation.describe()}"
        if self.kind == TurnKind.RESULT and self.result:
            return f"[result] {self.result.describe()}"
        if self.kind == TurnKind.BACKEND_ERROR:
            return f"[backend_error] {self.error}"
        if self.kind == TurnKind.FINAL_RESPONSE:
            return f"[reply] {self.text}"
        return f"[{self.kind.value}]"


class AgentContext(BaseModel):
    """
    Conversational and decision state of a single agent.

    Owned exclusively by the agent state store; everything else receives
    copies.
    """
    agent_id: str
    state: AgentState = AgentState.IDLE
    turns: list[Turn] = Field(default_factory=list)
    memory_summary: str = ""

    next_sequence: int = 1
    next_turn_index: int = 1
    compacted_turns: int = Field(0, description="Turns folded into memory_summary")

    # Sequence numbers of on-chain actions still awaiting reconciliation
    pending_actions: list[int] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminated(self) -> bool:
        return self.state == AgentState.TERMINATED

    @property
    def last_turn(self) -> Optional[Turn]:
        return self.turns[-1] if self.turns else None

    def turns_of(self, kind: TurnKind) -> list[Turn]:
        return [turn for turn in self.turns if turn.kind == kind]

    def results_for(self, sequence: int) -> list[ActionResult]:
        return [
            turn.result
            for turn in self.turns
            if turn.kind == TurnKind.RESULT and turn.result and turn.result.sequence == sequence
        ]
