"""Transaction lifecycle records"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from asuka.errors import InvalidTransition
from asuka.models.actions import ActionInvocation, TransactionHandle
from asuka.models.enums import TransactionState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Terminal states have no outgoing edges
_ALLOWED_TRANSITIONS: dict[TransactionState, frozenset[TransactionState]] = {
    TransactionState.SUBMITTED: frozenset({TransactionState.PENDING}),
    TransactionState.PENDING: frozenset(
        {TransactionState.CONFIRMED, TransactionState.FAILED, TransactionState.TIMED_OUT}
    ),
    TransactionState.CONFIRMED: frozenset(),
    TransactionState.FAILED: frozenset(),
    TransactionState.TIMED_OUT: frozenset(),
}


class TransactionRecord(BaseModel):
    """One submission of an on-chain action and its observed state"""
    record_id: str = Field(..., description="Stable arena identifier")
    chain_id: str = Field(..., description="record_id of the first submission in this retry chain")
    tx_id: str = Field(..., description="Identifier assigned by the chain client")
    idempotency_key: str
    invocation: ActionInvocation

    state: TransactionState = TransactionState.SUBMITTED
    retry_count: int = Field(0, ge=0, description="Resubmissions before this record")

    first_submitted_at: datetime = Field(default_factory=_utcnow)
    last_checked_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None

    superseded_by: Optional[str] = Field(None, description="Record that replaced this one on retry")
    failure_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def agent_id(self) -> str:
        return self.invocation.agent_id

    @property
    def sequence(self) -> int:
        return self.invocation.sequence

    def advance(self, new_state: TransactionState, at: Optional[datetime] = None) -> None:
        """Move to ``new_state``; transitions out of terminal states are refused."""
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"transaction {self.record_id}", self.state.value, new_state.value
            )
        self.state = new_state
        if new_state.is_terminal:
            self.settled_at = at or _utcnow()

    def mark_checked(self, at: datetime) -> None:
        self.last_checked_at = at

    def handle(self, deduplicated: bool = False) -> TransactionHandle:
        return TransactionHandle(
            record_id=self.record_id,
            chain_id=self.chain_id,
            tx_id=self.tx_id,
            idempotency_key=self.idempotency_key,
            deduplicated=deduplicated,
        )
