"""Action specification, invocation and result models"""
import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from asuka.models.enums import EffectClass, ResultStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_idempotency_key(action: str, params: dict[str, Any]) -> str:
    """Derive a stable key from the action name and its canonicalised parameters."""
    canonical = json.dumps(
        {"action": action, "params": params},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ActionSpec(BaseModel):
    """A capability an agent may invoke, declared once at startup"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique action name")
    description: str = Field("", description="Shown to the reasoning backend")
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON-schema object describing the parameters",
    )
    effect: EffectClass = Field(EffectClass.READ_ONLY, description="Declared effect class")

    # For read-only/off-chain actions the executor returns the result payload.
    # For on-chain actions it returns the payload handed to the chain client.
    executor: Callable[..., Any]
    idempotency_key: Optional[Callable[[dict[str, Any]], str]] = None

    @property
    def is_on_chain(self) -> bool:
        return self.effect == EffectClass.ON_CHAIN_WRITE

    def key_for(self, params: dict[str, Any]) -> str:
        """Idempotency key used to deduplicate on-chain submissions"""
        if self.idempotency_key is not None:
            return self.idempotency_key(params)
        return default_idempotency_key(self.name, params)

    def to_tool_definition(self) -> dict[str, Any]:
        """Function definition in the format chat models expect for tool binding"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or self.name,
                "parameters": self.parameters,
            },
        }


class ActionInvocation(BaseModel):
    """A validated request by one agent to run one action"""
    model_config = ConfigDict(frozen=True)

    agent_id: str
    action: str
    effect: EffectClass
    params: dict[str, Any] = Field(default_factory=dict)
    sequence: int = Field(..., ge=1, description="Monotonic per agent")
    created_at: datetime = Field(default_factory=_utcnow)

    def describe(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in sorted(self.params.items()))
        return f"#{self.sequence} {self.action}({args})"


class TransactionHandle(BaseModel):
    """Reference to the transaction record tracking an on-chain action"""
    record_id: str
    chain_id: str
    tx_id: str
    idempotency_key: str
    deduplicated: bool = False


class ActionResult(BaseModel):
    """Outcome of an action invocation"""
    agent_id: str
    sequence: int
    action: str
    status: ResultStatus

    payload: Any = None
    reason: Optional[str] = None
    transaction: Optional[TransactionHandle] = None

    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        """Submitted on-chain results are settled later by reconciliation"""
        return self.status != ResultStatus.SUBMITTED

    @classmethod
    def success(cls, invocation: ActionInvocation, payload: Any = None) -> "ActionResult":
        return cls(
            agent_id=invocation.agent_id,
            sequence=invocation.sequence,
            action=invocation.action,
            status=ResultStatus.SUCCESS,
            payload=payload,
        )

    @classmethod
    def rejected(cls, agent_id: str, sequence: int, action: str, reason: str) -> "ActionResult":
        return cls(
            agent_id=agent_id,
            sequence=sequence,
            action=action,
            status=ResultStatus.REJECTED,
            reason=reason,
        )

    @classmethod
    def failed(cls, invocation: ActionInvocation, reason: str) -> "ActionResult":
        return cls(
            agent_id=invocation.agent_id,
            sequence=invocation.sequence,
            action=invocation.action,
            status=ResultStatus.FAILED,
            reason=reason,
        )

    @classmethod
    def submitted(cls, invocation: ActionInvocation, handle: TransactionHandle) -> "ActionResult":
        return cls(
            agent_id=invocation.agent_id,
            sequence=invocation.sequence,
            action=invocation.action,
            status=ResultStatus.SUBMITTED,
            transaction=handle,
        )

    def describe(self) -> str:
        if self.status == ResultStatus.SUCCESS:
            return f"#{self.sequence} {self.action} succeeded: {self.payload!r}"
        if self.status == ResultStatus.SUBMITTED and self.transaction:
            return f"#{self.sequence} {self.action} submitted as {self.transaction.tx_id}"
        return f"#{self.sequence} {self.action} {self.status.value}: {self.reason}"


class ToolCall(BaseModel):
    """Raw action proposal from the reasoning backend. Untrusted until resolved."""
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class FinalResponse(BaseModel):
    """Reasoning backend decided to reply instead of acting"""
    text: str
