"""Reasoning gateway - the narrow interface to the decision-making backend"""
import asyncio
import logging
from typing import Protocol, Union, runtime_checkable

from asuka.errors import BackendError, BackendUnavailable, ReasoningTimeout
from asuka.models.actions import ActionSpec, FinalResponse, ToolCall
from asuka.models.context import AgentContext


logger = logging.getLogger("asuka.reasoning")

Proposal = Union[ToolCall, FinalResponse]


@runtime_checkable
class ReasoningGateway(Protocol):
    """
    Proposes an agent's next step.

    Implementations return either a raw ToolCall (validated later by the
    action registry) or a FinalResponse, and signal failures with
    BackendUnavailable or ReasoningTimeout.
    """

    async def propose(
        self,
        context: AgentContext,
        actions: list[ActionSpec],
        timeout: float,
    ) -> Proposal:
        ...


async def propose_with_timeout(
    gateway: ReasoningGateway,
    context: AgentContext,
    actions: list[ActionSpec],
    timeout: float,
) -> Proposal:
    """
    Call ``gateway`` with a hard deadline and normalise its failures.

    Anything other than a BackendError escaping the gateway is reported as
    BackendUnavailable so the agent loop only has one family to retry.
    """
    try:
        proposal = await asyncio.wait_for(gateway.propose(context, actions, timeout), timeout)
    except asyncio.TimeoutError as exc:
        raise ReasoningTimeout(f"no proposal within {timeout:g}s") from exc
    except BackendError:
        raise
    except Exception as exc:
        logger.warning("Reasoning backend raised %s: %s", type(exc).__name__, exc)
        raise BackendUnavailable(f"{type(exc).__name__}: {exc}") from exc

    if not isinstance(proposal, (ToolCall, FinalResponse)):
        raise BackendUnavailable(f"unexpected proposal type {type(proposal).__name__}")
    return proposal
