"""Action dispatch - validates invocations and routes them to executors"""
import inspect
import logging
from typing import Optional

from asuka.errors import ActionValidationError, SubmissionError
from asuka.events.event_bus import EventBus
from asuka.models.actions import ActionInvocation, ActionResult, ActionSpec
from asuka.models.enums import EffectClass, Topic, TransactionState
from asuka.registry.action_registry import ActionRegistry
from asuka.state.transaction_manager import TransactionLifecycleManager


logger = logging.getLogger("asuka.state.dispatcher")


class ActionDispatcher:
    """Executes validated invocations and reports their results"""

    def __init__(
        self,
        registry: ActionRegistry,
        transactions: TransactionLifecycleManager,
        bus: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.transactions = transactions
        self.bus = bus

    async def dispatch(self, invocation: ActionInvocation) -> ActionResult:
        """
        Run an invocation and return its result.

        Validation failures come back as rejected results and never reach an
        executor. On-chain actions return as soon as the transaction has been
        submitted (or deduplicated); confirmation arrives later through the
        transaction manager.
        """
        try:
            spec = self.registry.validate(invocation)
        except ActionValidationError as exc:
            logger.info("Rejected %s for agent %s: %s", invocation.action, invocation.agent_id, exc)
            result = ActionResult.rejected(
                invocation.agent_id, invocation.sequence, invocation.action, str(exc)
            )
        else:
            if spec.effect == EffectClass.ON_CHAIN_WRITE:
                result = await self._dispatch_on_chain(spec, invocation)
            else:
                result = await self._dispatch_local(spec, invocation)

        self._publish(result)
        return result

    async def _dispatch_local(self, spec: ActionSpec, invocation: ActionInvocation) -> ActionResult:
        """Run a read-only or off-chain executor"""
        try:
            payload = spec.executor(**invocation.params)
            if inspect.isawaitable(payload):
                payload = await payload
        except Exception as exc:
            logger.warning(
                "Action %s failed for agent %s: %s",
                invocation.action,
                invocation.agent_id,
                exc,
            )
            return ActionResult.failed(invocation, f"{type(exc).__name__}: {exc}")

        logger.info("Action %s succeeded for agent %s", invocation.action, invocation.agent_id)
        return ActionResult.success(invocation, payload)

    async def _dispatch_on_chain(self, spec: ActionSpec, invocation: ActionInvocation) -> ActionResult:
        """Submit an on-chain action unless an equivalent one is already live"""
        try:
            key = spec.key_for(invocation.params)
        except Exception as exc:
            return ActionResult.failed(invocation, f"could not derive idempotency key: {exc}")

        try:
            record, deduplicated = await self.transactions.submit_once(
                invocation,
                key,
                lambda: spec.executor(**invocation.params),
            )
        except SubmissionError as exc:
            logger.warning(
                "Submission of %s for agent %s rejected: %s",
                invocation.action,
                invocation.agent_id,
                exc,
            )
            return ActionResult.failed(invocation, f"submission rejected: {exc}")
        except Exception as exc:
            logger.warning(
                "Could not build payload for %s (agent %s): %s",
                invocation.action,
                invocation.agent_id,
                exc,
            )
            return ActionResult.failed(invocation, f"{type(exc).__name__}: {exc}")

        if deduplicated and record.state == TransactionState.CONFIRMED:
            # Already settled on chain; nothing left to reconcile for this invocation
            return ActionResult.success(
                invocation,
                {"tx_id": record.tx_id, "record_id": record.record_id, "deduplicated": True},
            )
        return ActionResult.submitted(invocation, record.handle(deduplicated=deduplicated))

    def _publish(self, result: ActionResult) -> None:
        if self.bus is None:
            return
        self.bus.publish(
            Topic.ACTION_RESULTS,
            result,
            agent_id=result.agent_id,
            sequence=result.sequence,
        )
