"""
Transaction lifecycle manager.

Single source of truth reconciling the eventual on-chain outcome of an
action with the agent's decision loop. Each submission gets a
TransactionRecord; one reconciliation task per attempt chain polls the chain
client, applies the retry policy on timeouts and failures, and publishes
exactly one terminal outcome per invocation.
"""

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from asuka.chain.client import ChainClient, ChainStatus
from asuka.errors import ConfirmationFailure, ConfirmationTimeout, SubmissionError
from asuka.events.event_bus import EventBus
from asuka.models.actions import ActionInvocation, ActionResult
from asuka.models.enums import Topic, TransactionState
from asuka.models.transactions import TransactionRecord


logger = logging.getLogger("asuka.state.transactions")

EXHAUSTED_RETRIES = "exhausted retries"

_LIVE_STATES = frozenset(
    {TransactionState.SUBMITTED, TransactionState.PENDING, TransactionState.CONFIRMED}
)

PayloadBuilder = Callable[[], Union[Any, Awaitable[Any]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RetryPolicy:
    """Polling, deadline and resubmission settings"""

    poll_interval: float = 2.0
    confirmation_timeout: float = 120.0
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    retry_on_revert: bool = True

    def backoff(self, attempt: int) -> float:
        """Delay before resubmission number ``attempt + 1``"""
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)


class TransactionLifecycleManager:
    """Tracks on-chain submissions from broadcast to a terminal outcome"""

    def __init__(
        self,
        chain: ChainClient,
        bus: Optional[EventBus] = None,
        policy: Optional[RetryPolicy] = None,
        retention_seconds: float = 3600.0,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.chain = chain
        self.bus = bus
        self.policy = policy or RetryPolicy()
        self.retention = timedelta(seconds=retention_seconds)
        self._clock = clock or _utcnow
        self._sleep = sleep or asyncio.sleep

        # Arena of records keyed by stable id; keys map to ids, oldest first
        self._records: dict[str, TransactionRecord] = {}
        self._by_key: dict[str, list[str]] = {}
        # Key -> latest record id while its reconciliation task is alive
        self._in_flight: dict[str, str] = {}
        self._reservations: dict[str, asyncio.Event] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._ids = itertools.count(1)

    # Lookups

    def get_record(self, record_id: str) -> Optional[TransactionRecord]:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    def records_for_key(self, key: str) -> list[TransactionRecord]:
        return [self._records[rid].model_copy(deep=True) for rid in self._by_key.get(key, [])]

    def all_records(self) -> list[TransactionRecord]:
        return [record.model_copy(deep=True) for record in self._records.values()]

    @property
    def active_reconciliations(self) -> int:
        return len(self._tasks)

    def find_active(self, key: str) -> Optional[TransactionRecord]:
        """
        Latest non-failed record for ``key``.

        A chain that is still being reconciled counts as live even while it
        waits out a retry backoff after a timeout.
        """
        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            return self._records[in_flight].model_copy(deep=True)

        for record_id in reversed(self._by_key.get(key, [])):
            record = self._records[record_id]
            if record.state in _LIVE_STATES:
                return record.model_copy(deep=True)
        return None

    # Submission

    async def submit_once(
        self,
        invocation: ActionInvocation,
        key: str,
        build_payload: PayloadBuilder,
    ) -> tuple[TransactionRecord, bool]:
        """
        Submit unless a live record for ``key`` already exists.

        Concurrent callers with the same key wait for the first submission
        to finish and then receive its record. Returns (record, deduplicated).
        """
        while True:
            existing = self.find_active(key)
            if existing is not None:
                logger.info(
                    "Deduplicated %s for agent %s onto %s",
                    invocation.action,
                    invocation.agent_id,
                    existing.record_id,
                )
                return existing, True
            reservation = self._reservations.get(key)
            if reservation is None:
                break
            await reservation.wait()

        reservation = asyncio.Event()
        self._reservations[key] = reservation
        try:
            payload = build_payload()
            if inspect.isawaitable(payload):
                payload = await payload
            record = await self.submit(invocation, key, payload)
        finally:
            self._reservations.pop(key, None)
            reservation.set()
        return record, False

    async def submit(self, invocation: ActionInvocation, key: str, payload: Any) -> TransactionRecord:
        """
        Broadcast ``payload`` and start reconciling it.

        Once the chain client has been called the submission is shielded
        from cancellation: a broadcast transaction cannot be revoked, so its
        record must exist. Raises SubmissionError without creating a record.
        """
        return await asyncio.shield(self._submit(invocation, key, payload))

    async def _submit(self, invocation: ActionInvocation, key: str, payload: Any) -> TransactionRecord:
        tx_id = await self.chain.submit(payload)
        record = self._create_record(invocation, key, tx_id, retry_count=0, chain_id=None)
        self._in_flight[key] = record.record_id

        task = asyncio.create_task(
            self._reconcile(record, payload),
            name=f"reconcile-{record.record_id}",
        )
        self._tasks[record.record_id] = task
        task.add_done_callback(lambda t, rid=record.record_id: self._tasks.pop(rid, None))

        self.prune_expired()
        return record.model_copy(deep=True)

    def _create_record(
        self,
        invocation: ActionInvocation,
        key: str,
        tx_id: str,
        retry_count: int,
        chain_id: Optional[str],
    ) -> TransactionRecord:
        record_id = f"txr-{next(self._ids)}"
        record = TransactionRecord(
            record_id=record_id,
            chain_id=chain_id or record_id,
            tx_id=tx_id,
            idempotency_key=key,
            invocation=invocation,
            retry_count=retry_count,
            first_submitted_at=self._clock(),
        )
        self._records[record.record_id] = record
        self._by_key.setdefault(key, []).append(record.record_id)
        logger.info(
            "Transaction %s (%s) submitted for agent %s #%d, retry %d",
            record.record_id,
            tx_id,
            invocation.agent_id,
            invocation.sequence,
            retry_count,
        )
        return record

    # Reconciliation

    async def _track(self, record: TransactionRecord) -> None:
        """
        Poll until ``record`` reaches a terminal state.

        Returns on confirmation; raises ConfirmationTimeout or
        ConfirmationFailure otherwise.
        """
        deadline = record.first_submitted_at + timedelta(seconds=self.policy.confirmation_timeout)
        record.advance(TransactionState.PENDING)

        while True:
            await self._sleep(self.policy.poll_interval)
            now = self._clock()
            try:
                status = await self.chain.get_status(record.tx_id)
            except Exception as exc:
                logger.warning("Status check for %s failed: %s", record.tx_id, exc)
                status = None
            record.mark_checked(now)

            if status == ChainStatus.CONFIRMED:
                record.advance(TransactionState.CONFIRMED, now)
                return
            if status == ChainStatus.FAILED:
                record.failure_reason = "transaction failed on chain"
                record.advance(TransactionState.FAILED, now)
                raise ConfirmationFailure(record.failure_reason)
            if now >= deadline:
                record.failure_reason = "confirmation deadline exceeded"
                record.advance(TransactionState.TIMED_OUT, now)
                raise ConfirmationTimeout(record.failure_reason)

    async def _reconcile(self, record: TransactionRecord, payload: Any) -> None:
        key = record.idempotency_key
        invocation = record.invocation
        current = record
        try:
            while True:
                try:
                    await self._track(current)
                except ConfirmationFailure as exc:
                    if not self.policy.retry_on_revert:
                        self._settle(current, ActionResult.failed(invocation, str(exc)))
                        return
                    logger.warning("Transaction %s failed: %s", current.record_id, exc)
                except ConfirmationTimeout as exc:
                    logger.warning("Transaction %s timed out: %s", current.record_id, exc)
                else:
                    self._settle(
                        current,
                        ActionResult.success(
                            invocation,
                            {
                                "tx_id": current.tx_id,
                                "record_id": current.record_id,
                                "retries": current.retry_count,
                            },
                        ),
                    )
                    return

                if current.retry_count >= self.policy.max_retries:
                    self._settle(current, ActionResult.failed(invocation, EXHAUSTED_RETRIES))
                    return

                await self._sleep(self.policy.backoff(current.retry_count))
                try:
                    tx_id = await self.chain.submit(payload)
                except SubmissionError as exc:
                    self._settle(
                        current, ActionResult.failed(invocation, f"resubmission failed: {exc}")
                    )
                    return

                replacement = self._create_record(
                    invocation,
                    key,
                    tx_id,
                    retry_count=current.retry_count + 1,
                    chain_id=current.chain_id,
                )
                current.superseded_by = replacement.record_id
                self._in_flight[key] = replacement.record_id
                current = replacement
        except asyncio.CancelledError:
            logger.info("Reconciliation of %s cancelled", current.record_id)
            raise
        except Exception as exc:
            logger.exception("Reconciliation of %s crashed", current.record_id)
            self._settle(current, ActionResult.failed(invocation, f"reconciliation error: {exc}"))
        finally:
            if self._in_flight.get(key) == current.record_id:
                del self._in_flight[key]

    def _settle(self, record: TransactionRecord, result: ActionResult) -> None:
        """Publish the single terminal outcome of an invocation"""
        logger.info(
            "Invocation %s #%d settled as %s via %s",
            record.agent_id,
            record.sequence,
            result.status.value,
            record.record_id,
        )
        if self.bus is None:
            return
        details = {
            "record_id": record.record_id,
            "chain_id": record.chain_id,
            "tx_id": record.tx_id,
            "idempotency_key": record.idempotency_key,
            "state": record.state.value,
            "retries": record.retry_count,
        }
        self.bus.publish(
            Topic.TRANSACTION_OUTCOMES,
            result,
            agent_id=record.agent_id,
            sequence=record.sequence,
            details=details,
        )
        self.bus.publish(
            Topic.ACTION_RESULTS,
            result,
            agent_id=record.agent_id,
            sequence=record.sequence,
            details=details,
        )

    # Housekeeping

    def prune_expired(self) -> int:
        """Drop terminal records older than the retention window"""
        cutoff = self._clock() - self.retention
        live_ids = set(self._in_flight.values())
        expired = [
            record_id
            for record_id, record in self._records.items()
            if record.is_terminal
            and record.settled_at is not None
            and record.settled_at < cutoff
            and record_id not in live_ids
        ]
        for record_id in expired:
            record = self._records.pop(record_id)
            ids = self._by_key.get(record.idempotency_key, [])
            if record_id in ids:
                ids.remove(record_id)
            if not ids:
                self._by_key.pop(record.idempotency_key, None)
        if expired:
            logger.debug("Pruned %d expired transaction record(s)", len(expired))
        return len(expired)

    async def drain(self) -> None:
        """Wait for every running reconciliation to finish"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop reconciling. Broadcast transactions are not revoked."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Transaction manager stopped (%d reconciliation(s) cancelled)", len(tasks))
