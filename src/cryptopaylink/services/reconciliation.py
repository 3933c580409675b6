"""
Payment reconciliation state machine.

Owns the PaymentIntent lifecycle:

    pending --(verified, hash unclaimed)--> confirmed
    pending --(unverified, payment timeout elapsed)--> failed

Every transition is a conditional write restricted to rows still in
`pending`, so concurrent reconcile calls for one intent (poller, manual
"verify now", caller retries) confirm it at most once and notify at most once.
"""

import asyncio
import enum
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cryptopaylink.crypto.interfaces import Unverified, Verified
from cryptopaylink.db import PaymentIntent, PaymentStatus, as_utc, utcnow
from cryptopaylink.exceptions import DuplicateTransactionError, PaymentNotFoundError
from cryptopaylink.repository import SqlPaymentRepository

from .notifications import ConfirmationNotifier
from .orchestrator import VerificationOrchestrator

logger = structlog.get_logger(__name__)


class ReconcileStatus(str, enum.Enum):
    CONFIRMED = "confirmed"  # this call performed pending -> confirmed
    RACE_LOST = "race_lost"  # a concurrent call confirmed it first
    ALREADY_CONFIRMED = "already_confirmed"
    PENDING = "pending"  # not verified yet, keep polling
    EXPIRED = "expired"  # this call performed pending -> failed
    ALREADY_FAILED = "already_failed"


_TERMINAL_OUTCOMES = {
    ReconcileStatus.CONFIRMED,
    ReconcileStatus.RACE_LOST,
    ReconcileStatus.ALREADY_CONFIRMED,
    ReconcileStatus.EXPIRED,
    ReconcileStatus.ALREADY_FAILED,
}


@dataclass(frozen=True)
class ReconcileOutcome:
    status: ReconcileStatus
    intent_id: str
    transaction_hash: str | None = None
    diagnostic: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL_OUTCOMES

    @property
    def payment_status(self) -> PaymentStatus:
        """Stored status implied by this outcome."""
        if self.status in (ReconcileStatus.EXPIRED, ReconcileStatus.ALREADY_FAILED):
            return PaymentStatus.FAILED
        if self.status == ReconcileStatus.PENDING:
            return PaymentStatus.PENDING
        return PaymentStatus.CONFIRMED


class PaymentReconciler:
    """
    Checks a pending intent against chain state and conditionally
    transitions it.

    Args:
        session_factory: async session factory; each phase uses its own session
        orchestrator: adapter dispatch for the intent's product
        notifier: invoice/email hand-off, fired once per confirmation
        payment_timeout_seconds: age after which an unverified intent fails
        clock: current UTC time, injectable for tests
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: VerificationOrchestrator,
        notifier: ConfirmationNotifier,
        payment_timeout_seconds: int = 1800,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.notifier = notifier
        self.payment_timeout = timedelta(seconds=payment_timeout_seconds)
        self.clock = clock
        self._background: set[asyncio.Task[Any]] = set()

    async def reconcile(self, intent_id: str) -> ReconcileOutcome:
        """
        Raises:
            PaymentNotFoundError: unknown intent
            DuplicateTransactionError: the matched hash belongs to another intent
            UnsupportedAssetError: no adapter for the product's chain/currency
            MissingSenderError: intent has no buyer wallet
        """
        log = logger.bind(payment_id=intent_id)

        async with self.session_factory() as session:
            intent = await SqlPaymentRepository(session).get_intent(intent_id)
        if intent is None:
            raise PaymentNotFoundError(intent_id)

        terminal = self._terminal_outcome(intent)
        if terminal is not None:
            log.info("reconcile_skipped", status=intent.status.value)
            return terminal

        # Chain I/O runs outside any database transaction
        result = await self.orchestrator.verify(intent, intent.product)

        if isinstance(result, Verified):
            return await self._confirm(intent, result, log)
        return await self._expire_or_wait(intent, result, log)

    async def _confirm(
        self, intent: PaymentIntent, result: Verified, log: Any
    ) -> ReconcileOutcome:
        tx_hash = result.transaction_hash
        # Shielded: once the confirmation commits, its notification must be
        # dispatched even if this caller is cancelled
        write = self._track(
            asyncio.create_task(self._commit_confirmation(intent, tx_hash, log))
        )
        transitioned, current = await asyncio.shield(write)

        if not transitioned:
            log.info("reconcile_race_lost", transaction_hash=tx_hash)
            if current is not None and current.status == PaymentStatus.FAILED:
                return ReconcileOutcome(ReconcileStatus.ALREADY_FAILED, intent.id)
            return ReconcileOutcome(
                ReconcileStatus.RACE_LOST,
                intent.id,
                transaction_hash=current.transaction_hash if current else None,
            )

        return ReconcileOutcome(
            ReconcileStatus.CONFIRMED,
            intent.id,
            transaction_hash=tx_hash,
            diagnostic=result.diagnostic,
        )

    async def _commit_confirmation(
        self, intent: PaymentIntent, tx_hash: str, log: Any
    ) -> tuple[bool, PaymentIntent | None]:
        """Conditionally confirm and hand off. Returns (transitioned, current row)."""
        async with self.session_factory() as session:
            repo = SqlPaymentRepository(session)

            claimed_by = await repo.find_claim(tx_hash, exclude_id=intent.id)
            if claimed_by is not None:
                log.warning(
                    "duplicate_transaction_claim",
                    transaction_hash=tx_hash,
                    claimed_by=claimed_by,
                )
                raise DuplicateTransactionError(tx_hash, intent.id, claimed_by)

            try:
                transitioned = await repo.confirm_if_pending(
                    intent.id, tx_hash, self.clock()
                )
                await session.commit()
            except IntegrityError as e:
                # Another intent claimed the hash between the check and the write
                await session.rollback()
                claimed_by = await repo.find_claim(tx_hash, exclude_id=intent.id)
                log.warning(
                    "duplicate_transaction_claim",
                    transaction_hash=tx_hash,
                    claimed_by=claimed_by,
                )
                raise DuplicateTransactionError(
                    tx_hash, intent.id, claimed_by or "unknown"
                ) from e

            if transitioned:
                self._dispatch_notification(intent.id)
                log.info(
                    "payment_confirmed",
                    transaction_hash=tx_hash,
                    amount=intent.amount_crypto,
                    currency=intent.currency,
                    chain=intent.chain,
                )
                return True, None
            return False, await repo.get_intent(intent.id)

    async def _expire_or_wait(
        self, intent: PaymentIntent, result: Unverified, log: Any
    ) -> ReconcileOutcome:
        deadline = as_utc(intent.created_at) + self.payment_timeout
        if self.clock() < deadline:
            log.info("payment_pending", diagnostic=result.diagnostic)
            return ReconcileOutcome(
                ReconcileStatus.PENDING, intent.id, diagnostic=result.diagnostic
            )

        async with self.session_factory() as session:
            repo = SqlPaymentRepository(session)
            transitioned = await repo.fail_if_pending(intent.id)
            await session.commit()
            current = None if transitioned else await repo.get_intent(intent.id)

        if transitioned:
            log.info("payment_expired", deadline=deadline.isoformat())
            return ReconcileOutcome(
                ReconcileStatus.EXPIRED, intent.id, diagnostic=result.diagnostic
            )
        if current is not None and current.status == PaymentStatus.CONFIRMED:
            log.info("reconcile_race_lost", transaction_hash=current.transaction_hash)
            return ReconcileOutcome(
                ReconcileStatus.RACE_LOST,
                intent.id,
                transaction_hash=current.transaction_hash,
            )
        return ReconcileOutcome(ReconcileStatus.ALREADY_FAILED, intent.id)

    @staticmethod
    def _terminal_outcome(intent: PaymentIntent) -> ReconcileOutcome | None:
        if intent.status == PaymentStatus.CONFIRMED:
            return ReconcileOutcome(
                ReconcileStatus.ALREADY_CONFIRMED,
                intent.id,
                transaction_hash=intent.transaction_hash,
            )
        if intent.status == PaymentStatus.FAILED:
            return ReconcileOutcome(ReconcileStatus.ALREADY_FAILED, intent.id)
        return None

    def _track(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _dispatch_notification(self, intent_id: str) -> None:
        self._track(asyncio.create_task(self._notify(intent_id)))

    async def _notify(self, intent_id: str) -> None:
        # Confirmation stands regardless of the hand-off; failures are not retried
        try:
            await self.notifier.notify(intent_id)
        except Exception as e:
            logger.error(
                "confirmation_dispatch_failed",
                payment_id=intent_id,
                error=str(e),
                exc_info=True,
            )

    async def aclose(self) -> None:
        """Wait for in-flight confirmation writes and notification hand-offs."""
        while self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
