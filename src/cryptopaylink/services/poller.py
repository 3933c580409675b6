"""
Client-side polling of reconciliation until a terminal outcome or deadline.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from cryptopaylink.config import VerificationSettings
from cryptopaylink.db import PaymentStatus

from .reconciliation import ReconcileOutcome

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PollResult:
    intent_id: str
    outcome: ReconcileOutcome | None
    attempts: int
    timed_out: bool = False

    @property
    def display_status(self) -> PaymentStatus:
        """
        Status shown to the buyer. A timed-out poll displays FAILED even
        though the stored record may still be pending.
        """
        if self.timed_out or self.outcome is None:
            return PaymentStatus.FAILED
        return self.outcome.payment_status


class PaymentPoller:
    """
    Calls `reconcile` immediately, then every `interval_seconds`, until a
    terminal outcome or until `timeout_seconds` elapse.

    One asyncio.timeout scope covers both the recurring checks and the
    overall deadline, so a single cancellation stops everything. The poller
    never writes the payment record itself.
    """

    def __init__(
        self,
        reconcile: Callable[[str], Awaitable[ReconcileOutcome]],
        interval_seconds: float = 10.0,
        timeout_seconds: float = 1800.0,
    ):
        self.reconcile = reconcile
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self._task: asyncio.Task[PollResult] | None = None

    @classmethod
    def from_settings(
        cls,
        reconcile: Callable[[str], Awaitable[ReconcileOutcome]],
        settings: VerificationSettings,
    ) -> "PaymentPoller":
        return cls(
            reconcile,
            interval_seconds=settings.poll_interval_seconds,
            timeout_seconds=settings.poll_timeout_seconds,
        )

    async def run(self, intent_id: str) -> PollResult:
        """
        Raises:
            DuplicateTransactionError: and any other reconcile error; polling stops
        """
        log = logger.bind(payment_id=intent_id)
        attempts = 0
        outcome: ReconcileOutcome | None = None

        try:
            async with asyncio.timeout(self.timeout_seconds):
                while True:
                    attempts += 1
                    outcome = await self.reconcile(intent_id)
                    log.debug(
                        "poll_attempt", attempt=attempts, status=outcome.status.value
                    )
                    if outcome.is_terminal:
                        log.info(
                            "poll_finished",
                            attempts=attempts,
                            status=outcome.status.value,
                        )
                        return PollResult(intent_id, outcome, attempts)
                    await asyncio.sleep(self.interval_seconds)
        except TimeoutError:
            log.warning(
                "poll_timed_out", attempts=attempts, timeout_seconds=self.timeout_seconds
            )
            return PollResult(intent_id, outcome, attempts, timed_out=True)

    def start(self, intent_id: str) -> "asyncio.Task[PollResult]":
        if self._task is not None and not self._task.done():
            raise RuntimeError("Poller is already running")
        self._task = asyncio.create_task(self.run(intent_id))
        return self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
