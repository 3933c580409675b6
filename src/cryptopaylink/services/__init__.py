from .notifications import (
    ConfirmationNotifier,
    HttpConfirmationNotifier,
    LoggingConfirmationNotifier,
)
from .orchestrator import VerificationOrchestrator, build_orchestrator
from .payments import CreatedPayment, PaymentService
from .poller import PaymentPoller, PollResult
from .reconciliation import PaymentReconciler, ReconcileOutcome, ReconcileStatus

__all__ = [
    "ConfirmationNotifier",
    "CreatedPayment",
    "HttpConfirmationNotifier",
    "LoggingConfirmationNotifier",
    "PaymentPoller",
    "PaymentReconciler",
    "PaymentService",
    "PollResult",
    "ReconcileOutcome",
    "ReconcileStatus",
    "VerificationOrchestrator",
    "build_orchestrator",
]
