import uuid
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from pydantic import BaseModel, EmailStr, Field

from .config import Settings, get_settings
from .crypto.pricing import FixedRatePriceOracle, PriceOracle, PriceSource
from .db import create_engine, create_session_factory, init_db
from .exceptions import (
    DuplicateTransactionError,
    MissingSenderError,
    PaymentNotFoundError,
    PriceUnavailable,
    ProductNotFoundError,
    UnsupportedAssetError,
    UpstreamError,
)
from .health import register_health_endpoints
from .logging_config import (
    bind_request_id,
    clear_request_context,
    configure_logging,
    get_logger,
)
from .repository import SqlPaymentRepository
from .telemetry import init_telemetry
from .services.notifications import (
    ConfirmationNotifier,
    HttpConfirmationNotifier,
    LoggingConfirmationNotifier,
)
from .services.orchestrator import VerificationOrchestrator, build_orchestrator
from .services.payments import PaymentService
from .services.reconciliation import PaymentReconciler, ReconcileStatus

configure_logging()
logger = get_logger("cryptopaylink")

STATUS_MESSAGES = {
    ReconcileStatus.CONFIRMED: "Payment verified successfully",
    ReconcileStatus.RACE_LOST: "Payment already confirmed",
    ReconcileStatus.ALREADY_CONFIRMED: "Payment already confirmed",
    ReconcileStatus.PENDING: "Payment not found or not yet confirmed on blockchain",
    ReconcileStatus.EXPIRED: "Could not verify payment. Please try again or contact support",
    ReconcileStatus.ALREADY_FAILED: "Could not verify payment. Please try again or contact support",
}


class CreatePaymentRequest(BaseModel):
    product_id: str
    buyer_email: EmailStr
    buyer_wallet: str = Field(..., min_length=1)


class CreatePaymentResponse(BaseModel):
    payment_id: str
    crypto_amount: float
    crypto_price: float


class VerifyPaymentResponse(BaseModel):
    payment_id: str
    status: str
    outcome: str
    transaction_hash: str | None = None
    message: str


class PaymentStatusResponse(BaseModel):
    payment_id: str
    status: str
    currency: str
    chain: str
    amount_crypto: float
    transaction_hash: str | None = None


def create_app(
    settings: Settings | None = None,
    *,
    orchestrator: VerificationOrchestrator | None = None,
    price_source: PriceSource | None = None,
    notifier: ConfirmationNotifier | None = None,
) -> FastAPI:
    """
    Build the API. Collaborators left as None are wired from settings during
    startup; tests pass fakes instead.
    """
    settings = settings or get_settings()
    tracer_provider = (
        init_telemetry(settings.server) if settings.server.telemetry_enabled else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("startup_begin", service="cryptopaylink")
        engine = create_engine(settings.database.url, echo=settings.database.echo)
        await init_db(engine)
        session_factory = create_session_factory(engine)
        http_client = httpx.AsyncClient()

        if tracer_provider is not None:
            SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

        verifier = orchestrator or build_orchestrator(settings, http_client)
        quotes = price_source or _build_price_source(settings, http_client)
        hand_off = notifier or _build_notifier(settings, http_client)

        app.state.session_factory = session_factory
        app.state.payment_service = PaymentService(session_factory, quotes, verifier)
        app.state.reconciler = PaymentReconciler(
            session_factory,
            verifier,
            hand_off,
            payment_timeout_seconds=settings.verification.payment_timeout_seconds,
        )
        logger.info("startup_complete", database=engine.url.render_as_string())

        try:
            yield
        finally:
            logger.info("shutdown_begin", service="cryptopaylink")
            await app.state.reconciler.aclose()
            await http_client.aclose()
            await engine.dispose()
            if tracer_provider is not None:
                tracer_provider.shutdown()
            logger.info("shutdown_complete")

    app = FastAPI(title="CryptoPayLink", version="0.1.0", lifespan=lifespan)
    register_health_endpoints(app)

    if tracer_provider is not None:
        FastAPIInstrumentor.instrument_app(app)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Generate and bind a request_id for every HTTP request."""
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        bind_request_id(request_id)
        logger.info("request_started", method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            response.headers["x-request-id"] = request_id
            return response
        finally:
            clear_request_context()

    _register_payment_routes(app)
    return app


def _build_price_source(settings: Settings, http_client: httpx.AsyncClient) -> PriceSource:
    if settings.oracle.use_fixed_rates:
        logger.warning("fixed_price_rates_enabled")
        return FixedRatePriceOracle(settings.oracle.fixed_rates)
    return PriceOracle(
        http_client,
        base_url=str(settings.oracle.base_url),
        timeout=settings.oracle.timeout_seconds,
    )


def _build_notifier(
    settings: Settings, http_client: httpx.AsyncClient
) -> ConfirmationNotifier:
    url = settings.verification.confirmation_url
    if url is None:
        return LoggingConfirmationNotifier()
    return HttpConfirmationNotifier(
        http_client, str(url), timeout=settings.verification.confirmation_timeout_seconds
    )


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_reconciler(request: Request) -> PaymentReconciler:
    return request.app.state.reconciler


def _register_payment_routes(app: FastAPI) -> None:
    @app.post("/v1/payments", status_code=201, response_model=CreatePaymentResponse)
    async def create_payment(
        payload: CreatePaymentRequest,
        service: PaymentService = Depends(get_payment_service),
    ):
        try:
            created = await service.create_payment(
                payload.product_id, payload.buyer_email, payload.buyer_wallet
            )
        except ProductNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except UnsupportedAssetError as e:
            logger.error("unsupported_asset", chain=e.chain, currency=e.currency)
            raise HTTPException(status_code=422, detail=str(e)) from e
        except (PriceUnavailable, UpstreamError) as e:
            logger.error("payment_creation_aborted", error=str(e))
            raise HTTPException(
                status_code=502, detail="Price quote unavailable, try again later"
            ) from e

        return CreatePaymentResponse(
            payment_id=created.intent_id,
            crypto_amount=created.crypto_amount,
            crypto_price=created.crypto_price,
        )

    @app.post("/v1/payments/{payment_id}/verify", response_model=VerifyPaymentResponse)
    async def verify_payment(
        payment_id: str, reconciler: PaymentReconciler = Depends(get_reconciler)
    ):
        try:
            outcome = await reconciler.reconcile(payment_id)
        except PaymentNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except DuplicateTransactionError as e:
            raise HTTPException(
                status_code=409,
                detail="This transaction has already been verified for another payment",
            ) from e
        except (UnsupportedAssetError, MissingSenderError) as e:
            logger.error("verification_misconfigured", payment_id=payment_id, error=str(e))
            raise HTTPException(status_code=422, detail=str(e)) from e

        return VerifyPaymentResponse(
            payment_id=payment_id,
            status=outcome.payment_status.value,
            outcome=outcome.status.value,
            transaction_hash=outcome.transaction_hash,
            message=STATUS_MESSAGES[outcome.status],
        )

    @app.get("/v1/payments/{payment_id}", response_model=PaymentStatusResponse)
    async def get_payment(payment_id: str, request: Request):
        async with request.app.state.session_factory() as session:
            intent = await SqlPaymentRepository(session).get_intent(payment_id)
        if intent is None:
            raise HTTPException(status_code=404, detail=f"Payment {payment_id} not found")
        return PaymentStatusResponse(
            payment_id=intent.id,
            status=intent.status.value,
            currency=intent.currency,
            chain=intent.chain,
            amount_crypto=intent.amount_crypto,
            transaction_hash=intent.transaction_hash,
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(app, host=_settings.server.host, port=_settings.server.port)
