"""FastAPI application for payment-gated fuel purchases.

Production-ready API with:
- Health and readiness checks for Kubernetes
- x402-style purchase handshake (HTTP 402 with payment instructions)
- On-chain settlement verification
- Structured error responses
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from decimal import Decimal

from fastapi import APIRouter, Depends, FastAPI, Header, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from services.api import metrics
from services.api.error_handlers import register_error_handlers
from services.gateway.factory import create_gateway
from services.gateway.protocol import GateOutcome, OutcomeKind, PaymentGateProtocol
from services.gateway.requests import NewPurchase, PaymentProof, build_gate_request
from services.invoices.schema import Invoice, PaymentRequired, PurchaseMetadata, Receipt
from services.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str
    chain: str
    token: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class PurchaseRequest(BaseModel):
    """Fuel purchase request body."""

    quantity: Decimal = Field(..., gt=0, description="Litres of fuel requested")
    max_unit_price: Decimal = Field(
        ..., gt=0, description="Highest acceptable price per litre in USD"
    )
    car_id: str = Field(default="car-001", min_length=1)
    station_id: str = Field(default="station-777", min_length=1)
    fuel_type: str = Field(default="GASOLINE", min_length=1)


class ErrorBody(BaseModel):
    code: str
    message: str


class PurchaseConfirmedResponse(BaseModel):
    """Returned with HTTP 200 once the invoice is PAID."""

    ok: bool = True
    event: str
    invoice_id: str
    car_id: str
    station_id: str
    fuel_type: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    token: str
    tx_hash: str | None
    message: str


class PaymentRequiredResponse(BaseModel):
    """Returned with HTTP 402 while the invoice is unpaid or after it expired."""

    ok: bool = False
    error: ErrorBody
    invoice_id: str
    reason: str | None = None
    retryable: bool | None = None
    payment_required: PaymentRequired | None = None


class InvoiceResponse(BaseModel):
    ok: bool = True
    invoice: Invoice
    payment_required: PaymentRequired


class ReceiptRequest(BaseModel):
    invoice_id: str = Field(..., min_length=1)


class ReceiptResponse(Receipt):
    ok: bool = True


def get_gateway(request: Request) -> PaymentGateProtocol:
    gateway: PaymentGateProtocol = request.app.state.gateway
    return gateway


def _to_response(outcome: GateOutcome) -> JSONResponse:
    invoice = outcome.invoice

    if outcome.kind is OutcomeKind.GRANTED:
        body: BaseModel = PurchaseConfirmedResponse(
            event=outcome.code,
            invoice_id=invoice.invoice_id,
            car_id=invoice.metadata.car_id,
            station_id=invoice.metadata.station_id,
            fuel_type=invoice.metadata.fuel_type,
            quantity=invoice.quantity,
            unit_price=invoice.unit_price,
            total=invoice.total,
            token=invoice.token,
            tx_hash=invoice.tx_hash,
            message="Payment verified on-chain. Fuel pump unlocked.",
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))

    message = outcome.reason or "Payment required"
    body = PaymentRequiredResponse(
        error=ErrorBody(code=outcome.code, message=message),
        invoice_id=invoice.invoice_id,
        reason=outcome.reason,
        retryable=outcome.retryable,
        payment_required=outcome.payment_required,
    )
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED, content=body.model_dump(mode="json")
    )


def _record_outcome(outcome: GateOutcome, created: bool, verified: bool) -> None:
    if created:
        metrics.invoices_created_total.inc()

    verification = outcome.verification
    if verified and verification is not None:
        label = "matched" if verification.matched else str(verification.failure.value)
        metrics.payment_verifications_total.labels(outcome=label).inc()
        if verification.matched and outcome.kind is OutcomeKind.GRANTED:
            metrics.invoices_paid_total.inc()


@router.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check(request: Request) -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    settings: Settings = request.app.state.settings
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        service=settings.service_name,
        chain=settings.chain,
        token=settings.token_symbol,
    )


@router.get("/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness check: the chain node answers with the expected chain id.

    Returns:
        Readiness status
    """
    gateway: PaymentGateProtocol | None = getattr(request.app.state, "gateway", None)
    if gateway is None:
        return ReadinessResponse(ready=False)
    ready = await gateway.verifier.reader.is_available(gateway.verifier.expected_chain_id)
    return ReadinessResponse(ready=ready)


@router.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@router.post(
    "/api/v1/fuel/purchase",
    responses={
        200: {"model": PurchaseConfirmedResponse},
        402: {"model": PaymentRequiredResponse},
    },
    tags=["Purchases"],
)
async def purchase_fuel(
    body: PurchaseRequest,
    x_invoice_id: str | None = Header(None, description="Invoice issued by a previous 402"),
    x_tx_hash: str | None = Header(None, description="Transaction that paid the invoice"),
    gateway: PaymentGateProtocol = Depends(get_gateway),  # noqa: B008
) -> JSONResponse:
    """Create or check a payment-gated fuel purchase.

    ## Flow

    1. Call without headers: an invoice is created and the response is
       **402** with `payment_required` instructions (amount, token contract,
       unique `pay_to_address`, expiry).
    2. Send exactly the quoted amount to `pay_to_address`.
    3. Retry with headers `x-invoice-id` and `x-tx-hash`. The transaction
       receipt is checked on chain; on an exact match the response is **200**.

    ## Error Handling

    - Returns 400 for invalid quantity/price or `x-tx-hash` without `x-invoice-id`
    - Returns 402 with `reason` while the payment is not verified
    - Returns 402 with `INVOICE_EXPIRED` once the invoice expired
    - Returns 404 for an unknown invoice
    - Returns 409 `INVOICE_ALREADY_PAID` for a paid invoice without its settling `x-tx-hash`
    """
    gate_request = build_gate_request(
        quantity=body.quantity,
        price_ceiling=body.max_unit_price,
        metadata=PurchaseMetadata(
            car_id=body.car_id, station_id=body.station_id, fuel_type=body.fuel_type
        ),
        invoice_id=x_invoice_id,
        tx_hash=x_tx_hash,
    )

    verifying = isinstance(gate_request, PaymentProof)
    start_time = time.time()
    outcome = await gateway.handle(gate_request)
    if verifying and outcome.verification is not None:
        metrics.payment_verification_duration_seconds.observe(time.time() - start_time)

    _record_outcome(
        outcome,
        created=isinstance(gate_request, NewPurchase),
        verified=verifying,
    )
    return _to_response(outcome)


@router.get(
    "/api/v1/fuel/invoices/{invoice_id}", response_model=InvoiceResponse, tags=["Invoices"]
)
def get_invoice(
    invoice_id: str,
    gateway: PaymentGateProtocol = Depends(get_gateway),  # noqa: B008
) -> InvoiceResponse:
    """Return an invoice and its payment instructions.

    Expiry is evaluated on read, so a lapsed invoice is reported as EXPIRED.
    Returns 404 for an unknown invoice.
    """
    invoice, payment_required = gateway.describe(invoice_id)
    return InvoiceResponse(invoice=invoice, payment_required=payment_required)


@router.post("/api/v1/fuel/receipts", response_model=ReceiptResponse, tags=["Receipts"])
def issue_receipt(
    body: ReceiptRequest,
    gateway: PaymentGateProtocol = Depends(get_gateway),  # noqa: B008
) -> ReceiptResponse:
    """Issue a receipt for a paid invoice.

    Returns 404 for an unknown invoice and 409 if it is not PAID.
    """
    receipt = gateway.issue_receipt(body.invoice_id)
    metrics.receipts_issued_total.inc()
    return ReceiptResponse(**receipt.model_dump())


def create_app(
    settings: Settings | None = None, gateway: PaymentGateProtocol | None = None
) -> FastAPI:
    """Create the API application.

    The gateway is built on startup when not injected, so missing
    configuration stops the process before it serves traffic.

    Args:
        settings: Application settings (read from the environment if omitted)
        gateway: Pre-built gateway, used by tests

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owns_gateway = app.state.gateway is None
        if owns_gateway:
            app.state.gateway = create_gateway(settings)
        try:
            yield
        finally:
            reader = app.state.gateway.verifier.reader
            if owns_gateway and hasattr(reader, "aclose"):
                await reader.aclose()

    app = FastAPI(
        title="Fuel Paygate",
        description="Payment-gated fuel purchases settled in USDC on chain",
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.gateway = gateway

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Middleware to collect request metrics.

        Tracks:
        - Request count by method, endpoint, and status
        - Request duration by method and endpoint
        """
        # Skip metrics for /metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Use the route template so invoice ids do not explode label cardinality
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        metrics.http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).inc()

        metrics.http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response

    register_error_handlers(app)
    app.include_router(router)
    return app


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = create_app(settings)
