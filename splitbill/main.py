"""
FastAPI Application Entry Point

Split Bill Settlement Engine - Hybrid Architecture
In-memory collaborators (development) or SQL/Redis (staging, production).

Endpoints:
    - GET  /api/sessions/{id}/settlement: Settlement status
    - GET  /api/sessions/{id}/remaining-items: Unpaid lines and covers
    - POST /api/sessions/{id}/selection: Clamp and price an item selection
    - POST /api/sessions/{id}/equal-share: Equal split of the remaining amount
    - GET  /api/sessions/{id}/payments: Payment ledger
    - POST /api/sessions/{id}/payments: Submit a split payment
    - GET  /api/sessions/{id}/payments/{payment_id}/receipt: Partial receipt
    - GET  /api/reports/fiscal-summary: Daily fiscal breakdown
    - POST /api/dev/demo-session: Seed a demo session (development only)
    - GET  /health: System health check

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from splitbill.core.config import get_settings, setup_logging
from splitbill.schemas import (
    DemoSessionRequest,
    DemoSessionResponse,
    EqualShareRequest,
    EqualShareResponse,
    ErrorResponse,
    FiscalFlagUpdate,
    FiscalSummaryResponse,
    HealthResponse,
    PaymentCreate,
    PaymentListResponse,
    PaymentResponse,
    ReceiptItemResponse,
    ReceiptResponse,
    RemainingItemsResponse,
    SelectionLine,
    SelectionRequest,
    SelectionResponse,
    SettlementStatusResponse,
    SubmitResponse,
)
from splitbill.services.changebus import BaseChangeBus, get_change_bus
from splitbill.services.notifications import BaseNotificationSink, get_notification_sink
from splitbill.services.receipts.builder import build_partial_receipt, render_receipt_text
from splitbill.services.settlement.composer import ManualPaymentComposer
from splitbill.services.settlement.entities import (
    COVER_ITEM_ID,
    Order,
    OrderItem,
    Session,
    SessionPaymentItem,
)
from splitbill.services.settlement.errors import (
    ConcurrencyConflict,
    ErrorCode,
    InvariantViolation,
    SessionNotFound,
    SettlementError,
    StoreFailure,
    ValidationError,
)
from splitbill.services.settlement.ledger import PaymentLedger
from splitbill.services.settlement.money import format_cents, to_cents
from splitbill.services.settlement.planner import (
    SelectionCandidate,
    clamp_selection,
    describe_items,
    equal_share,
    equal_share_note,
)
from splitbill.services.settlement.remaining import RemainingItems
from splitbill.services.settlement.summary import build_daily_summary
from splitbill.services.store import BaseSessionStore, InMemorySessionStore, get_session_store

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    store = get_session_store()
    if store.provider_name == "sql":
        from splitbill.database import init_db

        await init_db()
        logger.info("Database initialized")

    logger.info(f"Session Store: {store.provider_name}")
    logger.info(f"Change Bus: {get_change_bus().provider_name}")
    logger.info(f"Notification Sink: {get_notification_sink().provider_name}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"Missing production config: {missing}")

    logger.info("Application ready!")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await get_notification_sink().flush()
    await get_change_bus().close()
    if store.provider_name == "sql":
        from splitbill.database import dispose_engine

        await dispose_engine()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Split-bill settlement engine for restaurant table sessions: "
        "item-based and amount-based partial payments, cover charge, "
        "fiscal (SMAC) aggregation and concurrent terminals."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_ledger(
    store: BaseSessionStore = Depends(get_session_store),
    change_bus: BaseChangeBus = Depends(get_change_bus),
) -> PaymentLedger:
    return PaymentLedger(store, change_bus)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def requested_items(remaining: RemainingItems, lines: list[SelectionLine], covers: int) -> SelectionCandidate:
    """
    Turn requested quantities into ledger rows without clamping.

    Quantities above what is left are caught by the composer against
    the fresh ledger.
    """
    rows = []
    for line in lines:
        if line.quantity == 0:
            continue
        if line.item_id == COVER_ITEM_ID:
            covers += line.quantity
            continue
        remaining_line = remaining.get(line.item_id)
        if remaining_line is None:
            raise ValidationError(
                ErrorCode.QUANTITY_EXCEEDS_REMAINING,
                f"Item {line.item_id} has nothing left to pay",
            )
        rows.append(SessionPaymentItem(
            order_item_id=remaining_line.item_id,
            quantity=line.quantity,
            name=remaining_line.name,
            unit_price_cents=remaining_line.unit_price_cents,
        ))
    if covers > 0:
        rows.append(SessionPaymentItem.for_cover(covers, remaining.cover_unit_cents))

    if not rows:
        raise ValidationError(ErrorCode.NOTHING_SELECTED, "Nothing selected")
    items = tuple(rows)
    return SelectionCandidate(
        amount_cents=sum(item.line_total_cents for item in items),
        items=items,
        note=describe_items(items),
    )


def queue_receipt_export(receipt_data: dict[str, Any]) -> Optional[str]:
    """Queue the Excel export; returns the Celery task id."""
    from splitbill.tasks import export_receipt_to_excel

    try:
        task = export_receipt_to_excel.delay(receipt_data)
        return task.id
    except Exception as e:
        logger.warning(f"Receipt {receipt_data.get('receipt_number')} not queued for export: {e}")
        return None


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    store: BaseSessionStore = Depends(get_session_store),
    change_bus: BaseChangeBus = Depends(get_change_bus),
    notifier: BaseNotificationSink = Depends(get_notification_sink),
) -> HealthResponse:
    """Verify all system components are operational."""
    store_status = "healthy" if await store.health_check() else "unhealthy"
    notifier_status = "healthy" if notifier.health_check() else "unhealthy"

    overall = "healthy" if store_status == notifier_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        store=f"{store.provider_name}: {store_status}",
        change_bus=change_bus.provider_name,
        notification_sink=f"{notifier.provider_name}: {notifier_status}",
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# SETTLEMENT ENDPOINTS
# =============================================================================

@app.get(
    "/api/sessions/{session_id}/settlement",
    response_model=SettlementStatusResponse,
    tags=["Settlement"],
    summary="Settlement status",
)
async def get_settlement_status(
    session_id: int,
    ledger: PaymentLedger = Depends(get_ledger),
    notifier: BaseNotificationSink = Depends(get_notification_sink),
) -> SettlementStatusResponse:
    """Paid, remaining and fiscal status, recomputed from the full ledger."""
    snapshot = await ledger.snapshot(session_id)
    status = snapshot.status()
    if status.is_overpaid:
        logger.error(f"Session {session_id} overpaid by {-status.remaining_cents} cents")
        notifier.error(f"Bill overpaid by {format_cents(-status.remaining_cents)}", session_id)
    return SettlementStatusResponse.from_status(status)


@app.put(
    "/api/sessions/{session_id}/fiscal-flag",
    response_model=SettlementStatusResponse,
    tags=["Settlement"],
    summary="Set the session fiscal flag",
)
async def set_session_fiscal_flag(
    session_id: int,
    request: FiscalFlagUpdate,
    ledger: PaymentLedger = Depends(get_ledger),
) -> SettlementStatusResponse:
    """
    Mark an open bill as SMAC registered (or not) as a whole.

    Only reported while the bill has no split payments; once payments
    exist the fiscal status is aggregated from their own flags.
    """
    snapshot = await ledger.set_fiscal_flag(session_id, request.fiscal_flag and settings.smac_enabled)
    return SettlementStatusResponse.from_status(snapshot.status())


@app.get(
    "/api/sessions/{session_id}/remaining-items",
    response_model=RemainingItemsResponse,
    tags=["Settlement"],
    summary="Remaining items",
)
async def get_remaining_items(
    session_id: int,
    ledger: PaymentLedger = Depends(get_ledger),
) -> RemainingItemsResponse:
    snapshot = await ledger.snapshot(session_id)
    return RemainingItemsResponse.from_remaining(session_id, snapshot.remaining_items())


@app.post(
    "/api/sessions/{session_id}/selection",
    response_model=SelectionResponse,
    tags=["Settlement"],
    summary="Price an item selection",
)
async def apply_selection(
    session_id: int,
    request: SelectionRequest,
    ledger: PaymentLedger = Depends(get_ledger),
    notifier: BaseNotificationSink = Depends(get_notification_sink),
) -> SelectionResponse:
    """
    Clamp the requested quantities to what is still unpaid and return the
    pre-filled payment candidate. Nothing is written.
    """
    snapshot = await ledger.snapshot(session_id)
    quantities = {line.item_id: line.quantity for line in request.items if line.item_id != COVER_ITEM_ID}
    covers = request.covers + sum(line.quantity for line in request.items if line.item_id == COVER_ITEM_ID)

    planner = clamp_selection(snapshot.remaining_items(), quantities, covers)
    try:
        candidate = planner.apply()
    except ValidationError:
        notifier.warning("Select at least one item or cover", session_id)
        raise

    notifier.info(f"Selection applied: {format_cents(candidate.amount_cents)}", session_id)
    return SelectionResponse.from_candidate(session_id, candidate)


@app.post(
    "/api/sessions/{session_id}/equal-share",
    response_model=EqualShareResponse,
    tags=["Settlement"],
    summary="Equal split of the remaining amount",
)
async def get_equal_share(
    session_id: int,
    request: EqualShareRequest,
    ledger: PaymentLedger = Depends(get_ledger),
) -> EqualShareResponse:
    snapshot = await ledger.snapshot(session_id)
    remaining = snapshot.status().display_remaining_cents
    amount = equal_share(remaining, request.total_people, request.paying_people)
    return EqualShareResponse(
        session_id=session_id,
        amount_cents=amount,
        remaining_cents=remaining,
        note=equal_share_note(request.total_people, request.paying_people),
    )


# =============================================================================
# PAYMENT ENDPOINTS
# =============================================================================

@app.get(
    "/api/sessions/{session_id}/payments",
    response_model=PaymentListResponse,
    tags=["Payments"],
    summary="Payment ledger",
)
async def list_payments(
    session_id: int,
    ledger: PaymentLedger = Depends(get_ledger),
) -> PaymentListResponse:
    snapshot = await ledger.snapshot(session_id)
    return PaymentListResponse(
        total=len(snapshot.payments),
        payments=[PaymentResponse.from_payment(p) for p in snapshot.payments],
    )


@app.post(
    "/api/sessions/{session_id}/payments",
    response_model=SubmitResponse,
    status_code=201,
    tags=["Payments"],
    summary="Submit a split payment",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def submit_payment(
    session_id: int,
    request: PaymentCreate,
    ledger: PaymentLedger = Depends(get_ledger),
    notifier: BaseNotificationSink = Depends(get_notification_sink),
) -> SubmitResponse:
    """
    Append one split payment.

    With items/covers the payment is item-based and its amount defaults to
    the selection subtotal. Resending the same idempotency_key after a
    failure never records the payment twice.
    """
    composer = ManualPaymentComposer(session_id, ledger, notifier, settings=settings)
    snapshot = await composer.refresh()

    if request.items or request.covers:
        try:
            composer.load_selection(requested_items(snapshot.remaining_items(), request.items, request.covers))
        except ValidationError as e:
            notifier.error(e.message, session_id)
            raise

    try:
        if request.amount is not None:
            composer.set_amount(request.amount)
        composer.set_tendered(request.tendered)
    except ValueError as e:
        raise ValidationError(ErrorCode.INVALID_AMOUNT, str(e))

    composer.method = request.method
    composer.fiscal_flag = request.fiscal_flag
    if request.notes is not None:
        composer.note = request.notes
    composer.use_attempt_key(request.idempotency_key)

    result = await composer.submit()

    if settings.export_receipts:
        queue_receipt_export(build_partial_receipt(result.payment, settings).to_dict())

    return SubmitResponse(
        message=f"Payment of {format_cents(result.payment.amount_cents)} added",
        payment=PaymentResponse.from_payment(result.payment),
        status=SettlementStatusResponse.from_status(result.status),
        closed=result.closed,
        change_cents=result.change_cents,
    )


@app.get(
    "/api/sessions/{session_id}/payments/{payment_id}/receipt",
    response_model=ReceiptResponse,
    tags=["Payments"],
    summary="Partial receipt",
)
async def get_payment_receipt(
    session_id: int,
    payment_id: int,
    export: bool = Query(False, description="Also queue the Excel export"),
    ledger: PaymentLedger = Depends(get_ledger),
) -> ReceiptResponse:
    snapshot = await ledger.snapshot(session_id)
    payment = next((p for p in snapshot.payments if p.id == payment_id), None)
    if payment is None:
        raise HTTPException(status_code=404, detail=f"Payment #{payment_id} not found in session {session_id}")

    receipt = build_partial_receipt(payment, settings)
    data = receipt.to_dict()
    task_id = queue_receipt_export(data) if export else None

    return ReceiptResponse(
        **{k: v for k, v in data.items() if k != "items"},
        items=[ReceiptItemResponse(**item) for item in data["items"]],
        text=render_receipt_text(receipt),
        export_task_id=task_id,
    )


# =============================================================================
# REPORTS
# =============================================================================

@app.get(
    "/api/reports/fiscal-summary",
    response_model=FiscalSummaryResponse,
    tags=["Reports"],
    summary="Daily fiscal summary",
)
async def get_fiscal_summary(
    day: Optional[date] = Query(None, description="Day to summarize (UTC), defaults to today"),
    store: BaseSessionStore = Depends(get_session_store),
) -> FiscalSummaryResponse:
    summary = await build_daily_summary(store, day or datetime.now(timezone.utc).date())
    return FiscalSummaryResponse.from_summary(summary)


# =============================================================================
# DEVELOPMENT
# =============================================================================

@app.post(
    "/api/dev/demo-session",
    response_model=DemoSessionResponse,
    status_code=201,
    tags=["Development"],
    summary="Seed a demo session",
)
async def create_demo_session(
    request: DemoSessionRequest,
    store: BaseSessionStore = Depends(get_session_store),
) -> DemoSessionResponse:
    """Two tickets and a cover charge on the in-memory store."""
    if not settings.is_development or not isinstance(store, InMemorySessionStore):
        raise HTTPException(status_code=404, detail="Not available")

    store.latency = request.latency
    session_id = store.next_id()

    menu = [
        [("Kebab", 800, 2), ("Cola", 300, 3)],
        [("Falafel plate", 1250, 1), ("Baklava", 450, 2)],
    ]
    orders = []
    item_ids = []
    for number, lines in enumerate(menu, start=1):
        order_id = store.next_id()
        items = []
        for name, price, qty in lines:
            item = OrderItem(id=store.next_id(), order_id=order_id, name=name, unit_price_cents=price, quantity=qty)
            items.append(item)
            item_ids.append(item.id)
        orders.append(Order(
            id=order_id,
            session_id=session_id,
            number=number,
            total_cents=sum(i.line_total_cents for i in items),
            items=tuple(items),
        ))

    session = store.add_session(Session(
        id=session_id,
        total_cents=sum(o.total_cents for o in orders),
        covers=request.covers,
        cover_unit_cents=to_cents(request.cover_unit if request.cover_unit is not None else settings.cover_charge),
        cover_included=request.cover_included,
        table_name=f"Demo {session_id}",
    ))
    store.add_orders(orders)

    logger.info(f"Demo session {session_id} seeded ({session.effective_total_cents} cents)")
    return DemoSessionResponse(
        session_id=session.id,
        total_cents=session.total_cents,
        effective_total_cents=session.effective_total_cents,
        item_ids=item_ids,
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

_STATUS_CODES = {
    ValidationError: 400,
    SessionNotFound: 404,
    ConcurrencyConflict: 409,
    StoreFailure: 503,
    InvariantViolation: 500,
}


@app.exception_handler(SettlementError)
async def settlement_exception_handler(request: Request, exc: SettlementError) -> JSONResponse:
    """Map engine errors to HTTP responses."""
    status_code = _STATUS_CODES.get(type(exc), 400)
    if isinstance(exc, InvariantViolation):
        logger.error(f"Invariant violation on {request.url.path}: {exc}", exc_info=exc)

    content = ErrorResponse(
        error=exc.code.value,
        detail=exc.message,
        remaining_cents=exc.remaining_cents if isinstance(exc, ConcurrencyConflict) else None,
    )
    return JSONResponse(status_code=status_code, content=content.model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
