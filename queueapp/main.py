import json
import logging
import sys
from datetime import date
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .analytics import AnalyticsFilter, TimeSlot, build_report, describe_filters
from .clock import Clock, SystemClock
from .config import Settings, get_settings
from .errors import (
    CleanupError,
    CleanupResult,
    QueueEntryNotFound,
    QueueLimitReached,
    RestaurantExists,
    RestaurantNotFound,
    TransactionConflict,
)
from .export import build_export_rows, export_filename, render_csv
from .live_queue import QueueService
from .plans import BillingService
from .reader import ArchiveReader
from .schemas import CustomerRecord, Plan, PlanStatus, QueueItem, Restaurant, RestaurantAnalytics
from .store import DocumentStore, build_store
from .writers import CleanupService

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps({
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        })


_log_handler: Optional[logging.Handler] = None


def configure_logging(settings: Settings) -> None:
    global _log_handler
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    if _log_handler is not None:
        return
    if settings.debug:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
    _log_handler = handler


app = FastAPI(title="QueueApp Service")


@lru_cache
def get_store() -> DocumentStore:
    return build_store(get_settings())


def get_clock() -> Clock:
    return SystemClock()


def get_queue_service(
    store: DocumentStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> QueueService:
    return QueueService(store, clock, settings)


def get_cleanup_service(
    store: DocumentStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> CleanupService:
    return CleanupService(store, clock, settings)


def get_billing_service(
    store: DocumentStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> BillingService:
    return BillingService(store, clock)


class RestaurantCreate(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=255)


class RestaurantRead(BaseModel):
    id: str
    name: str
    plan: Plan
    plan_status: PlanStatus
    queue: list[QueueItem]
    last_cleanup_date: Optional[date] = None
    analytics: RestaurantAnalytics
    archived_days: list[str]


class JoinRequest(BaseModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    guests: int = Field(gt=0)
    notes: Optional[str] = None


class JoinResponse(BaseModel):
    queue_number: str
    customers_this_month: int
    limit: Optional[int] = None


class AllocateRequest(BaseModel):
    table_no: str = Field(min_length=1)


class CleanupRequest(BaseModel):
    is_manual: bool = True


class CleanupResponse(BaseModel):
    success: bool
    error: Optional[CleanupError] = None
    detail: str
    archived_customers: int = 0
    parts_written: int = 0
    scheme: Optional[str] = None


class PaymentProofRequest(BaseModel):
    reference: str = Field(min_length=1)
    amount: Optional[int] = None


class ApproveRequest(BaseModel):
    approved_by: str = "platform_admin"
    reason: str = "Approved"


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1)
    rejected_by: str = "platform_admin"


CLEANUP_STATUS_CODES = {
    None: status.HTTP_200_OK,
    CleanupError.ALREADY_CLEANED: status.HTTP_200_OK,
    CleanupError.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CleanupError.MANUAL_REQUIRED: status.HTTP_402_PAYMENT_REQUIRED,
    CleanupError.CONFLICT: status.HTTP_409_CONFLICT,
}


def to_restaurant_read(restaurant: Restaurant) -> RestaurantRead:
    return RestaurantRead(
        id=restaurant.id,
        name=restaurant.name,
        plan=restaurant.plan,
        plan_status=restaurant.plan_status,
        queue=restaurant.queue,
        last_cleanup_date=restaurant.last_cleanup_date,
        analytics=restaurant.analytics,
        archived_days=sorted(restaurant.queue_archive),
    )


def to_cleanup_response(result: CleanupResult) -> CleanupResponse:
    return CleanupResponse(
        success=result.success,
        error=result.error,
        detail=result.message,
        archived_customers=result.archived_customers,
        parts_written=result.parts_written,
        scheme=result.scheme,
    )


@app.on_event("startup")
def on_startup() -> None:
    configure_logging(get_settings())


@app.exception_handler(RestaurantNotFound)
async def restaurant_not_found_handler(request: Request, exc: RestaurantNotFound) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(QueueEntryNotFound)
async def queue_entry_not_found_handler(request: Request, exc: QueueEntryNotFound) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(RestaurantExists)
async def restaurant_exists_handler(request: Request, exc: RestaurantExists) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(QueueLimitReached)
async def queue_limit_handler(request: Request, exc: QueueLimitReached) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "detail": exc.message,
            "error": "LIMIT_REACHED",
            "customers_used": exc.customers_used,
            "limit": exc.limit,
        },
    )


@app.exception_handler(TransactionConflict)
async def conflict_handler(request: Request, exc: TransactionConflict) -> JSONResponse:
    logger.warning("Transaction conflict on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": "Please retry"})


@app.get("/health")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/restaurants", response_model=RestaurantRead, status_code=status.HTTP_201_CREATED)
def create_restaurant(
    payload: RestaurantCreate, service: QueueService = Depends(get_queue_service)
) -> RestaurantRead:
    restaurant = service.create_restaurant(payload.id.strip(), payload.name.strip())
    return to_restaurant_read(restaurant)


@app.get("/restaurants/{restaurant_id}", response_model=RestaurantRead)
def get_restaurant(restaurant_id: str, service: QueueService = Depends(get_queue_service)) -> RestaurantRead:
    restaurant = service.get_restaurant(restaurant_id)
    return to_restaurant_read(restaurant)


@app.post(
    "/restaurants/{restaurant_id}/queue",
    response_model=JoinResponse,
    status_code=status.HTTP_201_CREATED,
)
def join_queue(
    restaurant_id: str, payload: JoinRequest, service: QueueService = Depends(get_queue_service)
) -> JoinResponse:
    result = service.join_queue(
        restaurant_id, payload.name, payload.phone, payload.guests, notes=payload.notes
    )
    return JoinResponse(
        queue_number=result.queue_number,
        customers_this_month=result.customers_this_month,
        limit=result.limit,
    )


@app.post("/restaurants/{restaurant_id}/queue/{queue_number}/allocate", response_model=CustomerRecord)
def allocate_table(
    restaurant_id: str,
    queue_number: str,
    payload: AllocateRequest,
    service: QueueService = Depends(get_queue_service),
) -> CustomerRecord:
    return service.allocate_table(restaurant_id, queue_number, payload.table_no.strip())


@app.post("/restaurants/{restaurant_id}/cleanup", response_model=CleanupResponse)
def cleanup_queue(
    restaurant_id: str,
    response: Response,
    payload: CleanupRequest = CleanupRequest(),
    service: CleanupService = Depends(get_cleanup_service),
) -> CleanupResponse:
    result = service.daily_cleanup(restaurant_id, is_manual=payload.is_manual)
    response.status_code = CLEANUP_STATUS_CODES[result.error]
    return to_cleanup_response(result)


@app.post("/cleanup/auto")
def run_auto_cleanup(service: CleanupService = Depends(get_cleanup_service)) -> dict[str, CleanupResponse]:
    results = service.run_auto_cleanup()
    return {restaurant_id: to_cleanup_response(result) for restaurant_id, result in results.items()}


@app.get("/restaurants/{restaurant_id}/history")
def customer_history(
    restaurant_id: str, store: DocumentStore = Depends(get_store)
) -> dict[str, object]:
    history = ArchiveReader(store).read_history(restaurant_id)
    return {
        "count": len(history.records),
        "degraded": history.degraded,
        "missing_parts": history.missing_parts,
        "records": [record.model_dump(mode="json") for record in history.records],
    }


@app.get("/restaurants/{restaurant_id}/cleanup-history")
def cleanup_history(
    restaurant_id: str,
    limit: int = Query(default=30, ge=1, le=366),
    store: DocumentStore = Depends(get_store),
) -> dict[str, object]:
    history = ArchiveReader(store).read_archive_summaries(restaurant_id, limit)
    return {
        "degraded": history.degraded,
        "days": [
            {
                "date": day.date.isoformat(),
                "scheme": day.scheme.value,
                "total_customers": day.total_customers,
                "served": day.served,
                "waiting": day.waiting,
                "cleanup_type": day.cleanup_type.value,
                "archived_at": day.archived_at.isoformat(),
                "parts": day.parts,
            }
            for day in history.days
        ],
    }


def analytics_filter(
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    time_slots: list[TimeSlot] = Query(default=[]),
    search: str = Query(default=""),
) -> AnalyticsFilter:
    return AnalyticsFilter(date_from=date_from, date_to=date_to, time_slots=time_slots, search_text=search)


@app.get("/restaurants/{restaurant_id}/analytics")
def analytics(
    restaurant_id: str,
    filters: AnalyticsFilter = Depends(analytics_filter),
    store: DocumentStore = Depends(get_store),
) -> dict[str, object]:
    history = ArchiveReader(store).read_history(restaurant_id)
    report = build_report(history.records, filters)
    return {
        "showing": describe_filters(filters),
        "degraded": history.degraded,
        "stats": report.stats.model_dump(),
        "records": [record.model_dump(mode="json") for record in report.records],
        "rows": [row.model_dump() for row in build_export_rows(report.records)],
        "repeat_customers": [customer.model_dump() for customer in report.repeat_customers],
    }


@app.get("/restaurants/{restaurant_id}/analytics/monthly")
def monthly_analytics(restaurant_id: str, service: QueueService = Depends(get_queue_service)) -> dict[str, object]:
    restaurant = service.get_restaurant(restaurant_id)
    return {
        "plan": restaurant.plan.value,
        "analytics": restaurant.analytics.model_dump(mode="json"),
        "monthly_history": [entry.model_dump(mode="json") for entry in restaurant.monthly_history],
    }


@app.get("/restaurants/{restaurant_id}/analytics/export.csv")
def export_analytics(
    restaurant_id: str,
    filters: AnalyticsFilter = Depends(analytics_filter),
    store: DocumentStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> Response:
    restaurant = store.get_restaurant(restaurant_id)
    if restaurant is None:
        raise RestaurantNotFound(restaurant_id)
    history = ArchiveReader(store).read_history(restaurant_id)
    report = build_report(history.records, filters)
    filename = export_filename(restaurant.name, clock.today())
    return Response(
        content=render_csv(build_export_rows(report.records)),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/restaurants/{restaurant_id}/payment-proof", response_model=RestaurantRead)
def submit_payment_proof(
    restaurant_id: str,
    payload: PaymentProofRequest,
    service: BillingService = Depends(get_billing_service),
) -> RestaurantRead:
    restaurant = service.submit_payment_proof(restaurant_id, payload.reference, payload.amount)
    return to_restaurant_read(restaurant)


@app.post("/restaurants/{restaurant_id}/plan/approve", response_model=RestaurantRead)
def approve_premium(
    restaurant_id: str,
    payload: ApproveRequest = ApproveRequest(),
    service: BillingService = Depends(get_billing_service),
) -> RestaurantRead:
    restaurant = service.approve_premium(restaurant_id, payload.approved_by, payload.reason)
    return to_restaurant_read(restaurant)


@app.post("/restaurants/{restaurant_id}/plan/reject", response_model=RestaurantRead)
def reject_premium(
    restaurant_id: str,
    payload: RejectRequest,
    service: BillingService = Depends(get_billing_service),
) -> RestaurantRead:
    restaurant = service.reject_premium(restaurant_id, payload.reason, payload.rejected_by)
    return to_restaurant_read(restaurant)
