from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse

from .. import schemas
from ..core import config
from ..ledger import get_ledger_writer
from ..processor import run_due_payments
from ..services.recurring_service import RecurringPaymentService, ScheduleNotFoundError, ScheduleValidationError
from ..store import ScheduleStore, ScheduleStoreError

router = APIRouter(prefix="/api/recurring-payments", tags=["recurring-payments"])
system_router = APIRouter(prefix="/api", tags=["system"])


def get_store() -> ScheduleStore:
    return ScheduleStore()


def get_service(store: ScheduleStore = Depends(get_store)):
    ledger = get_ledger_writer()
    try:
        yield RecurringPaymentService(store, ledger)
    finally:
        ledger.close()


def get_today() -> date:
    """Business date used for due comparisons; overridden in tests."""
    return date.today()


def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    if config.CRON_SECRET and authorization != f"Bearer {config.CRON_SECRET}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _storage_unavailable(exc: ScheduleStoreError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Storage unavailable: {exc}")


@router.get("", response_model=List[schemas.RecurringPayment])
def api_get_recurring_payments(
    only_active: bool = False,
    store: ScheduleStore = Depends(get_store),
) -> List[schemas.RecurringPayment]:
    """Get all recurring payments, newest first."""
    try:
        return store.list_all(only_active=only_active)
    except ScheduleStoreError as exc:
        raise _storage_unavailable(exc)


@router.get("/{payment_id}", response_model=schemas.RecurringPayment)
def api_get_recurring_payment(
    payment_id: str,
    store: ScheduleStore = Depends(get_store),
) -> schemas.RecurringPayment:
    try:
        schedule = store.get(payment_id)
    except ScheduleStoreError as exc:
        raise _storage_unavailable(exc)
    if schedule is None:
        raise HTTPException(status_code=404, detail="Recurring payment not found")
    return schedule


@router.post("", response_model=schemas.RecurringPaymentCreated)
def api_create_recurring_payment(
    payload: schemas.RecurringPaymentCreate,
    service: RecurringPaymentService = Depends(get_service),
    today: date = Depends(get_today),
) -> schemas.RecurringPaymentCreated:
    """Create a recurring payment; books the first occurrence if it is already due."""
    try:
        result = service.create(payload, today)
    except ScheduleValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ScheduleStoreError as exc:
        raise _storage_unavailable(exc)
    return schemas.RecurringPaymentCreated(recurring_payment=result.schedule, warning=result.warning)


@router.patch("/{payment_id}", response_model=schemas.RecurringPayment)
def api_update_recurring_payment(
    payment_id: str,
    update: schemas.RecurringPaymentUpdate,
    service: RecurringPaymentService = Depends(get_service),
) -> schemas.RecurringPayment:
    """Edit fields of a recurring payment, including reactivation."""
    try:
        return service.update(payment_id, update)
    except ScheduleNotFoundError:
        raise HTTPException(status_code=404, detail="Recurring payment not found")
    except ScheduleValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ScheduleStoreError as exc:
        raise _storage_unavailable(exc)


@router.delete("/{payment_id}")
def api_delete_recurring_payment(
    payment_id: str,
    service: RecurringPaymentService = Depends(get_service),
) -> JSONResponse:
    """Delete a recurring payment. Transactions already booked stay in the ledger."""
    try:
        service.delete(payment_id)
    except ScheduleNotFoundError:
        raise HTTPException(status_code=404, detail="Recurring payment not found")
    except ScheduleStoreError as exc:
        raise _storage_unavailable(exc)
    return JSONResponse(content={"deleted": True})


@system_router.post(
    "/process-recurring-payments",
    response_model=schemas.ProcessingResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(verify_cron_secret)],
)
def api_process_recurring_payments(today: date = Depends(get_today)) -> schemas.ProcessingResponse:
    """Run due-payment processing now.

    Delivery is at-least-once: a schedule whose write-back failed after its
    transaction was booked gets that transaction again on the next run.
    """
    result = run_due_payments(today=today)
    return schemas.ProcessingResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        **result.as_dict(),
    )


@system_router.get("/process-recurring-payments")
async def api_process_recurring_payments_get() -> JSONResponse:
    return JSONResponse(
        content={"message": "Use POST method to process recurring payments"},
        status_code=405,
    )
