from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel

LINKAGE_FIELDS = ("customer_id", "customer_name", "interaction_id", "interaction_title")


class RecurringPaymentBase(BaseModel):
    kind: str                    # "income" | "expense"
    category: str
    description: str = ""
    amount: Decimal
    frequency: str               # "daily" | "weekly" | "monthly" | "quarterly" | "yearly"
    start_date: date
    end_date: Optional[date] = None
    anchor_day_of_month: Optional[int] = None
    payment_limit: Optional[int] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    interaction_id: Optional[str] = None
    interaction_title: Optional[str] = None

    def linkage(self) -> Dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in LINKAGE_FIELDS}


class RecurringPaymentCreate(RecurringPaymentBase):
    pass


class RecurringPaymentUpdate(BaseModel):
    kind: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    frequency: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    anchor_day_of_month: Optional[int] = None
    payment_limit: Optional[int] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    interaction_id: Optional[str] = None
    interaction_title: Optional[str] = None
    is_active: Optional[bool] = None


class RecurringPayment(RecurringPaymentBase):
    id: str
    next_due_date: date
    payments_processed: int = 0
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class RecurringPaymentCreated(BaseModel):
    recurring_payment: RecurringPayment
    # Set when the schedule was saved but its first occurrence could not be booked
    warning: Optional[str] = None


class ProcessingError(BaseModel):
    schedule_id: str
    stage: str                   # "ledger" | "store"
    message: str


class ProcessingResponse(BaseModel):
    success: bool
    processed: int = 0           # schedules advanced
    occurrences: int = 0         # transactions booked
    failed: int = 0
    errors: List[ProcessingError] = []
    timestamp: str
    error: Optional[str] = None
