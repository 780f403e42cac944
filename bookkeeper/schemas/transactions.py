import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class GeneratedTransaction(BaseModel):
    type: str                    # "income" | "expense"
    category: str
    description: str = ""
    amount: Decimal
    date: datetime.date
    source: str = "recurring"    # "recurring" | "manual" | "import"
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    interaction_id: Optional[str] = None
    interaction_title: Optional[str] = None
    recurring_payment_id: Optional[str] = None
