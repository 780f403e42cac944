from .recurring_payments import (
    LINKAGE_FIELDS,
    RecurringPaymentBase,
    RecurringPaymentCreate,
    RecurringPaymentUpdate,
    RecurringPayment,
    RecurringPaymentCreated,
    ProcessingError,
    ProcessingResponse,
)

from .transactions import (
    GeneratedTransaction,
)
