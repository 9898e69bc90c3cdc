"""
Typed Exception Hierarchy for the POS Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock and money errors must be handled precisely. A till that cannot tell
"out of stock" apart from "someone else just sold the last unit" will show
the cashier the wrong message and retry the wrong thing. Every error here:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (not just a message string)

Example:
    try:
        sales.complete_sale(lines)
    except InsufficientStockError as e:
        show_shortfall(e.item_id, e.requested, e.available)
    except StockContentionError:
        retry_later()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PosKernelError (base)
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- StockContentionError
    |   +-- InventoryModeError
    |   +-- ProductNotFoundError
    |   +-- BatchNotFoundError
    |   +-- ServiceItemNotFoundError
    |   +-- MovementNotFoundError
    |   +-- NonCompensableMovementError
    |
    +-- DocumentError
    |   +-- InvoiceNotFoundError
    |   +-- LineItemNotFoundError
    |   +-- DocumentClosedError
    |   +-- LineItemNotRemovableError
    |   +-- BookingNotFoundError
    |   +-- OrderStateError
    |
    +-- LoanError
    |   +-- LoanNotFoundError
    |   +-- LoanNotActiveError
    |   +-- OverpaymentError
    |
    +-- InvalidPaymentAmountError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |   +-- BatchReferencedError
    |
    +-- ConfigError
        +-- InvalidConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|------------------------------------
Stock        | INSUFFICIENT_STOCK          | Event needs more units than exist
             | STOCK_CONTENTION            | Batch changed between plan and write
             | INVENTORY_MODE_MISMATCH     | Aggregate write on a batched product
             | PRODUCT_NOT_FOUND           | Product ID doesn't exist
             | BATCH_NOT_FOUND             | Batch ID doesn't exist
             | SERVICE_ITEM_NOT_FOUND      | Service menu item ID doesn't exist
             | MOVEMENT_NOT_FOUND          | Stock movement ID doesn't exist
             | MOVEMENT_NOT_COMPENSABLE    | Adjustment, no-op or already undone
-------------|-----------------------------|------------------------------------
Document     | INVOICE_NOT_FOUND           | Invoice / order ID doesn't exist
             | LINE_ITEM_NOT_FOUND         | Line item ID doesn't exist
             | DOCUMENT_CLOSED             | Editing a paid or cancelled document
             | LINE_ITEM_NOT_REMOVABLE     | Removing an order or sale line alone
             | BOOKING_NOT_FOUND           | Booking ID doesn't exist
             | ORDER_STATE_INVALID         | Order transition not allowed
-------------|-----------------------------|------------------------------------
Loan         | LOAN_NOT_FOUND              | Loan ID doesn't exist
             | LOAN_NOT_ACTIVE             | Payment on completed/cancelled loan
             | LOAN_OVERPAYMENT            | Payment exceeds remaining balance
-------------|-----------------------------|------------------------------------
Payment      | INVALID_PAYMENT_AMOUNT      | Payment amount <= 0
-------------|-----------------------------|------------------------------------
Immutability | IMMUTABILITY_VIOLATION      | Modifying a write-once record
             | BATCH_REFERENCED            | Deleting a batch with history
-------------|-----------------------------|------------------------------------
Config       | INVALID_CONFIG              | Policy file fails validation

===============================================================================
HANDLING PATTERNS
===============================================================================

1. A clamped deduction is NOT an error. The ledger primitive floors at
   zero and records the requested delta; nothing is raised.

2. Database I/O errors (sqlalchemy.exc.*) are never wrapped. They
   propagate unchanged after the module service rolls back.

3. StockContentionError means the plan was computed against a batch that
   another writer drained first. The whole event was rolled back; callers
   may re-run it.
"""


class PosKernelError(Exception):
    """
    Base exception for all POS kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "POS_KERNEL_ERROR"


# Stock-related exceptions


class StockError(PosKernelError):
    """Base exception for stock-related errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested quantity exceeds what the batches / aggregate can supply."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        item_id: str,
        requested: int,
        available: int,
        plan: object | None = None,
    ):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        self.plan = plan
        super().__init__(
            f"Insufficient stock for {item_id}: "
            f"requested {requested}, available {available}"
        )


class StockContentionError(StockError):
    """A batch no longer holds the quantity an allocation plan took from it."""

    code: str = "STOCK_CONTENTION"

    def __init__(self, batch_id: str, quantity: int):
        self.batch_id = batch_id
        self.quantity = quantity
        super().__init__(
            f"Batch {batch_id} could not supply {quantity} units; "
            "stock changed since allocation"
        )


class InventoryModeError(StockError):
    """A write targeted the wrong ledger for the product's inventory mode."""

    code: str = "INVENTORY_MODE_MISMATCH"

    def __init__(self, product_id: str, mode: str, reason: str):
        self.product_id = product_id
        self.mode = mode
        self.reason = reason
        super().__init__(f"Product {product_id} is {mode}: {reason}")


class ProductNotFoundError(StockError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class BatchNotFoundError(StockError):
    """Batch with given ID was not found."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id}")


class ServiceItemNotFoundError(StockError):
    """Hotel service menu item with given ID was not found."""

    code: str = "SERVICE_ITEM_NOT_FOUND"

    def __init__(self, service_item_id: str):
        self.service_item_id = service_item_id
        super().__init__(f"Service item not found: {service_item_id}")


class MovementNotFoundError(StockError):
    """Stock movement with given ID was not found."""

    code: str = "MOVEMENT_NOT_FOUND"

    def __init__(self, movement_id: str):
        self.movement_id = movement_id
        super().__init__(f"Stock movement not found: {movement_id}")


class NonCompensableMovementError(StockError):
    """Adjustments, no-op movements and already compensated movements have no inverse."""

    code: str = "MOVEMENT_NOT_COMPENSABLE"

    def __init__(self, movement_id: str, reason: str):
        self.movement_id = movement_id
        self.reason = reason
        super().__init__(f"Movement {movement_id} cannot be compensated: {reason}")


# Document-related exceptions


class DocumentError(PosKernelError):
    """Base exception for invoice / order errors."""

    code: str = "DOCUMENT_ERROR"


class InvoiceNotFoundError(DocumentError):
    """Invoice or order with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class LineItemNotFoundError(DocumentError):
    """Line item with given ID was not found."""

    code: str = "LINE_ITEM_NOT_FOUND"

    def __init__(self, line_item_id: str):
        self.line_item_id = line_item_id
        super().__init__(f"Line item not found: {line_item_id}")


class DocumentClosedError(DocumentError):
    """Line items cannot change on a paid or cancelled document."""

    code: str = "DOCUMENT_CLOSED"

    def __init__(self, invoice_id: str, payment_status: str):
        self.invoice_id = invoice_id
        self.payment_status = payment_status
        super().__init__(
            f"Invoice {invoice_id} is {payment_status} and cannot be edited"
        )


class LineItemNotRemovableError(DocumentError):
    """Line belongs to a document whose lines are not removed one by one."""

    code: str = "LINE_ITEM_NOT_REMOVABLE"

    def __init__(self, line_item_id: str, document_kind: str):
        self.line_item_id = line_item_id
        self.document_kind = document_kind
        super().__init__(
            f"Line item {line_item_id} is on a {document_kind} and cannot be removed"
        )


class BookingNotFoundError(DocumentError):
    """Booking with given ID was not found."""

    code: str = "BOOKING_NOT_FOUND"

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking not found: {booking_id}")


class OrderStateError(DocumentError):
    """Hotel order status transition is not allowed."""

    code: str = "ORDER_STATE_INVALID"

    def __init__(self, order_id: str, current_status: str, action: str):
        self.order_id = order_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} order {order_id} in status {current_status}"
        )


# Loan-related exceptions


class LoanError(PosKernelError):
    """Base exception for customer loan errors."""

    code: str = "LOAN_ERROR"


class LoanNotFoundError(LoanError):
    """Loan with given ID was not found."""

    code: str = "LOAN_NOT_FOUND"

    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__(f"Loan not found: {loan_id}")


class LoanNotActiveError(LoanError):
    """Payments are only accepted on active or overdue loans."""

    code: str = "LOAN_NOT_ACTIVE"

    def __init__(self, loan_id: str, status: str):
        self.loan_id = loan_id
        self.status = status
        super().__init__(f"Loan {loan_id} is {status}")


class InvalidPaymentAmountError(PosKernelError):
    """Payment amount (invoice or loan) must be strictly positive."""

    code: str = "INVALID_PAYMENT_AMOUNT"

    def __init__(self, amount: str):
        self.amount = amount
        super().__init__(f"Invalid payment amount: {amount}")


class OverpaymentError(LoanError):
    """Payment exceeds the loan's remaining balance."""

    code: str = "LOAN_OVERPAYMENT"

    def __init__(self, loan_id: str, amount: str, remaining: str):
        self.loan_id = loan_id
        self.amount = amount
        self.remaining = remaining
        super().__init__(
            f"Payment {amount} exceeds remaining balance {remaining} "
            f"on loan {loan_id}"
        )


# Immutability-related exceptions


class ImmutabilityError(PosKernelError):
    """Base exception for write-once record violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    StockMovement and LoanPayment are write-once.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class BatchReferencedError(ImmutabilityError):
    """Batch has movements, sale lines or loan items pointing at it."""

    code: str = "BATCH_REFERENCED"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(
            f"Batch {batch_id} is referenced by stock history and cannot be deleted"
        )


# Configuration exceptions


class ConfigError(PosKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIG_ERROR"


class InvalidConfigError(ConfigError):
    """Policy configuration failed validation."""

    code: str = "INVALID_CONFIG"

    def __init__(self, errors: list[str], source: str | None = None):
        self.errors = list(errors)
        self.source = source
        where = f" ({source})" if source else ""
        super().__init__(f"Invalid configuration{where}: {'; '.join(self.errors)}")
