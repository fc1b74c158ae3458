"""
Business-rule failures raised by the souq services.

Every error carries a stable ``code`` and a ``context`` dict (entity ids,
attempted and available amounts) so the caller can render it without
parsing the message. None of these are retried automatically.
"""


class BusinessError(Exception):
    code = "BUSINESS_ERROR"
    default_message = "The operation violates a business rule."

    def __init__(self, message=None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def as_dict(self):
        return {"code": self.code, "message": self.message, "context": dict(self.context)}

    def __str__(self):
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.message} ({details})"


# Daily gate
class NoOpenDay(BusinessError):
    code = "NO_OPEN_DAY"
    default_message = "No business day is open."


class DayNotAvailable(BusinessError):
    code = "DAY_NOT_AVAILABLE"
    default_message = "This date cannot be opened."


class DayAlreadyOpen(BusinessError):
    code = "DAY_ALREADY_OPEN"
    default_message = "Another business day is already open."


class ReturnDayMismatch(BusinessError):
    code = "RETURN_DAY_MISMATCH"
    default_message = "The open business day does not match the return date."


# Stock and money
class InsufficientStock(BusinessError):
    code = "INSUFFICIENT_STOCK"
    default_message = "Not enough stock to fulfil the request."


class InsufficientBalance(BusinessError):
    code = "INSUFFICIENT_BALANCE"
    default_message = "The account balance is not enough."


class AccountNotFound(BusinessError):
    code = "ACCOUNT_NOT_FOUND"
    default_message = "No active account of this type."


class InvalidAmount(BusinessError):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be greater than zero."


class DiscountExceedsSubtotal(BusinessError):
    code = "DISCOUNT_EXCEEDS_SUBTOTAL"
    default_message = "Discount cannot exceed the invoice subtotal."


# State transitions
class AlreadyCancelled(BusinessError):
    code = "ALREADY_CANCELLED"
    default_message = "This document is already cancelled."


class AlreadySettled(BusinessError):
    code = "ALREADY_SETTLED"
    default_message = "This shipment is already settled."


class AlreadyClosed(BusinessError):
    code = "ALREADY_CLOSED"
    default_message = "This business day is already closed."


class InvalidTransition(BusinessError):
    code = "INVALID_TRANSITION"
    default_message = "This status change is not allowed."


class DeletionForbidden(BusinessError):
    code = "DELETION_FORBIDDEN"
    default_message = "This record can never be deleted; cancel it instead."


class EditWindowExpired(BusinessError):
    code = "EDIT_WINDOW_EXPIRED"
    default_message = "The edit window for this document has passed."


class ShipmentLocked(BusinessError):
    code = "SHIPMENT_LOCKED"
    default_message = "This shipment field cannot be changed."


# Settlement
class SuccessorNotOpen(BusinessError):
    code = "SUCCESSOR_NOT_OPEN"
    default_message = "Remaining stock must be carried to an open successor shipment."


class CarryoverAlreadySold(BusinessError):
    code = "CARRYOVER_ALREADY_SOLD"
    default_message = "Carried-over stock has already been sold and cannot be taken back."


# Distribution
class AllocationExceedsBalance(BusinessError):
    code = "ALLOCATION_EXCEEDS_BALANCE"
    default_message = "Allocation is larger than the invoice balance."


class AllocationExceedsCollection(BusinessError):
    code = "ALLOCATION_EXCEEDS_COLLECTION"
    default_message = "Allocations add up to more than the collection amount."


class InvoiceNotPayable(BusinessError):
    code = "INVOICE_NOT_PAYABLE"
    default_message = "This invoice cannot receive a payment."


# Returns
class InvalidReturn(BusinessError):
    code = "INVALID_RETURN"
    default_message = "These goods cannot be returned."


# Customer notes
class NoteExceedsBalance(BusinessError):
    code = "NOTE_EXCEEDS_BALANCE"
    default_message = "The note would take the invoice balance below zero."


# Stock adjustments
class InvalidAdjustment(BusinessError):
    code = "INVALID_ADJUSTMENT"
    default_message = "This stock correction cannot be applied."
