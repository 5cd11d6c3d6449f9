"""
Inventory domain errors.

Input problems use Django's ``ValidationError`` like the rest of the
codebase. The classes here describe ledger and workflow failures and carry
enough context (document, line, product) for a caller to retry or correct the
request. Views turn them into JSON with ``as_dict()``.
"""


class InventoryError(Exception):
    """Base class for ledger and workflow failures."""

    status_code = 400
    code = 'inventory_error'
    retryable = False
    default_message = 'Inventory operation failed'

    def __init__(self, message=None, *, document_id=None, line_index=None, product_id=None, **context):
        self.message = message or self.default_message
        self.document_id = document_id
        self.line_index = line_index
        self.product_id = product_id
        self.context = context
        super().__init__(self.message)

    def as_dict(self):
        payload = {'error': self.message, 'code': self.code}
        if self.retryable:
            payload['retryable'] = True
        if self.document_id is not None:
            payload['document_id'] = str(self.document_id)
        if self.line_index is not None:
            payload['line_index'] = self.line_index
        if self.product_id is not None:
            payload['product_id'] = str(self.product_id)
        for key, value in self.context.items():
            payload[key] = value if isinstance(value, (int, bool, list, dict)) or value is None else str(value)
        return payload


class InsufficientStockError(InventoryError):
    code = 'insufficient_stock'
    default_message = 'Insufficient stock'


class ConcurrentTransitionError(InventoryError):
    """The document changed state between read and write. Safe to retry."""

    status_code = 409
    code = 'concurrent_transition'
    retryable = True
    default_message = 'The document was modified by another request'


class InvalidTransitionError(InventoryError):
    status_code = 409
    code = 'invalid_transition'
    default_message = 'Transition not allowed from the current status'


class DuplicateSerialError(InventoryError):
    code = 'duplicate_serial'
    default_message = 'Serial number already exists'


class PartialAdjustmentError(InventoryError):
    """One stocktake line could not be posted. Recorded, never raised to callers."""

    code = 'partial_adjustment'
    default_message = 'Stock adjustment failed for this line'


class UnmatchedScanError(InventoryError):
    status_code = 404
    code = 'unmatched_scan'
    default_message = 'No item in this stocktake matches the scanned code'


class ActionNotPermitted(InventoryError):
    status_code = 403
    code = 'not_permitted'
    default_message = 'You do not have permission to perform this action'
