"""
Ledger exceptions
=================

Every failure the ledger core reports to its callers is one of these.
Routes never translate them by hand; the app-level error handler turns
them into JSON responses using ``status_code`` and ``to_dict()``.
"""


class LedgerError(Exception):
    """Base exception for ledger operations (opaque internal failure)"""

    status_code = 500
    code = 'LEDGER_ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details,
        }


class NotFoundError(LedgerError):
    """Referenced wallet, transaction, member or obligation does not exist"""

    status_code = 404
    code = 'NOT_FOUND'

    def __init__(self, entity, entity_id):
        super().__init__(
            f'{entity} {entity_id} not found',
            details={'entity': entity, 'id': entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidInputError(LedgerError):
    """Rejected before any state change"""

    status_code = 400
    code = 'INVALID_INPUT'

    def __init__(self, message, field=None):
        super().__init__(message, details={'field': field} if field else None)
        self.field = field


class InvariantViolationError(LedgerError):
    """Operation would break a ledger invariant (e.g. deleting the main wallet)"""

    status_code = 409
    code = 'INVARIANT_VIOLATION'
