"""
Journal exceptions and their HTTP mapping.

Services raise these; the app-level error handler turns them into
{"error": ..., "details": ...} JSON responses.
"""


class JournalError(Exception):
    """Base class for errors surfaced to API clients"""
    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message}
        if self.details is not None:
            payload['details'] = self.details
        return payload


class ValidationError(JournalError):
    status_code = 400

    def __init__(self, details, message='Validation error'):
        super().__init__(message, details)


class NotFoundError(JournalError):
    status_code = 404


class DuplicateTradeError(JournalError):
    status_code = 409

    def __init__(self, existing_trade_id, window_seconds):
        super().__init__(
            f'Duplicate trade: an identical trade was recorded in the last '
            f'{window_seconds // 60} minutes',
            {'existing_trade_id': existing_trade_id},
        )
        self.existing_trade_id = existing_trade_id


class InsufficientBalanceError(JournalError):
    status_code = 422

    def __init__(self, pool_name, required, available):
        super().__init__(
            f'Insufficient balance in {pool_name}: required {required:.2f}, '
            f'available {available:.2f}',
            {'required': round(required, 2), 'available': round(available, 2)},
        )
        self.required = required
        self.available = available


class LedgerConflictError(JournalError):
    status_code = 409

    def __init__(self, pool_id, attempts):
        super().__init__(
            f'Capital pool {pool_id} was modified concurrently; gave up after {attempts} attempts',
            {'pool_id': pool_id, 'attempts': attempts},
        )
