"""
Registration ledger exceptions

Everything raised by the ledger, sequence and submission layers derives from
LedgerError so views can map the whole family onto HTTP responses.
"""


class LedgerError(Exception):
    """Base exception for registration ledger errors"""
    pass


class LedgerValidationError(LedgerError):
    """Raised when a submitted field is malformed or a filter value is unknown"""

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field


class LedgerIntegrityError(LedgerError):
    """Raised when a write would break a ledger invariant"""
    pass


class DuplicateSeatError(LedgerIntegrityError):
    """Raised when a seat number is already present in the ledger"""

    def __init__(self, seat_number):
        super().__init__(f"Seat number {seat_number} is already registered")
        self.seat_number = seat_number


class CounterCorruptError(LedgerIntegrityError):
    """Raised when the stored seat counter holds an impossible value"""
    pass


class StorageError(LedgerError):
    """Raised (and caught) when the database refuses a read or write"""
    pass


class SubmissionError(LedgerError):
    """Base exception for the remote submission backend"""
    pass


class SubmissionRejected(SubmissionError):
    """Raised when the remote backend answers with a non-success result"""
    pass


class SubmissionFailed(SubmissionError):
    """Raised when the remote backend cannot be reached or returns garbage"""
    pass
