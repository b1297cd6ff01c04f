class LedgerError(Exception):
    """Base class for every error raised by the ledger services."""

    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class PreconditionViolation(LedgerError):
    """The caller broke an input contract of the distribution engine."""


class NoInvestors(PreconditionViolation):
    """The investor list is missing or empty."""


class DateMismatch(PreconditionViolation):
    """A bet's accounting date does not match the day being resolved."""


class PendingBetIncluded(PreconditionViolation):
    """A PENDING bet was passed in for resolution."""


class BetAlreadyProcessed(PreconditionViolation):
    """The bet has already been folded into a daily history record."""

    status_code = 409


class DayAlreadyClosed(PreconditionViolation):
    """The accounting day is already closed or precedes the latest record."""

    status_code = 409


class InvalidInput(LedgerError):
    """The request carries an invalid value."""


class InvalidAmount(InvalidInput):
    """Amounts must be positive numbers."""


class RequestAlreadyDecided(LedgerError):
    """The fund request was already decided the other way."""

    status_code = 409


class NotFound(LedgerError):
    """The requested record does not exist."""

    status_code = 404


class Forbidden(LedgerError):
    """This action requires an active admin."""

    status_code = 403
