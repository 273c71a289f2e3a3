# errors.py
class LedgerError(Exception):
    """Base class for every rejected ledger operation."""
    kind = "LedgerError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"error": self.kind, "message": self.message}


class Unauthorized(LedgerError):
    kind = "Unauthorized"


class NotFound(LedgerError):
    kind = "NotFound"


class InvalidArgument(LedgerError):
    kind = "InvalidArgument"


class Conflict(LedgerError):
    kind = "Conflict"

    def __init__(self, message: str, winners=None):
        super().__init__(message)
        # set when a winner was already declared for the election
        self.winners = winners

    def to_dict(self):
        d = super().to_dict()
        if self.winners is not None:
            d["winners"] = self.winners.to_dict()
        return d


class PreconditionFailed(LedgerError):
    kind = "PreconditionFailed"


class InsufficientPayment(LedgerError):
    kind = "InsufficientPayment"


class LockTimeout(LedgerError):
    kind = "LockTimeout"
