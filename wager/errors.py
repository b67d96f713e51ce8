# wager/errors.py


class WagerError(Exception):
    """Base class for wager lifecycle errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message or self.__class__.__name__


class ValidationError(WagerError):
    """Rejected before submission: nothing was sent to the ledger."""


class SubmissionError(WagerError):
    """Signing/submission collaborator rejected or failed."""


class ConfirmationError(WagerError):
    """Transaction was accepted but the ledger reported a failed confirmation."""
