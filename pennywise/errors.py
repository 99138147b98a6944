class PennywiseError(Exception):
    """Base class for engine errors."""


class MissingCurrencyError(PennywiseError, LookupError):
    """Raised when a record has no usable currency reference."""


class ConversionFailure(PennywiseError):
    """Raised when an amount cannot be converted between two currencies."""


class InvalidPeriodConfiguration(PennywiseError, ValueError):
    """Raised by the strict validators for unknown frequencies or time frames."""


class StaleBudgetError(PennywiseError):
    """Raised when a budget row changed since it was read."""

    def __init__(self, budget_id: int, expected_version: int) -> None:
        super().__init__(
            f"Budget {budget_id} was modified concurrently (expected version {expected_version})."
        )
        self.budget_id = budget_id
        self.expected_version = expected_version


class RecordNotFoundError(PennywiseError, LookupError):
    """Raised when an owner's record does not exist."""
