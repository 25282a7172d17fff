"""Custom exceptions for SplitLedger."""


class SplitLedgerError(Exception):
    """Base exception for all SplitLedger errors."""

    pass


class ConfigurationError(SplitLedgerError):
    """Raised when configuration is invalid or missing."""

    pass


class InvalidSplitError(SplitLedgerError):
    """Raised when a split policy rejects its parameters or computed shares."""

    def __init__(self, message: str, split_type: str | None = None):
        self.split_type = split_type
        super().__init__(message)


class LedgerInconsistencyError(SplitLedgerError):
    """Raised when the ledger violates conservation (debts and credits don't cancel)."""

    def __init__(self, imbalance, message: str | None = None):
        self.imbalance = imbalance
        super().__init__(
            message or f"Ledger is inconsistent: balances sum to {imbalance}, not 0"
        )


class ExpenseNotFoundError(SplitLedgerError):
    """Raised when an expense id is not known to the expense store."""

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense with ID {expense_id} not found")


class SettlementSearchError(SplitLedgerError):
    """Base class for aborted minimum-settlement searches."""

    pass


class SettlementSearchTimeoutError(SettlementSearchError):
    """Raised when the exhaustive search exceeds its time budget."""

    pass


class SettlementSearchCancelledError(SettlementSearchError):
    """Raised when the exhaustive search is cancelled by the caller."""

    pass


class SettlementSearchTooLargeError(SettlementSearchError):
    """Raised when there are too many unsettled users for an exhaustive search."""

    def __init__(self, user_count: int, max_users: int):
        self.user_count = user_count
        self.max_users = max_users
        super().__init__(
            f"{user_count} users with nonzero balances exceeds the exhaustive "
            f"search limit of {max_users}"
        )
