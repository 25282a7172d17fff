"""SplitLedger - Track shared expenses and settle pairwise debts."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .db import Database
from .exceptions import (
    ExpenseNotFoundError,
    InvalidSplitError,
    LedgerInconsistencyError,
    SplitLedgerError,
)
from .expenses import ExpenseEvent, ExpenseManager
from .ledger import BalanceLedger
from .models import (
    BalanceSummary,
    Expense,
    PairwiseBalance,
    SettlementTransaction,
    SplitType,
    User,
)
from .settlement import SettlementEngine
from .splits import (
    AdjustmentSplit,
    EqualSplit,
    ExactAmountSplit,
    PercentageSplit,
    SharesSplit,
    SplitParams,
    calculate_split,
    split_params_for,
)
from .store import ExpenseStore, InMemoryStore, LedgerStore

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "ExpenseNotFoundError",
    "InvalidSplitError",
    "LedgerInconsistencyError",
    "SplitLedgerError",
    "ExpenseEvent",
    "ExpenseManager",
    "BalanceLedger",
    "BalanceSummary",
    "Expense",
    "PairwiseBalance",
    "SettlementTransaction",
    "SplitType",
    "User",
    "SettlementEngine",
    "AdjustmentSplit",
    "EqualSplit",
    "ExactAmountSplit",
    "PercentageSplit",
    "SharesSplit",
    "SplitParams",
    "calculate_split",
    "split_params_for",
    "ExpenseStore",
    "InMemoryStore",
    "LedgerStore",
]
