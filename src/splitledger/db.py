"""SQLite database operations for SplitLedger.

Implements both the LedgerStore and ExpenseStore interfaces. Amounts are
stored as TEXT so Decimal values round-trip exactly.
"""

import json
import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from .models import Expense, PairwiseBalance, SettlementTransaction, SplitType, User


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = db_path
        # Statements are serialized by self._lock, so sharing across threads is safe
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        # Users table (display names for stored references)
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT ''
            )
        """
        )

        # Pairwise balances table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS pairwise_balances (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                debtor_id TEXT NOT NULL REFERENCES users(user_id),
                creditor_id TEXT NOT NULL REFERENCES users(user_id),
                amount TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (debtor_id, creditor_id)
            )
        """
        )

        # Settlement transactions table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS settlement_transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                from_user_id TEXT NOT NULL REFERENCES users(user_id),
                to_user_id TEXT NOT NULL REFERENCES users(user_id),
                amount TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """
        )

        # Expenses table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                expense_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                amount TEXT NOT NULL,
                payer_id TEXT NOT NULL REFERENCES users(user_id),
                participants TEXT NOT NULL,
                shares TEXT NOT NULL,
                split_type TEXT NOT NULL,
                split_details TEXT NOT NULL,
                group_name TEXT,
                is_settle_up INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP NOT NULL
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    # ========================================================================
    # User operations
    # ========================================================================

    def _save_user(self, cursor: sqlite3.Cursor, user: User):
        """Record a user reference, keeping the latest non-empty display name."""
        cursor.execute(
            """
            INSERT INTO users (user_id, name) VALUES (?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                name = CASE WHEN excluded.name != '' THEN excluded.name ELSE users.name END
            """,
            (user.user_id, user.name),
        )

    def get_user(self, user_id: str) -> User | None:
        """Get a stored user reference by id."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT user_id, name FROM users WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
            return User(user_id=row["user_id"], name=row["name"]) if row else None

    def _user_names(self, cursor: sqlite3.Cursor) -> dict[str, str]:
        cursor.execute("SELECT user_id, name FROM users")
        return {row["user_id"]: row["name"] for row in cursor.fetchall()}

    # ========================================================================
    # Pairwise balance operations
    # ========================================================================

    _PAIR_COLUMNS = """
        SELECT p.id, p.debtor_id, d.name AS debtor_name,
               p.creditor_id, c.name AS creditor_name, p.amount
        FROM pairwise_balances p
        JOIN users d ON d.user_id = p.debtor_id
        JOIN users c ON c.user_id = p.creditor_id
    """

    @staticmethod
    def _row_to_pair(row: sqlite3.Row) -> PairwiseBalance:
        return PairwiseBalance(
            id=row["id"],
            debtor=User(user_id=row["debtor_id"], name=row["debtor_name"]),
            creditor=User(user_id=row["creditor_id"], name=row["creditor_name"]),
            amount=Decimal(row["amount"]),
        )

    def find_pair(self, debtor: User, creditor: User) -> PairwiseBalance | None:
        """Find the record for exactly this (debtor, creditor) ordering."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                self._PAIR_COLUMNS + " WHERE p.debtor_id = ? AND p.creditor_id = ?",
                (debtor.user_id, creditor.user_id),
            )
            row = cursor.fetchone()
            return self._row_to_pair(row) if row else None

    def upsert_pair(self, record: PairwiseBalance) -> PairwiseBalance:
        """Insert or update the record for its (debtor, creditor) ordering."""
        with self._lock:
            cursor = self.conn.cursor()
            self._save_user(cursor, record.debtor)
            self._save_user(cursor, record.creditor)
            cursor.execute(
                """
                INSERT INTO pairwise_balances (debtor_id, creditor_id, amount, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(debtor_id, creditor_id) DO UPDATE SET
                    amount = excluded.amount,
                    updated_at = excluded.updated_at
                """,
                (
                    record.debtor.user_id,
                    record.creditor.user_id,
                    str(record.amount),
                    datetime.now().isoformat(),
                ),
            )
            self.conn.commit()

            cursor.execute(
                "SELECT id FROM pairwise_balances WHERE debtor_id = ? AND creditor_id = ?",
                (record.debtor.user_id, record.creditor.user_id),
            )
            row = cursor.fetchone()
            if row is None:
                raise RuntimeError("Failed to upsert pairwise balance")
            return record.model_copy(update={"id": row["id"]})

    def delete_pair(self, record: PairwiseBalance) -> None:
        """Delete the record for its (debtor, creditor) ordering."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                "DELETE FROM pairwise_balances WHERE debtor_id = ? AND creditor_id = ?",
                (record.debtor.user_id, record.creditor.user_id),
            )
            self.conn.commit()

    def find_all_pairs_for_user(self, user: User) -> list[PairwiseBalance]:
        """Get all records where the user is debtor or creditor."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                self._PAIR_COLUMNS
                + " WHERE p.debtor_id = ? OR p.creditor_id = ? ORDER BY p.id",
                (user.user_id, user.user_id),
            )
            return [self._row_to_pair(row) for row in cursor.fetchall()]

    def find_all_pairs(self) -> list[PairwiseBalance]:
        """Get all pairwise balance records."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(self._PAIR_COLUMNS + " ORDER BY p.id")
            return [self._row_to_pair(row) for row in cursor.fetchall()]

    # ========================================================================
    # Settlement transaction operations
    # ========================================================================

    def save_transaction(
        self, transaction: SettlementTransaction
    ) -> SettlementTransaction:
        """Save a settlement transaction record."""
        with self._lock:
            cursor = self.conn.cursor()
            self._save_user(cursor, transaction.from_user)
            self._save_user(cursor, transaction.to_user)
            cursor.execute(
                """
                INSERT INTO settlement_transactions (
                    from_user_id, to_user_id, amount, created_at
                ) VALUES (?, ?, ?, ?)
                """,
                (
                    transaction.from_user.user_id,
                    transaction.to_user.user_id,
                    str(transaction.amount),
                    transaction.created_at.isoformat(),
                ),
            )
            self.conn.commit()
            row_id = cursor.lastrowid
            if row_id is None:
                raise RuntimeError("Failed to insert settlement transaction")
            return transaction.model_copy(update={"id": row_id})

    def list_transactions(self) -> list[SettlementTransaction]:
        """Get all settlement transactions, oldest first."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                """
                SELECT t.id, t.from_user_id, f.name AS from_name,
                       t.to_user_id, r.name AS to_name, t.amount, t.created_at
                FROM settlement_transactions t
                JOIN users f ON f.user_id = t.from_user_id
                JOIN users r ON r.user_id = t.to_user_id
                ORDER BY t.id
                """
            )
            return [
                SettlementTransaction(
                    id=row["id"],
                    from_user=User(user_id=row["from_user_id"], name=row["from_name"]),
                    to_user=User(user_id=row["to_user_id"], name=row["to_name"]),
                    amount=Decimal(row["amount"]),
                    created_at=datetime.fromisoformat(row["created_at"]),
                )
                for row in cursor.fetchall()
            ]

    # ========================================================================
    # Expense operations
    # ========================================================================

    def save_expense(self, expense: Expense):
        """Insert or replace an expense."""
        with self._lock:
            cursor = self.conn.cursor()
            self._save_user(cursor, expense.payer)
            for user in expense.participants:
                self._save_user(cursor, user)

            cursor.execute(
                """
                INSERT INTO expenses (
                    expense_id, title, description, amount, payer_id,
                    participants, shares, split_type, split_details,
                    group_name, is_settle_up, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(expense_id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    amount = excluded.amount,
                    payer_id = excluded.payer_id,
                    participants = excluded.participants,
                    shares = excluded.shares,
                    split_type = excluded.split_type,
                    split_details = excluded.split_details,
                    group_name = excluded.group_name,
                    is_settle_up = excluded.is_settle_up,
                    created_at = excluded.created_at
                """,
                (
                    expense.expense_id,
                    expense.title,
                    expense.description,
                    str(expense.amount),
                    expense.payer.user_id,
                    json.dumps([user.user_id for user in expense.participants]),
                    json.dumps(
                        {user.user_id: str(share) for user, share in expense.shares.items()}
                    ),
                    str(expense.split_type),
                    json.dumps(
                        {user_id: str(value) for user_id, value in expense.split_details.items()}
                    ),
                    expense.group,
                    int(expense.is_settle_up),
                    expense.created_at.isoformat(),
                ),
            )
            self.conn.commit()

    def _row_to_expense(self, row: sqlite3.Row, names: dict[str, str]) -> Expense:
        def user(user_id: str) -> User:
            return User(user_id=user_id, name=names.get(user_id, ""))

        return Expense(
            expense_id=row["expense_id"],
            title=row["title"],
            description=row["description"],
            amount=Decimal(row["amount"]),
            payer=user(row["payer_id"]),
            participants=[user(uid) for uid in json.loads(row["participants"])],
            shares={
                user(uid): Decimal(share)
                for uid, share in json.loads(row["shares"]).items()
            },
            split_type=SplitType(row["split_type"]),
            split_details={
                uid: Decimal(value)
                for uid, value in json.loads(row["split_details"]).items()
            },
            group=row["group_name"],
            is_settle_up=bool(row["is_settle_up"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def get_expense(self, expense_id: str) -> Expense | None:
        """Get an expense by id."""
        with self._lock:
            cursor = self.conn.cursor()
            names = self._user_names(cursor)
            cursor.execute("SELECT * FROM expenses WHERE expense_id = ?", (expense_id,))
            row = cursor.fetchone()
            return self._row_to_expense(row, names) if row else None

    def delete_expense(self, expense_id: str) -> bool:
        """Delete an expense, returning whether it existed."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("DELETE FROM expenses WHERE expense_id = ?", (expense_id,))
            self.conn.commit()
            return cursor.rowcount > 0

    def list_expenses(self) -> list[Expense]:
        """Get all expenses, oldest first."""
        with self._lock:
            cursor = self.conn.cursor()
            names = self._user_names(cursor)
            cursor.execute("SELECT * FROM expenses ORDER BY created_at, expense_id")
            return [self._row_to_expense(row, names) for row in cursor.fetchall()]
