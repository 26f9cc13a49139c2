"""
Repository pattern for data access.

SQLite implementation of the settlement ledger: drawer inventories,
committed service payments and the cash movements behind them.
"""

import logging
import sqlite3
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Union

from .db import DEFAULT_DB_PATH, get_connection, write_transaction
from .models import MovementType, PaymentRecord, SettlementPlan
from cash_settlement.core.credit_limit import CreditUsage
from cash_settlement.core.denominations import DenominationEntry, DenominationInventory
from cash_settlement.core.errors import InsufficientInventory
from cash_settlement.core.money import ZERO

logger = logging.getLogger(__name__)

_PAYMENT_COLUMNS = """
    transaction_id, service_code, reference_number, payment_amount,
    commission_amount, total_payable, drawer_id, created_at
"""


def _denomination_key(denomination: Decimal) -> str:
    """Canonical text for a denomination so 500 and 500.00 share a row."""
    return format(denomination.normalize(), 'f')


def _row_to_payment(row) -> PaymentRecord:
    return PaymentRecord(
        transaction_id=row[0],
        service_code=row[1],
        reference_number=row[2],
        payment_amount=Decimal(row[3]),
        commission_amount=Decimal(row[4]),
        total_payable=Decimal(row[5]),
        drawer_id=row[6],
        transaction_date=datetime.fromisoformat(row[7]),
    )


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger tables if they don't exist.

    service_payment and cash_movement are append-only. drawer_inventory is
    the only table updated in place, and only through commit_settlement or
    set_inventory.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS drawer_inventory (
                drawer_id TEXT NOT NULL,
                denomination TEXT NOT NULL,
                quantity INTEGER NOT NULL CHECK (quantity >= 0),
                last_updated TEXT NOT NULL,
                PRIMARY KEY (drawer_id, denomination)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS service_payment (
                transaction_id TEXT PRIMARY KEY,
                service_code TEXT NOT NULL,
                reference_number TEXT NOT NULL,
                payment_amount TEXT NOT NULL,
                commission_amount TEXT NOT NULL,
                total_payable TEXT NOT NULL,
                drawer_id TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_service_payment_reference
            ON service_payment (service_code, reference_number)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS cash_movement (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                transaction_id TEXT NOT NULL REFERENCES service_payment (transaction_id),
                drawer_id TEXT NOT NULL,
                movement_type TEXT NOT NULL,
                denomination TEXT NOT NULL,
                quantity INTEGER NOT NULL
            )
        """)
    finally:
        conn.close()


class SettlementRepository:
    """SQLite-backed settlement ledger.

    Each method opens its own connection, matching one cashier session per
    drawer. The multi-statement writes, commit_settlement and set_inventory,
    each run inside write_transaction.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def load_inventory(self, drawer_id: str) -> DenominationInventory:
        """Current denomination counts for a drawer (empty if unknown)."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT denomination, quantity FROM drawer_inventory WHERE drawer_id = ?",
                (drawer_id,),
            )
            return DenominationInventory({Decimal(d): q for d, q in cursor.fetchall()})
        finally:
            conn.close()

    def set_inventory(self, drawer_id: str, inventory: DenominationInventory) -> None:
        """Replace a drawer's counts, e.g. when opening a till."""
        now = datetime.now().isoformat()
        conn = get_connection(self.db_path)
        try:
            with write_transaction(conn):
                conn.execute("DELETE FROM drawer_inventory WHERE drawer_id = ?", (drawer_id,))
                for denomination, quantity in inventory:
                    conn.execute(
                        """
                        INSERT INTO drawer_inventory (drawer_id, denomination, quantity, last_updated)
                        VALUES (?, ?, ?, ?)
                        """,
                        (drawer_id, _denomination_key(denomination), quantity, now),
                    )
        finally:
            conn.close()

    def get_credit_usage(self, service_code: str, day: date) -> CreditUsage:
        """Total and same-day payment amounts recorded for a service.

        Args:
            service_code: Service whose credit line is being checked
            day: Calendar day the daily usage is counted for

        Returns:
            CreditUsage with Decimal totals
        """
        day_start = datetime.combine(day, time.min).isoformat()
        next_day = datetime.combine(day + timedelta(days=1), time.min).isoformat()
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT payment_amount, created_at FROM service_payment WHERE service_code = ?",
                (service_code,),
            )
            total = ZERO
            daily = ZERO
            for amount, created_at in cursor.fetchall():
                value = Decimal(amount)
                total += value
                if day_start <= created_at < next_day:
                    daily += value
            return CreditUsage(total_credit_used=total, daily_used=daily)
        finally:
            conn.close()

    def commit_settlement(self, plan: SettlementPlan) -> None:
        """Write a settlement plan atomically.

        Inserts the payment and its cash movements, adds the cash received
        to the drawer and removes the change dispensed. Any failure rolls
        back every statement, leaving the drawer untouched.

        Raises:
            InsufficientInventory: If the drawer no longer holds the change
            sqlite3.IntegrityError: If the transaction id already exists
        """
        payment = plan.payment
        drawer_id = payment.drawer_id
        now = datetime.now().isoformat()

        conn = get_connection(self.db_path)
        try:
            with write_transaction(conn):
                conn.execute(
                    f"INSERT INTO service_payment ({_PAYMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        payment.transaction_id,
                        payment.service_code,
                        payment.reference_number,
                        str(payment.payment_amount),
                        str(payment.commission_amount),
                        str(payment.total_payable if payment.total_payable is not None else payment.payment_amount),
                        drawer_id,
                        payment.transaction_date.isoformat(),
                    ),
                )

                for entry in plan.received:
                    if entry.quantity == 0:
                        continue
                    conn.execute(
                        """
                        INSERT INTO drawer_inventory (drawer_id, denomination, quantity, last_updated)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT (drawer_id, denomination)
                        DO UPDATE SET quantity = quantity + excluded.quantity,
                                      last_updated = excluded.last_updated
                        """,
                        (drawer_id, _denomination_key(entry.denomination), entry.quantity, now),
                    )
                    self._insert_movement(conn, payment.transaction_id, drawer_id, MovementType.RECEIVED, entry)

                for entry in plan.change:
                    key = _denomination_key(entry.denomination)
                    row = conn.execute(
                        "SELECT quantity FROM drawer_inventory WHERE drawer_id = ? AND denomination = ?",
                        (drawer_id, key),
                    ).fetchone()
                    available = row[0] if row else 0
                    if available < entry.quantity:
                        raise InsufficientInventory(
                            f"Drawer {drawer_id} holds {available} x {entry.denomination}, "
                            f"change needs {entry.quantity}",
                            short_denominations=[entry.denomination],
                            remaining=entry.denomination * (entry.quantity - available),
                        )
                    conn.execute(
                        """
                        UPDATE drawer_inventory SET quantity = quantity - ?, last_updated = ?
                        WHERE drawer_id = ? AND denomination = ?
                        """,
                        (entry.quantity, now, drawer_id, key),
                    )
                    self._insert_movement(conn, payment.transaction_id, drawer_id, MovementType.CHANGE, entry)
        except Exception:
            logger.error(
                "Settlement commit rolled back",
                extra={"transaction_id": payment.transaction_id, "drawer_id": drawer_id},
            )
            raise
        finally:
            conn.close()

    @staticmethod
    def _insert_movement(conn: sqlite3.Connection, transaction_id: str, drawer_id: str,
                         movement_type: MovementType, entry: DenominationEntry) -> None:
        conn.execute(
            """
            INSERT INTO cash_movement (transaction_id, drawer_id, movement_type, denomination, quantity)
            VALUES (?, ?, ?, ?, ?)
            """,
            (transaction_id, drawer_id, movement_type.value, _denomination_key(entry.denomination), entry.quantity),
        )

    def get_transaction_movements(self, transaction_id: str) -> Dict[MovementType, List[DenominationEntry]]:
        """Cash received and change dispensed for one transaction."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                SELECT movement_type, denomination, quantity FROM cash_movement
                WHERE transaction_id = ? ORDER BY id
                """,
                (transaction_id,),
            )
            movements: Dict[MovementType, List[DenominationEntry]] = {t: [] for t in MovementType}
            for movement_type, denomination, quantity in cursor.fetchall():
                movements[MovementType(movement_type)].append(
                    DenominationEntry(denomination=Decimal(denomination), quantity=quantity)
                )
            return movements
        finally:
            conn.close()

    def find_payment(self, service_code: str, reference_number: str) -> Optional[PaymentRecord]:
        """Look up a payment by its biller reference."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"""
                SELECT {_PAYMENT_COLUMNS} FROM service_payment
                WHERE service_code = ? AND reference_number = ?
                ORDER BY created_at LIMIT 1
                """,
                (service_code, reference_number),
            ).fetchone()
            return _row_to_payment(row) if row else None
        finally:
            conn.close()

    def list_payments(
        self,
        service_code: str,
        start: Optional[Union[date, datetime]] = None,
        end: Optional[Union[date, datetime]] = None,
    ) -> List[PaymentRecord]:
        """Payments for a service, optionally within [start, end], oldest first.

        A plain date as end covers that whole day; a datetime is an exact
        inclusive bound.
        """
        query = f"SELECT {_PAYMENT_COLUMNS} FROM service_payment WHERE service_code = ?"
        params: list = [service_code]
        if start is not None:
            query += " AND created_at >= ?"
            params.append(start.isoformat())
        if end is not None:
            if isinstance(end, datetime):
                query += " AND created_at <= ?"
                params.append(end.isoformat())
            else:
                query += " AND created_at < ?"
                params.append((end + timedelta(days=1)).isoformat())
        query += " ORDER BY created_at"

        conn = get_connection(self.db_path)
        try:
            return [_row_to_payment(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()


# Repository instances keyed by database path
_repositories: Dict[str, SettlementRepository] = {}


def get_repository(db_path: str = DEFAULT_DB_PATH) -> SettlementRepository:
    """Get the repository for a database path.

    Args:
        db_path: Path to SQLite database file

    Returns:
        A shared SettlementRepository for that path
    """
    if db_path not in _repositories:
        _repositories[db_path] = SettlementRepository(db_path)
    return _repositories[db_path]
