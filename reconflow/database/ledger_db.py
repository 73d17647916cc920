"""
Database module for persisting the reconciliation ledger.

Provides SQLite-based storage for:
- Invoices and payments
- Reconciliations and exceptions
- Remittances
- Processing jobs

Each record is stored as a JSON document alongside the columns used for
filtering. Every statement filters on organization_id.
"""
import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Type, TypeVar, Union, Iterable
from contextlib import contextmanager

from pydantic import BaseModel

from ..models.ledger import (
    Invoice,
    Payment,
    Reconciliation,
    ExceptionRecord,
    ExceptionStatus,
    ReconciliationStatus,
    Remittance,
    utcnow,
)
from ..models.processing import ProcessingJob
from ..utils.config import get_settings
from ..utils.errors import VersionConflictError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
StatusFilter = Optional[Union[str, Iterable[str]]]

TABLES = ("invoices", "payments", "reconciliations", "exceptions", "remittances", "processing_jobs")


class LedgerDatabase:
    """SQLite database for ledger persistence."""

    def __init__(self, db_path: str = "data/reconflow.db"):
        """Initialize database and create tables."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._create_tables()

    @contextmanager
    def get_connection(self):
        """Get database connection with automatic commit/rollback."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _create_tables(self):
        """Create database tables if they don't exist."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            for table in TABLES:
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        organization_id TEXT NOT NULL,
                        status TEXT,
                        version INTEGER NOT NULL DEFAULT 1,
                        invoice_id TEXT,
                        payment_id TEXT,
                        data TEXT NOT NULL,
                        created_at TEXT,
                        updated_at TEXT
                    )
                """)
                cursor.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_org_status ON {table}(organization_id, status)"
                )

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_exceptions_invoice ON exceptions(organization_id, invoice_id)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_exceptions_payment ON exceptions(organization_id, payment_id)"
            )

    # ============== Generic record helpers ==============

    @staticmethod
    def _row_values(record: BaseModel):
        status = getattr(record, "status", None)
        return (
            record.id,
            record.organization_id,
            status.value if hasattr(status, "value") else status,
            getattr(record, "version", 1),
            getattr(record, "invoice_id", None),
            getattr(record, "payment_id", None),
            record.model_dump_json(),
            record.created_at.isoformat(),
            getattr(record, "updated_at", record.created_at).isoformat(),
        )

    def _insert(self, cursor, table: str, record: BaseModel):
        cursor.execute(f"""
            INSERT INTO {table} (
                id, organization_id, status, version, invoice_id, payment_id,
                data, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, self._row_values(record))

    def _replace(self, cursor, table: str, record: BaseModel, expected_version: Optional[int] = None):
        """Overwrite a stored record; with expected_version, only if nobody changed it since."""
        values = self._row_values(record)
        sql = f"""
            UPDATE {table}
            SET status = ?, version = ?, invoice_id = ?, payment_id = ?, data = ?, updated_at = ?
            WHERE id = ? AND organization_id = ?
        """
        params = [values[2], values[3], values[4], values[5], values[6], values[8], values[0], values[1]]
        if expected_version is not None:
            sql += " AND version = ?"
            params.append(expected_version)

        cursor.execute(sql, params)
        if cursor.rowcount == 0:
            if expected_version is not None:
                raise VersionConflictError(
                    f"{table[:-1]} {record.id} was modified concurrently (expected version {expected_version})"
                )
            return False
        return True

    def _get(self, table: str, model: Type[ModelT], organization_id: str, record_id: str) -> Optional[ModelT]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT data FROM {table} WHERE id = ? AND organization_id = ?",
                (record_id, organization_id)
            )
            row = cursor.fetchone()
            return model.model_validate_json(row["data"]) if row else None

    def _list(
        self,
        table: str,
        model: Type[ModelT],
        organization_id: str,
        status: StatusFilter = None,
        limit: Optional[int] = None,
        offset: int = 0,
        newest_first: bool = False,
    ) -> List[ModelT]:
        sql = f"SELECT data FROM {table} WHERE organization_id = ?"
        params: list = [organization_id]

        if status is not None:
            statuses = [status] if isinstance(status, str) else list(status)
            statuses = [s.value if hasattr(s, "value") else s for s in statuses]
            sql += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)

        # rowid keeps insertion order stable for records created in the same instant
        sql += " ORDER BY created_at DESC, rowid DESC" if newest_first else " ORDER BY created_at, rowid"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(sql, params)
            return [model.model_validate_json(row["data"]) for row in cursor.fetchall()]

    def _count(self, table: str, organization_id: str, status: StatusFilter = None) -> int:
        sql = f"SELECT COUNT(*) as total FROM {table} WHERE organization_id = ?"
        params: list = [organization_id]
        if status is not None:
            statuses = [status] if isinstance(status, str) else list(status)
            sql += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(s.value if hasattr(s, "value") else s for s in statuses)

        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(sql, params)
            return cursor.fetchone()["total"]

    def _create(self, table: str, record: ModelT) -> ModelT:
        with self.get_connection() as conn:
            self._insert(conn.cursor(), table, record)
        return record

    def _update(
        self,
        table: str,
        model: Type[ModelT],
        organization_id: str,
        record_id: str,
        changes: dict,
        expected_version: Optional[int] = None,
    ) -> Optional[ModelT]:
        """Apply field changes to a stored record, bumping its version."""
        current = self._get(table, model, organization_id, record_id)
        if current is None:
            return None
        if expected_version is not None and current.version != expected_version:
            raise VersionConflictError(
                f"{table[:-1]} {record_id} is at version {current.version}, expected {expected_version}"
            )

        data = current.model_dump()
        data.update(changes)
        data["version"] = current.version + 1
        data["updated_at"] = utcnow()
        updated = model.model_validate(data)

        with self.get_connection() as conn:
            self._replace(conn.cursor(), table, updated, expected_version=current.version)
        return updated

    # ============== Invoices ==============

    def create_invoice(self, invoice: Invoice) -> Invoice:
        return self._create("invoices", invoice)

    def create_invoices(self, invoices: List[Invoice]) -> List[Invoice]:
        """Insert many invoices in one transaction."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            for invoice in invoices:
                self._insert(cursor, "invoices", invoice)
        return invoices

    def get_invoice(self, organization_id: str, invoice_id: str) -> Optional[Invoice]:
        return self._get("invoices", Invoice, organization_id, invoice_id)

    def list_invoices(self, organization_id: str, status: StatusFilter = None) -> List[Invoice]:
        return self._list("invoices", Invoice, organization_id, status=status)

    def update_invoice(
        self, organization_id: str, invoice_id: str, changes: dict, expected_version: Optional[int] = None
    ) -> Optional[Invoice]:
        return self._update("invoices", Invoice, organization_id, invoice_id, changes, expected_version)

    def update_invoice_status(
        self, organization_id: str, invoice_id: str, status: str, expected_version: Optional[int] = None
    ) -> Optional[Invoice]:
        return self.update_invoice(organization_id, invoice_id, {"status": status}, expected_version)

    # ============== Payments ==============

    def create_payment(self, payment: Payment) -> Payment:
        return self._create("payments", payment)

    def create_payments(self, payments: List[Payment]) -> List[Payment]:
        """Insert many payments in one transaction."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            for payment in payments:
                self._insert(cursor, "payments", payment)
        return payments

    def get_payment(self, organization_id: str, payment_id: str) -> Optional[Payment]:
        return self._get("payments", Payment, organization_id, payment_id)

    def list_payments(self, organization_id: str, status: StatusFilter = None) -> List[Payment]:
        return self._list("payments", Payment, organization_id, status=status)

    def update_payment(
        self, organization_id: str, payment_id: str, changes: dict, expected_version: Optional[int] = None
    ) -> Optional[Payment]:
        return self._update("payments", Payment, organization_id, payment_id, changes, expected_version)

    def update_payment_status(
        self, organization_id: str, payment_id: str, status: str, expected_version: Optional[int] = None
    ) -> Optional[Payment]:
        return self.update_payment(organization_id, payment_id, {"status": status}, expected_version)

    # ============== Reconciliations ==============

    def commit_reconciliation(
        self,
        reconciliation: Reconciliation,
        invoice: Invoice,
        payment: Payment,
        exception: Optional[ExceptionRecord] = None,
        expected_invoice_version: Optional[int] = None,
        expected_payment_version: Optional[int] = None,
    ) -> bool:
        """
        Persist a reconciliation together with the invoice and payment it settles.

        The reconciliation, both updated records and the optional exception
        are written in one transaction. When expected versions are given and
        either record moved on since it was read, nothing is written.

        Returns:
            True if committed, False on a version conflict
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                self._insert(cursor, "reconciliations", reconciliation)
                self._replace(cursor, "invoices", invoice, expected_version=expected_invoice_version)
                self._replace(cursor, "payments", payment, expected_version=expected_payment_version)
                if exception is not None:
                    self._insert(cursor, "exceptions", exception)
        except VersionConflictError as e:
            logger.warning(f"Reconciliation {reconciliation.id} not committed: {e}")
            return False
        return True

    def get_reconciliation(self, organization_id: str, reconciliation_id: str) -> Optional[Reconciliation]:
        return self._get("reconciliations", Reconciliation, organization_id, reconciliation_id)

    def list_reconciliations(self, organization_id: str, status: StatusFilter = None) -> List[Reconciliation]:
        return self._list("reconciliations", Reconciliation, organization_id, status=status)

    def update_reconciliation_status(
        self, organization_id: str, reconciliation_id: str, status: ReconciliationStatus
    ) -> Optional[Reconciliation]:
        current = self.get_reconciliation(organization_id, reconciliation_id)
        if current is None:
            return None
        updated = current.model_copy(update={"status": ReconciliationStatus(status), "updated_at": utcnow()})
        with self.get_connection() as conn:
            self._replace(conn.cursor(), "reconciliations", updated)
        return updated

    # ============== Exceptions ==============

    def create_exception(self, exception: ExceptionRecord) -> ExceptionRecord:
        return self._create("exceptions", exception)

    def get_exception(self, organization_id: str, exception_id: str) -> Optional[ExceptionRecord]:
        return self._get("exceptions", ExceptionRecord, organization_id, exception_id)

    def list_exceptions(self, organization_id: str, status: StatusFilter = None) -> List[ExceptionRecord]:
        return self._list("exceptions", ExceptionRecord, organization_id, status=status)

    def update_exception_status(
        self,
        organization_id: str,
        exception_id: str,
        status: ExceptionStatus,
        resolved_by: Optional[str] = None,
    ) -> Optional[ExceptionRecord]:
        """Update exception status; resolving stamps resolver and time."""
        current = self.get_exception(organization_id, exception_id)
        if current is None:
            return None

        status = ExceptionStatus(status)
        changes = {"status": status}
        if status == ExceptionStatus.RESOLVED:
            changes["resolved_at"] = utcnow()
            changes["resolved_by"] = resolved_by
        elif resolved_by:
            changes["resolved_by"] = resolved_by

        updated = current.model_copy(update=changes)
        with self.get_connection() as conn:
            self._replace(conn.cursor(), "exceptions", updated)
        return updated

    # ============== Remittances ==============

    def create_remittance(self, remittance: Remittance) -> Remittance:
        return self._create("remittances", remittance)

    def get_remittance(self, organization_id: str, remittance_id: str) -> Optional[Remittance]:
        return self._get("remittances", Remittance, organization_id, remittance_id)

    def list_remittances(self, organization_id: str, limit: Optional[int] = 50, offset: int = 0) -> List[Remittance]:
        return self._list(
            "remittances", Remittance, organization_id, limit=limit, offset=offset, newest_first=True
        )

    def count_remittances(self, organization_id: str) -> int:
        return self._count("remittances", organization_id)

    # ============== Processing jobs ==============

    def create_job(self, job: ProcessingJob) -> ProcessingJob:
        return self._create("processing_jobs", job)

    def get_job(self, organization_id: str, job_id: str) -> Optional[ProcessingJob]:
        return self._get("processing_jobs", ProcessingJob, organization_id, job_id)

    def update_job(self, job: ProcessingJob) -> ProcessingJob:
        with self.get_connection() as conn:
            self._replace(conn.cursor(), "processing_jobs", job)
        return job

    def list_jobs(
        self, organization_id: str, status: StatusFilter = None, limit: int = 50, offset: int = 0
    ) -> List[ProcessingJob]:
        return self._list(
            "processing_jobs", ProcessingJob, organization_id,
            status=status, limit=limit, offset=offset, newest_first=True
        )

    def all_jobs(self, organization_id: str, status: StatusFilter = None) -> List[ProcessingJob]:
        return self._list("processing_jobs", ProcessingJob, organization_id, status=status)

    def count_jobs(self, organization_id: str, status: StatusFilter = None) -> int:
        return self._count("processing_jobs", organization_id, status=status)


# Singleton instance
_db_instance = None


def get_database() -> LedgerDatabase:
    """Get singleton database instance."""
    global _db_instance
    if _db_instance is None:
        _db_instance = LedgerDatabase(get_settings().DATABASE_PATH)
    return _db_instance
