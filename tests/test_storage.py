"""
Test suite for storage backends

Both backends must roll back every write of a failed unit of work.
"""

import pytest
import threading
from decimal import Decimal
from datetime import date

from lending_core.config import LendingConfig
from lending_core.engine import LendingEngine
from lending_core.errors import LedgerConsistencyError
from lending_core.storage import InMemoryStorage, SQLiteStorage, create_storage


class StorageContract:
    """Behaviour shared by every backend"""

    def make_storage(self, tmp_path):
        raise NotImplementedError

    @pytest.fixture(autouse=True)
    def _storage(self, tmp_path):
        self.storage = self.make_storage(tmp_path)
        yield
        self.storage.close()

    def test_save_and_load(self):
        """Test a saved record loads back equal"""
        self.storage.save("loans", "l1", {"id": "l1", "balance": "10600"})
        assert self.storage.load("loans", "l1") == {"id": "l1", "balance": "10600"}
        assert self.storage.exists("loans", "l1")
        assert self.storage.load("loans", "missing") is None

    def test_loaded_records_are_detached(self):
        """Test mutating a loaded record does not change the store"""
        self.storage.save("loans", "l1", {"id": "l1", "balance": "10600"})
        record = self.storage.load("loans", "l1")
        record["balance"] = "0"
        assert self.storage.load("loans", "l1")["balance"] == "10600"

    def test_find_and_count(self):
        """Test filtering on field equality"""
        self.storage.save("payments", "p1", {"id": "p1", "loan_id": "a"})
        self.storage.save("payments", "p2", {"id": "p2", "loan_id": "b"})
        self.storage.save("payments", "p3", {"id": "p3", "loan_id": "a"})
        found = self.storage.find("payments", {"loan_id": "a"})
        assert sorted(r["id"] for r in found) == ["p1", "p3"]
        assert self.storage.count("payments") == 3

    def test_delete(self):
        """Test deleting a record"""
        self.storage.save("loans", "l1", {"id": "l1"})
        assert self.storage.delete("loans", "l1")
        assert not self.storage.delete("loans", "l1")
        assert self.storage.load_all("loans") == []

    def test_sequences(self):
        """Test named sequences count independently from one"""
        assert self.storage.next_sequence("loan_code") == 1
        assert self.storage.next_sequence("loan_code") == 2
        assert self.storage.next_sequence("payment_id") == 1

    def test_atomic_commit(self):
        """Test writes inside a committed unit persist"""
        with self.storage.atomic():
            self.storage.save("loans", "l1", {"id": "l1", "balance": "1"})
            self.storage.save("payments", "p1", {"id": "p1"})
        assert self.storage.load("loans", "l1") == {"id": "l1", "balance": "1"}
        assert self.storage.exists("payments", "p1")

    def test_atomic_rollback(self):
        """Test a failing unit undoes inserts and updates"""
        self.storage.save("loans", "l1", {"id": "l1", "balance": "10600"})

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("loans", "l1", {"id": "l1", "balance": "9600"})
                self.storage.save("payments", "p1", {"id": "p1"})
                raise RuntimeError("boom")

        assert self.storage.load("loans", "l1") == {"id": "l1", "balance": "10600"}
        assert self.storage.load("payments", "p1") is None

    def test_rollback_keeps_sequence_gap(self):
        """Test a number allocated before a failed unit is never reused"""
        self.storage.next_sequence("payment_id")
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("payments", "p1", {"id": "p1"})
                raise RuntimeError("boom")
        assert self.storage.next_sequence("payment_id") == 2

    def test_nested_units_commit_once(self):
        """Test an inner unit joins the outer one"""
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                with self.storage.atomic():
                    self.storage.save("loans", "l1", {"id": "l1"})
                raise RuntimeError("boom")
        assert self.storage.load("loans", "l1") is None


class TestInMemoryStorage(StorageContract):
    """Test the in-memory backend"""

    def make_storage(self, tmp_path):
        return InMemoryStorage()

    def test_units_on_other_threads_are_independent(self):
        """Test a rollback on one thread leaves another thread's writes alone"""
        started = threading.Event()
        release = threading.Event()

        def other_thread():
            with self.storage.atomic():
                self.storage.save("loans", "other", {"id": "other"})
                started.set()
                release.wait(5)

        worker = threading.Thread(target=other_thread)
        worker.start()
        started.wait(5)

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("loans", "mine", {"id": "mine"})
                raise RuntimeError("boom")

        release.set()
        worker.join()
        assert self.storage.exists("loans", "other")
        assert not self.storage.exists("loans", "mine")


class TestSQLiteStorage(StorageContract):
    """Test the SQLite backend on a temporary file"""

    def make_storage(self, tmp_path):
        return SQLiteStorage(tmp_path / "lending.db")

    def test_data_survives_reopen(self):
        """Test committed data and sequences persist across connections"""
        path = self.storage.db_path
        self.storage.save("loans", "l1", {"id": "l1"})
        self.storage.next_sequence("loan_code")
        self.storage.close()

        self.storage = SQLiteStorage(path)
        assert self.storage.exists("loans", "l1")
        assert self.storage.next_sequence("loan_code") == 2

    def test_rollback_of_table_created_in_unit(self):
        """Test a table first created inside a failed unit can be used afterwards"""
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("fresh", "r1", {"id": "r1"})
                raise RuntimeError("boom")
        assert self.storage.load_all("fresh") == []


class TestCreateStorage:
    """Test storage URL parsing"""

    def test_memory_url(self):
        """Test memory:// builds in-memory storage"""
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_file_url(self, tmp_path):
        """Test sqlite:/// builds file-backed SQLite storage"""
        storage = create_storage(f"sqlite:///{tmp_path / 'x.db'}")
        assert isinstance(storage, SQLiteStorage)
        storage.close()

    def test_unsupported_url(self):
        """Test unknown schemes are rejected"""
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/lending")


class FailingSQLiteStorage(SQLiteStorage):
    """SQLite storage that fails writes to one table on demand"""

    fail_table = None

    def save(self, table, record_id, data):
        if table == self.fail_table:
            raise RuntimeError(f"disk full writing {table}")
        super().save(table, record_id, data)


class TestLedgerOnSQLite:
    """Test payments end to end on a SQLite file"""

    def setup_method(self):
        """Set up test fixtures"""
        self.config = LendingConfig(database_url="memory://")

    def test_failed_payment_leaves_no_partial_state(self, tmp_path):
        """Test a failure on the customer write rolls back payment and loan"""
        storage = FailingSQLiteStorage(tmp_path / "ledger.db")
        engine = LendingEngine(storage=storage, config=self.config)
        customer = engine.create_customer("Maria", "Santos")
        loan = engine.book_loan(customer.id, 10000, 6, date(2025, 1, 1), 26)

        storage.fail_table = "customers"
        with pytest.raises(LedgerConsistencyError):
            engine.apply_payment(loan.id, 1000, date(2025, 2, 3))
        storage.fail_table = None

        assert engine.get_loan_payments(loan.id) == []
        assert engine.get_loan(loan.id).current_balance == Decimal('10600')
        assert engine.get_customer(customer.id).credit_score == 100

        result = engine.apply_payment(loan.id, 1000, date(2025, 2, 3))
        assert result.payment.payment_id == "PAY000002"
        engine.close()

    def test_state_survives_restart(self, tmp_path):
        """Test loans, payments and credit fields persist across engines"""
        path = tmp_path / "ledger.db"
        engine = LendingEngine(storage=SQLiteStorage(path), config=self.config)
        customer = engine.create_customer("Maria", "Santos")
        loan = engine.book_loan(customer.id, 10000, 6, date(2025, 1, 1), 26)
        engine.apply_payment(loan.id, 1000, date(2025, 2, 3))
        engine.close()

        engine = LendingEngine(storage=SQLiteStorage(path), config=self.config)
        assert engine.get_loan(loan.id).current_balance == Decimal('9600')
        assert engine.get_customer(customer.id).late_payment_count == 1
        assert engine.audit_trail.verify_integrity()['valid']
        engine.close()
