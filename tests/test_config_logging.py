"""
Test suite for configuration and structured logging
"""

import json
import logging
from decimal import Decimal
from datetime import date

from lending_core.config import LendingConfig, get_config, reload_config
from lending_core.engine import LendingEngine
from lending_core.logging_config import JSONFormatter, log_action, setup_logging
from lending_core.payments import PaymentMethod
from lending_core.storage import InMemoryStorage


class TestLendingConfig:
    """Test environment-driven configuration"""

    def test_defaults(self):
        """Test the built-in business rule defaults"""
        config = LendingConfig(_env_file=None)
        assert config.flat_weekly_fee == Decimal('50')
        assert config.late_payment_penalty == 5
        assert config.default_credit_score == 100
        assert config.default_payment_method == "Cash"
        assert config.loan_code_prefix == "LN"

    def test_environment_overrides(self, monkeypatch):
        """Test LENDING_ variables override defaults"""
        monkeypatch.setenv("LENDING_FLAT_WEEKLY_FEE", "75")
        monkeypatch.setenv("LENDING_LATE_PAYMENT_PENALTY", "10")
        monkeypatch.setenv("LENDING_DATABASE_URL", "memory://")
        config = LendingConfig(_env_file=None)
        assert config.flat_weekly_fee == Decimal('75')
        assert config.late_payment_penalty == 10
        assert config.database_url == "memory://"

    def test_reload_config(self, monkeypatch):
        """Test reload picks up the current environment"""
        monkeypatch.setenv("LENDING_PAYMENT_CODE_PREFIX", "OR")
        try:
            assert reload_config().payment_code_prefix == "OR"
            assert get_config().payment_code_prefix == "OR"
        finally:
            monkeypatch.delenv("LENDING_PAYMENT_CODE_PREFIX")
            reload_config()

    def test_engine_uses_configured_rules(self):
        """Test fee, penalty, prefixes and default method flow into the ledger"""
        config = LendingConfig(
            _env_file=None,
            database_url="memory://",
            flat_weekly_fee=Decimal('20'),
            late_payment_penalty=7,
            payment_code_prefix="OR",
            default_payment_method="Check",
        )
        engine = LendingEngine(storage=InMemoryStorage(), config=config)
        customer = engine.create_customer("Maria", "Santos")
        loan = engine.book_loan(customer.id, 10000, 6, date(2025, 1, 1), 26)

        result = engine.apply_payment(loan.id, 1000, date(2025, 2, 3))
        assert result.payment.payment_id == "OR000001"
        assert result.payment.late_payment_fee == Decimal('20')
        assert result.payment.payment_method == PaymentMethod.CHECK
        assert engine.get_customer(customer.id).credit_score == 93

    def test_audit_can_be_disabled(self):
        """Test enable_audit_logging switches the trail off"""
        config = LendingConfig(_env_file=None, enable_audit_logging=False)
        engine = LendingEngine(storage=InMemoryStorage(), config=config)
        engine.create_customer("Maria", "Santos")
        assert engine.audit_trail.count_events() == 0


class TestStructuredLogging:
    """Test JSON log output"""

    def test_json_formatter_includes_structured_fields(self):
        """Test action, resource and extra land in the JSON line"""
        record = logging.LogRecord(
            "lending.payments", logging.INFO, __file__, 1, "Payment applied", None, None
        )
        record.action = "apply_payment"
        record.resource = "loan:l1"
        record.extra = {"amount": "1000"}

        entry = json.loads(JSONFormatter().format(record))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "lending.payments"
        assert entry["message"] == "Payment applied"
        assert entry["action"] == "apply_payment"
        assert entry["resource"] == "loan:l1"
        assert entry["extra"] == {"amount": "1000"}
        assert "user_id" not in entry

    def test_setup_logging(self, tmp_path):
        """Test setup_logging writes JSON lines to a file"""
        log_file = tmp_path / "lending.log"
        logger = setup_logging(
            level="DEBUG", format_type="json",
            logger_name="lending_test", log_file=str(log_file),
        )
        log_action(logger, "warning", "Payment rejected", action="apply_payment",
                   extra={"reason": "invalid_amount"})
        for handler in logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["level"] == "WARNING"
        assert entry["extra"] == {"reason": "invalid_amount"}

        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    def test_payment_logs_one_line(self, caplog):
        """Test a payment emits a structured info line"""
        engine = LendingEngine(
            storage=InMemoryStorage(), config=LendingConfig(_env_file=None)
        )
        customer = engine.create_customer("Maria", "Santos")
        loan = engine.book_loan(customer.id, 10000, 6, date(2025, 1, 1), 26)

        with caplog.at_level(logging.INFO, logger="lending.payments"):
            engine.apply_payment(loan.id, 1000, date(2025, 1, 31))

        records = [r for r in caplog.records if r.name == "lending.payments"]
        assert len(records) == 1
        assert records[0].action == "apply_payment"
        assert records[0].resource == f"loan:{loan.id}"
        assert records[0].extra["new_balance"] == "9600"
