"""
Customer Module

The slice of a customer profile the ledger depends on: identity for loans
to reference, and the three credit fields the credit score adjuster
mutates. Everything else about a customer lives outside this engine.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional
import uuid

from .audit import AuditTrail, AuditEventType
from .errors import CustomerNotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


@dataclass
class Customer(StorageRecord):
    """Borrower with credit standing"""
    customer_code: str
    first_name: str
    last_name: str
    credit_score: int = 100
    late_payment_count: int = 0
    late_payment_points: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class CustomerRepository:
    """Loads and saves customers"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "customers"

    def get(self, customer_id: str) -> Optional[Customer]:
        data = self.storage.load(self.table_name, customer_id)
        return self._customer_from_dict(data) if data else None

    def require(self, customer_id: str) -> Customer:
        customer = self.get(customer_id)
        if customer is None:
            raise CustomerNotFoundError(
                f"Customer {customer_id} not found", {"customer_id": customer_id}
            )
        return customer

    def save(self, customer: Customer) -> None:
        self.storage.save(self.table_name, customer.id, customer.to_dict())

    def _customer_from_dict(self, data: Dict) -> Customer:
        return Customer(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_code=data['customer_code'],
            first_name=data['first_name'],
            last_name=data['last_name'],
            credit_score=data.get('credit_score', 100),
            late_payment_count=data.get('late_payment_count', 0),
            late_payment_points=data.get('late_payment_points', 0),
        )


class CustomerManager:
    """
    Registers borrowers so loans have someone to reference
    """

    def __init__(
        self,
        storage: StorageInterface,
        customers: CustomerRepository,
        audit_trail: AuditTrail,
        default_credit_score: int = 100,
        max_credit_score: int = 100
    ):
        self.storage = storage
        self.customers = customers
        self.audit_trail = audit_trail
        self.default_credit_score = default_credit_score
        self.max_credit_score = max_credit_score
        self.logger = get_logger("lending.customers")

    def create_customer(
        self,
        first_name: str,
        last_name: str,
        credit_score: Optional[int] = None
    ) -> Customer:
        """
        Create a new customer with a fresh credit record

        Args:
            first_name: Customer's first name
            last_name: Customer's last name
            credit_score: Starting score; defaults to the configured score

        Returns:
            Created Customer with code CUST0001, CUST0002, ...
        """
        if not first_name or not last_name:
            raise ValidationError("First and last name are required")
        if credit_score is None:
            credit_score = self.default_credit_score
        if not 0 <= credit_score <= self.max_credit_score:
            raise ValidationError(
                f"Credit score must be between 0 and {self.max_credit_score}",
                {"credit_score": credit_score},
            )

        now = datetime.now(timezone.utc)
        sequence = self.storage.next_sequence("customer_code")
        customer = Customer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_code=f"CUST{sequence:04d}",
            first_name=first_name,
            last_name=last_name,
            credit_score=credit_score,
        )
        self.customers.save(customer)

        self.audit_trail.log_event(
            event_type=AuditEventType.CUSTOMER_CREATED,
            entity_type="customer",
            entity_id=customer.id,
            metadata={
                "customer_code": customer.customer_code,
                "credit_score": customer.credit_score,
            }
        )
        log_action(
            self.logger, "info", f"Customer created: {customer.customer_code}",
            action="create_customer", resource=f"customer:{customer.id}",
        )
        return customer
