"""
Standard financial flows for real estate operations.

A flow template names a typical financial event and its accounting
treatment: canonical category and type, the internal account money leaves
or enters, whether a property must be attached, and how often it recurs.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..schemas.transaction import TransactionCategory, TransactionType


class FlowKind(str, Enum):
    RENT_COLLECTION = "rent_collection"
    MAINTENANCE_EXPENSE = "maintenance_expense"
    UTILITY_PAYMENT = "utility_payment"
    OWNER_DISTRIBUTION = "owner_distribution"
    SECURITY_DEPOSIT = "security_deposit"
    SECURITY_DEPOSIT_RETURN = "security_deposit_return"
    LATE_FEE = "late_fee"
    TAX_PAYMENT = "tax_payment"
    INSURANCE_PAYMENT = "insurance_payment"


@dataclass(frozen=True)
class Recurrence:
    frequency: str  # daily, weekly, monthly, annually
    day_of_month: int | None = None


@dataclass(frozen=True)
class FinancialFlowTemplate:
    id: str
    name: str
    kind: FlowKind
    description: str
    category: TransactionCategory
    type: TransactionType
    source_account: str | None = None
    destination_account: str | None = None
    requires_property: bool = True
    recurrence: Recurrence | None = None

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "description": self.description,
            "category": self.category.value,
            "type": self.type.value,
            "source_account": self.source_account,
            "destination_account": self.destination_account,
            "requires_property": self.requires_property,
            "recurrence": (
                {
                    "frequency": self.recurrence.frequency,
                    "day_of_month": self.recurrence.day_of_month,
                }
                if self.recurrence
                else None
            ),
        }


OPERATING_ACCOUNT = "operating_account"
SECURITY_DEPOSIT_ACCOUNT = "security_deposit_account"

STANDARD_FLOWS: tuple[FinancialFlowTemplate, ...] = (
    FinancialFlowTemplate(
        id="flow_rent_collection",
        name="Rent Collection",
        kind=FlowKind.RENT_COLLECTION,
        description="Tenant rent payments collected and recorded",
        category=TransactionCategory.RENT,
        type=TransactionType.INCOME,
        destination_account=OPERATING_ACCOUNT,
        recurrence=Recurrence("monthly", day_of_month=1),
    ),
    FinancialFlowTemplate(
        id="flow_maintenance_expense",
        name="Maintenance Expense",
        kind=FlowKind.MAINTENANCE_EXPENSE,
        description="Payment for property maintenance and repairs",
        category=TransactionCategory.MAINTENANCE,
        type=TransactionType.EXPENSE,
        source_account=OPERATING_ACCOUNT,
    ),
    FinancialFlowTemplate(
        id="flow_utility_payment",
        name="Utility Payment",
        kind=FlowKind.UTILITY_PAYMENT,
        description="Payment for property utilities",
        category=TransactionCategory.UTILITIES,
        type=TransactionType.EXPENSE,
        source_account=OPERATING_ACCOUNT,
        recurrence=Recurrence("monthly"),
    ),
    FinancialFlowTemplate(
        id="flow_owner_distribution",
        name="Owner Distribution",
        kind=FlowKind.OWNER_DISTRIBUTION,
        description="Distribution of funds to property owners",
        category=TransactionCategory.OTHER,
        type=TransactionType.EXPENSE,
        source_account=OPERATING_ACCOUNT,
        recurrence=Recurrence("monthly", day_of_month=15),
    ),
    FinancialFlowTemplate(
        id="flow_security_deposit",
        name="Security Deposit",
        kind=FlowKind.SECURITY_DEPOSIT,
        description="Collection of security deposit from tenant",
        category=TransactionCategory.OTHER,
        type=TransactionType.INCOME,
        destination_account=SECURITY_DEPOSIT_ACCOUNT,
    ),
    FinancialFlowTemplate(
        id="flow_security_deposit_return",
        name="Security Deposit Return",
        kind=FlowKind.SECURITY_DEPOSIT_RETURN,
        description="Return of security deposit to tenant",
        category=TransactionCategory.OTHER,
        type=TransactionType.EXPENSE,
        source_account=SECURITY_DEPOSIT_ACCOUNT,
    ),
    FinancialFlowTemplate(
        id="flow_late_fee",
        name="Late Fee",
        kind=FlowKind.LATE_FEE,
        description="Late fee charged to tenant",
        category=TransactionCategory.RENT,
        type=TransactionType.INCOME,
        destination_account=OPERATING_ACCOUNT,
    ),
    FinancialFlowTemplate(
        id="flow_tax_payment",
        name="Property Tax Payment",
        kind=FlowKind.TAX_PAYMENT,
        description="Payment of property taxes",
        category=TransactionCategory.TAXES,
        type=TransactionType.EXPENSE,
        source_account=OPERATING_ACCOUNT,
        recurrence=Recurrence("annually"),
    ),
    FinancialFlowTemplate(
        id="flow_insurance_payment",
        name="Insurance Payment",
        kind=FlowKind.INSURANCE_PAYMENT,
        description="Payment for property insurance",
        category=TransactionCategory.INSURANCE,
        type=TransactionType.EXPENSE,
        source_account=OPERATING_ACCOUNT,
        recurrence=Recurrence("annually"),
    ),
)
