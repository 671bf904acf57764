"""SQLAlchemy ORM models.  Importing this package registers every table."""

from guardrail_kernel.models.guardrail import GuardrailModel
from guardrail_kernel.models.journal import JournalEntryModel
from guardrail_kernel.models.money_map import (
    AccountTransactionModel,
    FinancialAccountModel,
    MoneyMapNodeModel,
)
from guardrail_kernel.models.movement import MoneyMovementModel
from guardrail_kernel.models.planning import BudgetModel, IncomeStreamModel, SavingsGoalModel
from guardrail_kernel.models.position import InvestmentPositionModel

__all__ = [
    "AccountTransactionModel",
    "BudgetModel",
    "FinancialAccountModel",
    "GuardrailModel",
    "IncomeStreamModel",
    "InvestmentPositionModel",
    "JournalEntryModel",
    "MoneyMapNodeModel",
    "MoneyMovementModel",
    "SavingsGoalModel",
]
