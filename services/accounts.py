"""
Investor balance bookkeeping.

An ``InvestorAccount`` is the engine-side view of an investor row. Its
two balance components, principal (``invested_amount``) and cumulative
net profit (``total_profit_earned``), move independently and every
movement leaves an entry in the append-only ``history``.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Tuple

from models import HistoryEntryType, Role
from services.errors import InvalidAmount

# Entry types whose signed amounts make up the balance; FEE entries are
# informational because payouts are already recorded net of fees.
BALANCE_ENTRY_TYPES = (
    HistoryEntryType.DEPOSIT,
    HistoryEntryType.WITHDRAWAL,
    HistoryEntryType.PROFIT_PAYOUT,
)


@dataclass(frozen=True)
class HistoryItem:
    ts: datetime
    amount: float
    type: HistoryEntryType


@dataclass(frozen=True)
class InvestorAccount:
    id: int
    invested_amount: float = 0.0
    total_profit_earned: float = 0.0
    is_active: bool = True
    role: Role = Role.USER
    current_gross_profit: float = 0.0
    current_net_profit: float = 0.0
    platform_fee_paid: float = 0.0
    history: Tuple[HistoryItem, ...] = field(default_factory=tuple)

    @property
    def balance(self) -> float:
        return self.invested_amount + self.total_profit_earned

    @property
    def is_investor(self) -> bool:
        """Active ordinary investor; admins and deactivated users never share in profit."""
        return self.is_active and self.role == Role.USER

    def history_balance(self) -> float:
        return sum(item.amount for item in self.history if item.type in BALANCE_ENTRY_TYPES)

    def append(self, *items: HistoryItem) -> "InvestorAccount":
        return replace(self, history=self.history + tuple(items))


def fee_eligible(investor) -> bool:
    """Active ordinary investor holding a positive balance; works on accounts and ORM rows alike."""
    return bool(investor.is_active) and investor.role == Role.USER and investor.balance > 0


def count_fee_eligible(investors) -> int:
    """Investor count that selects the platform fee tier."""
    return sum(1 for investor in investors if fee_eligible(investor))


def _check_amount(amount: float) -> float:
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmount(f"Amount {amount!r} is not a number.")
    if amount != amount or amount <= 0 or amount == float("inf"):
        raise InvalidAmount(f"Amount must be positive, got {amount}.")
    return amount


def approve_deposit(account: InvestorAccount, amount: float,
                    now: Optional[datetime] = None) -> InvestorAccount:
    """Credit principal and record a DEPOSIT entry."""
    amount = _check_amount(amount)
    now = now or datetime.utcnow()
    updated = replace(account, invested_amount=account.invested_amount + amount)
    return updated.append(HistoryItem(now, amount, HistoryEntryType.DEPOSIT))


def approve_withdrawal(account: InvestorAccount, amount: float,
                       now: Optional[datetime] = None) -> InvestorAccount:
    """
    Remove principal, floored at zero.

    A withdrawal larger than the principal empties the principal and
    leaves ``total_profit_earned`` untouched. The WITHDRAWAL entry records
    the amount actually removed, so the history sum keeps matching the
    balance.
    """
    amount = _check_amount(amount)
    now = now or datetime.utcnow()
    removed = min(amount, max(account.invested_amount, 0.0))
    updated = replace(account, invested_amount=max(0.0, account.invested_amount - amount))
    return updated.append(HistoryItem(now, -removed, HistoryEntryType.WITHDRAWAL))
