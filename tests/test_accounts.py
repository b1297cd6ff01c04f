from datetime import datetime

import pytest

from models import HistoryEntryType, Role
from services.accounts import InvestorAccount, approve_deposit, approve_withdrawal, count_fee_eligible
from services.errors import InvalidAmount

NOW = datetime(2024, 5, 1, 12, 0)


def test_deposit_credits_principal_and_history():
    account = approve_deposit(InvestorAccount(id=1), 3000, now=NOW)
    assert account.invested_amount == 3000
    assert account.history[-1].type == HistoryEntryType.DEPOSIT
    assert account.history[-1].amount == 3000
    assert account.history[-1].ts == NOW


def test_deposit_does_not_mutate_input():
    original = InvestorAccount(id=1, invested_amount=100)
    approve_deposit(original, 50)
    assert original.invested_amount == 100
    assert original.history == ()


def test_withdrawal_within_principal():
    account = approve_deposit(InvestorAccount(id=1), 3000)
    account = approve_withdrawal(account, 1000)
    assert account.invested_amount == 2000
    assert account.history[-1].amount == -1000
    assert account.history[-1].type == HistoryEntryType.WITHDRAWAL


def test_over_withdrawal_is_clamped_to_zero():
    account = approve_deposit(InvestorAccount(id=1, total_profit_earned=0.0), 3000)
    account = approve_withdrawal(account, 5000)
    assert account.invested_amount == 0
    # The entry records what was actually removed.
    assert account.history[-1].amount == -3000
    assert account.history_balance() == pytest.approx(account.balance)


def test_over_withdrawal_leaves_profit_untouched():
    account = InvestorAccount(id=1, invested_amount=1000, total_profit_earned=250)
    account = approve_withdrawal(account, 2000)
    assert account.invested_amount == 0
    assert account.total_profit_earned == 250


def test_principal_never_negative_over_any_sequence():
    account = InvestorAccount(id=1)
    for kind, amount in [('d', 100), ('w', 40), ('w', 500), ('w', 1), ('d', 30), ('w', 29.5), ('w', 10)]:
        if kind == 'd':
            account = approve_deposit(account, amount)
        else:
            account = approve_withdrawal(account, amount)
        assert account.invested_amount >= 0
        assert account.history_balance() == pytest.approx(account.balance)


@pytest.mark.parametrize('amount', [0, -5, 'abc', None, float('nan'), float('inf')])
def test_invalid_amounts(amount):
    with pytest.raises(InvalidAmount):
        approve_deposit(InvestorAccount(id=1), amount)
    with pytest.raises(InvalidAmount):
        approve_withdrawal(InvestorAccount(id=1, invested_amount=10), amount)


def test_fee_eligible_count_uses_balance_not_principal():
    accounts = [
        InvestorAccount(id=1, invested_amount=0, total_profit_earned=54.45),
        InvestorAccount(id=2, invested_amount=1000),
        InvestorAccount(id=3, invested_amount=100, total_profit_earned=-100),
        InvestorAccount(id=4, invested_amount=1000, is_active=False),
        InvestorAccount(id=5, invested_amount=1000, role=Role.ADMIN),
    ]
    assert count_fee_eligible(accounts) == 2
