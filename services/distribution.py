"""
Daily profit distribution.

``resolve_day`` folds one accounting day's resolved bets into a new
daily history record and apportions the day's gross result across the
active investors by balance share. Positive days carry a tiered
platform fee; losses are absorbed in full, without fee.

The function is pure: it never mutates its inputs and returns every
updated collection in a ``DayResolution``, which the ledger service
then commits in a single transaction.
"""
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from typing import Callable, Iterable, Optional, Sequence, Tuple

from models import BetStatus, HistoryEntryType
from services.accounts import HistoryItem, InvestorAccount, count_fee_eligible
from services.errors import (
    BetAlreadyProcessed,
    DateMismatch,
    DayAlreadyClosed,
    NoInvestors,
    PendingBetIncluded,
)
from services.events import ProfitDistributed
from services.fees import fee_rate
from services.odds import compute_bet_profit


@dataclass(frozen=True)
class BetSlip:
    id: int
    date: date
    stake: float
    odds: float
    status: BetStatus
    processed: bool = False

    @property
    def profit(self) -> Optional[float]:
        return compute_bet_profit(self.stake, self.odds, self.status)


@dataclass(frozen=True)
class DayRecord:
    day: int
    date: date
    daily_gross_profit: float
    turnover: float
    num_bets: int
    total_bank_value_start: float
    total_bank_value_end: float
    distributed_net_profit: float = 0.0
    collected_fees: float = 0.0
    unallocated_profit: float = 0.0
    fee_rate: float = 0.0


@dataclass(frozen=True)
class Payout:
    investor_id: int
    share: float
    gross: float
    fee: float
    net: float


@dataclass(frozen=True)
class DayResolution:
    record: DayRecord
    investors: Tuple[InvestorAccount, ...]
    bets: Tuple[BetSlip, ...]
    payouts: Tuple[Payout, ...]
    events: Tuple[ProfitDistributed, ...]

    @property
    def distributed_total(self) -> float:
        return self.record.distributed_net_profit

    @property
    def fees_total(self) -> float:
        return self.record.collected_fees

    @property
    def turnover(self) -> float:
        return self.record.turnover


def _check_bets(day: date, bets: Sequence[BetSlip]) -> None:
    for bet in bets:
        if bet.status == BetStatus.PENDING:
            raise PendingBetIncluded(f"Bet {bet.id} is still PENDING.")
        if bet.date != day:
            raise DateMismatch(f"Bet {bet.id} is dated {bet.date}, not {day}.")
        if bet.processed:
            raise BetAlreadyProcessed(f"Bet {bet.id} was already folded into a daily record.")


def balance_shares(investors: Iterable[InvestorAccount]) -> dict:
    """
    Fraction of pooled balance held by each active investor.

    Investors with zero or negative balance get a zero share and are
    left out of the denominator. Returns an empty mapping when nobody
    holds a positive balance.
    """
    participants = [account for account in investors if account.is_investor]
    total = sum(account.balance for account in participants if account.balance > 0)
    if total <= 0:
        return {}
    return {
        account.id: (account.balance / total if account.balance > 0 else 0.0)
        for account in participants
    }


def resolve_day(
    day: date,
    investors: Sequence[InvestorAccount],
    bets: Sequence[BetSlip],
    prior_record: Optional[DayRecord] = None,
    fee_policy: Callable[[int], float] = fee_rate,
    total_invested: Optional[float] = None,
    active_investors: Optional[int] = None,
) -> Optional[DayResolution]:
    """
    Resolve one accounting day.

    Returns ``None`` when there is nothing to resolve. Raises a
    ``PreconditionViolation`` subclass, before computing anything, when
    the investor list is empty or any bet is pending, already processed
    or dated differently from ``day``.

    ``prior_record`` is the most recent record in day order. Records
    chain from it even when ``day`` is an earlier date whose bets were
    still pending when later days closed. ``total_invested`` seeds the
    bank value of the very first record.
    ``active_investors`` overrides the count that selects the fee tier.
    """
    if not bets:
        return None
    if not investors:
        raise NoInvestors()
    _check_bets(day, bets)
    if prior_record is not None and prior_record.date == day:
        raise DayAlreadyClosed(f"{day} is already closed as day {prior_record.day}.")

    daily_gross_profit = sum(bet.profit for bet in bets)
    turnover = sum(bet.stake for bet in bets)

    if prior_record is not None:
        bank_start = prior_record.total_bank_value_end
    elif total_invested is not None:
        bank_start = total_invested
    else:
        bank_start = sum(account.invested_amount for account in investors if account.is_investor)

    shares = balance_shares(investors)
    rate_now = fee_policy(count_fee_eligible(investors) if active_investors is None else active_investors)
    paid_at = datetime.combine(day, time.min)

    updated_investors = []
    payouts = []
    for account in investors:
        if not account.is_investor:
            updated_investors.append(account)
            continue

        share = shares.get(account.id, 0.0)
        gross_share = daily_gross_profit * share
        fee_share = gross_share * rate_now if daily_gross_profit > 0 else 0.0
        net_share = gross_share - fee_share

        entries = [HistoryItem(paid_at, net_share, HistoryEntryType.PROFIT_PAYOUT)]
        if fee_share > 0:
            entries.append(HistoryItem(paid_at, -fee_share, HistoryEntryType.FEE))

        updated = replace(
            account,
            total_profit_earned=account.total_profit_earned + net_share,
            current_gross_profit=gross_share,
            current_net_profit=net_share,
            platform_fee_paid=account.platform_fee_paid + fee_share,
        ).append(*entries)
        updated_investors.append(updated)
        payouts.append(Payout(account.id, share, gross_share, fee_share, net_share))

    distributed = sum(payout.net for payout in payouts)
    collected = sum(payout.fee for payout in payouts)
    unallocated = daily_gross_profit if not shares else 0.0

    record = DayRecord(
        day=(prior_record.day if prior_record is not None else 0) + 1,
        date=day,
        daily_gross_profit=daily_gross_profit,
        turnover=turnover,
        num_bets=len(bets),
        total_bank_value_start=bank_start,
        total_bank_value_end=bank_start + daily_gross_profit,
        distributed_net_profit=distributed,
        collected_fees=collected,
        unallocated_profit=unallocated,
        fee_rate=rate_now,
    )

    return DayResolution(
        record=record,
        investors=tuple(updated_investors),
        bets=tuple(replace(bet, processed=True) for bet in bets),
        payouts=tuple(payouts),
        events=tuple(ProfitDistributed(p.investor_id, day, p.net) for p in payouts),
    )
