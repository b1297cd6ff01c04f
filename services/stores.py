"""
Session-backed repositories.

Each store converts between SQLAlchemy rows and the dataclasses the
distribution engine computes on. Stores only stage changes on the
session; committing is the caller's job so several stores can share
one transaction.
"""
from datetime import datetime

from models import (
    Bet,
    BetStatus,
    DailyHistoryRecord,
    GlobalStats,
    Investor,
    InvestmentHistoryEntry,
    Role,
)
from services.accounts import HistoryItem, InvestorAccount, count_fee_eligible
from services.distribution import BetSlip, DayRecord
from services.errors import NotFound


class InvestorStore:
    def __init__(self, session):
        self.session = session

    def get_row(self, investor_id):
        investor = self.session.get(Investor, investor_id)
        if investor is None:
            raise NotFound(f"Investor {investor_id} not found.")
        return investor

    @staticmethod
    def to_account(investor):
        return InvestorAccount(
            id=investor.id,
            invested_amount=investor.invested_amount or 0.0,
            total_profit_earned=investor.total_profit_earned or 0.0,
            is_active=bool(investor.is_active),
            role=investor.role,
            current_gross_profit=investor.current_gross_profit or 0.0,
            current_net_profit=investor.current_net_profit or 0.0,
            platform_fee_paid=investor.platform_fee_paid or 0.0,
            history=tuple(
                HistoryItem(entry.ts, entry.amount, entry.type) for entry in investor.history_entries
            ),
        )

    def get(self, investor_id):
        return self.to_account(self.get_row(investor_id))

    def all(self):
        investors = self.session.query(Investor).order_by(Investor.id).all()
        return [self.to_account(investor) for investor in investors]

    def save(self, account):
        """Write balance fields back and append history entries the row does not have yet."""
        investor = self.get_row(account.id)
        known = len(investor.history_entries)

        investor.invested_amount = account.invested_amount
        investor.total_profit_earned = account.total_profit_earned
        investor.current_gross_profit = account.current_gross_profit
        investor.current_net_profit = account.current_net_profit
        investor.platform_fee_paid = account.platform_fee_paid
        investor.is_active = account.is_active

        for item in account.history[known:]:
            investor.history_entries.append(
                InvestmentHistoryEntry(ts=item.ts, amount=item.amount, type=item.type)
            )
        return investor

    def save_all(self, accounts):
        for account in accounts:
            self.save(account)


class BetStore:
    def __init__(self, session):
        self.session = session

    def get_row(self, bet_id):
        bet = self.session.get(Bet, bet_id)
        if bet is None:
            raise NotFound(f"Bet {bet_id} not found.")
        return bet

    @staticmethod
    def to_slip(bet):
        return BetSlip(
            id=bet.id,
            date=bet.date,
            stake=bet.stake,
            odds=bet.odds,
            status=bet.status,
            processed=bool(bet.processed_in_daily_history),
        )

    def unprocessed_for(self, day):
        """Resolved bets on ``day`` not yet folded into a daily record."""
        bets = (
            self.session.query(Bet)
            .filter(
                Bet.date == day,
                Bet.status != BetStatus.PENDING,
                Bet.processed_in_daily_history.is_(False),
            )
            .order_by(Bet.id)
            .all()
        )
        return [self.to_slip(bet) for bet in bets]

    def mark_processed(self, slips):
        for slip in slips:
            bet = self.get_row(slip.id)
            bet.processed_in_daily_history = True
            if bet.profit is None:
                bet.profit = slip.profit


class HistoryStore:
    def __init__(self, session):
        self.session = session

    @staticmethod
    def to_record(row):
        return DayRecord(
            day=row.day,
            date=row.date,
            daily_gross_profit=row.daily_gross_profit,
            turnover=row.turnover,
            num_bets=row.num_bets,
            total_bank_value_start=row.total_bank_value_start,
            total_bank_value_end=row.total_bank_value_end,
            distributed_net_profit=row.distributed_net_profit,
            collected_fees=row.collected_fees,
            unallocated_profit=row.unallocated_profit,
            fee_rate=row.fee_rate,
        )

    def latest(self):
        row = (
            self.session.query(DailyHistoryRecord)
            .order_by(DailyHistoryRecord.day.desc(), DailyHistoryRecord.id.desc())
            .first()
        )
        return self.to_record(row) if row is not None else None

    def for_date(self, day):
        return self.session.query(DailyHistoryRecord).filter(DailyHistoryRecord.date == day).first()

    def add(self, record, notes=None):
        row = DailyHistoryRecord(
            day=record.day,
            date=record.date,
            daily_gross_profit=record.daily_gross_profit,
            turnover=record.turnover,
            num_bets=record.num_bets,
            total_bank_value_start=record.total_bank_value_start,
            total_bank_value_end=record.total_bank_value_end,
            distributed_net_profit=record.distributed_net_profit,
            collected_fees=record.collected_fees,
            unallocated_profit=record.unallocated_profit,
            fee_rate=record.fee_rate,
            notes=notes,
        )
        self.session.add(row)
        return row


class StatsStore:
    def __init__(self, session):
        self.session = session

    def get(self):
        stats = self.session.get(GlobalStats, 1)
        if stats is None:
            stats = GlobalStats(
                id=1,
                total_invested=0.0,
                total_profit_distributed=0.0,
                total_fees_collected=0.0,
                unallocated_profit=0.0,
                active_investors=0,
                platform_fee_rate=0.0,
                current_turnover=0.0,
                total_bets_placed=0,
            )
            self.session.add(stats)
        return stats

    def refresh_investor_totals(self, fee_schedule):
        """Recompute total principal, fee-eligible investor count and the fee tier."""
        stats = self.get()
        investors = self.session.query(Investor).filter(Investor.role == Role.USER).all()
        stats.total_invested = sum(investor.invested_amount or 0.0 for investor in investors)
        stats.active_investors = count_fee_eligible(investors)
        stats.platform_fee_rate = fee_schedule.rate(stats.active_investors)
        return stats

    def apply_resolution(self, resolution):
        stats = self.get()
        record = resolution.record
        stats.total_profit_distributed += record.distributed_net_profit
        stats.total_fees_collected += record.collected_fees
        stats.unallocated_profit += record.unallocated_profit
        stats.current_turnover += record.turnover
        stats.total_bets_placed += record.num_bets
        stats.last_profit_update_time = datetime.utcnow()
        return stats
