from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
from enum import Enum

# This will be initialized in app.py
db = SQLAlchemy()

class Role(Enum):
    USER = 'USER'
    ADMIN = 'ADMIN'

class BetStatus(Enum):
    PENDING = 'PENDING'
    WON = 'WON'
    LOST = 'LOST'
    VOID = 'VOID'
    HALF_WON = 'HALF_WON'
    HALF_LOST = 'HALF_LOST'

class BetType(Enum):
    VALUE = 'VALUE'
    MIDDLE = 'MIDDLE'

class HistoryEntryType(Enum):
    DEPOSIT = 'DEPOSIT'
    WITHDRAWAL = 'WITHDRAWAL'
    PROFIT_PAYOUT = 'PROFIT_PAYOUT'
    FEE = 'FEE'

class RequestType(Enum):
    DEPOSIT = 'DEPOSIT'
    WITHDRAWAL = 'WITHDRAWAL'

class RequestStatus(Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'

class AuditAction(Enum):
    INVESTOR_CREATED = 'INVESTOR_CREATED'
    INVESTOR_UPDATED = 'INVESTOR_UPDATED'
    REQUEST_SUBMITTED = 'REQUEST_SUBMITTED'
    DEPOSIT_APPROVED = 'DEPOSIT_APPROVED'
    DEPOSIT_REJECTED = 'DEPOSIT_REJECTED'
    WITHDRAWAL_APPROVED = 'WITHDRAWAL_APPROVED'
    WITHDRAWAL_REJECTED = 'WITHDRAWAL_REJECTED'
    BET_PLACED = 'BET_PLACED'
    BET_UPDATED = 'BET_UPDATED'
    BET_GROUP_DELETED = 'BET_GROUP_DELETED'
    BETS_RESOLVED = 'BETS_RESOLVED'
    PROFIT_DISTRIBUTED = 'PROFIT_DISTRIBUTED'
    GOAL_CREATED = 'GOAL_CREATED'
    GOAL_COMPLETED = 'GOAL_COMPLETED'
    ALERT_CREATED = 'ALERT_CREATED'
    ALERT_TRIGGERED = 'ALERT_TRIGGERED'

class GoalType(Enum):
    TARGET_BALANCE = 'TARGET_BALANCE'
    TARGET_PROFIT_TOTAL = 'TARGET_PROFIT_TOTAL'

class GoalStatus(Enum):
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'

class AlertCondition(Enum):
    PROFIT_GAIN_PERCENT = 'PROFIT_GAIN_PERCENT'
    PROFIT_LOSS_PERCENT = 'PROFIT_LOSS_PERCENT'
    INVESTMENT_VALUE_REACHES_ABOVE = 'INVESTMENT_VALUE_REACHES_ABOVE'
    INVESTMENT_VALUE_DROPS_BELOW = 'INVESTMENT_VALUE_DROPS_BELOW'

class Investor(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    role = db.Column(db.Enum(Role), nullable=False, default=Role.USER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    invested_amount = db.Column(db.Float, nullable=False, default=0.0)
    total_profit_earned = db.Column(db.Float, nullable=False, default=0.0)
    # Last distribution cycle snapshot
    current_gross_profit = db.Column(db.Float, nullable=False, default=0.0)
    current_net_profit = db.Column(db.Float, nullable=False, default=0.0)
    # Cumulative
    platform_fee_paid = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    history_entries = db.relationship(
        'InvestmentHistoryEntry',
        backref='investor',
        lazy=True,
        order_by='InvestmentHistoryEntry.id',
    )

    @property
    def balance(self):
        return (self.invested_amount or 0.0) + (self.total_profit_earned or 0.0)

    def to_dict(self, with_history=False):
        data = {
            'id': self.id,
            'name': self.name,
            'role': self.role.value,
            'is_active': self.is_active,
            'invested_amount': self.invested_amount,
            'total_profit_earned': self.total_profit_earned,
            'current_gross_profit': self.current_gross_profit,
            'current_net_profit': self.current_net_profit,
            'platform_fee_paid': self.platform_fee_paid,
            'balance': self.balance,
        }
        if with_history:
            data['investment_history'] = [entry.to_dict() for entry in self.history_entries]
        return data

    def __repr__(self):
        return f'<Investor {self.name} {self.balance:.2f}>'

class InvestmentHistoryEntry(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    investor_id = db.Column(db.Integer, db.ForeignKey('investor.id'), nullable=False)
    ts = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    amount = db.Column(db.Float, nullable=False)
    type = db.Column(db.Enum(HistoryEntryType), nullable=False)

    def to_dict(self):
        return {'date': self.ts.isoformat(), 'amount': self.amount, 'type': self.type.value}

    def __repr__(self):
        return f'<InvestmentHistoryEntry {self.type.value} {self.amount:.2f}>'

class Bet(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.String(64), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    event = db.Column(db.String(200), nullable=False, default='')
    market = db.Column(db.String(200))
    selection = db.Column(db.String(200))
    odds = db.Column(db.Float, nullable=False)
    stake = db.Column(db.Float, nullable=False)
    bet_type = db.Column(db.Enum(BetType), nullable=False, default=BetType.VALUE)
    status = db.Column(db.Enum(BetStatus), nullable=False, default=BetStatus.PENDING)
    profit = db.Column(db.Float, nullable=True)
    processed_in_daily_history = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.String(500))
    created_by = db.Column(db.Integer, db.ForeignKey('investor.id'), nullable=True)
    placed_at = db.Column(db.DateTime, default=datetime.utcnow)
    resolved_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        from services.odds import calculate_payout, decimal_to_american

        return {
            'id': self.id,
            'group_id': self.group_id,
            'date': self.date.isoformat(),
            'event': self.event,
            'market': self.market,
            'selection': self.selection,
            'odds': self.odds,
            'american_odds': decimal_to_american(self.odds),
            'stake': self.stake,
            'potential_payout': calculate_payout(self.stake, self.odds),
            'bet_type': self.bet_type.value,
            'status': self.status.value,
            'profit': self.profit,
            'processed_in_daily_history': self.processed_in_daily_history,
            'notes': self.notes,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
        }

    def __repr__(self):
        return f'<Bet {self.stake:.2f}@{self.odds} {self.status.value}>'

class DailyHistoryRecord(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    day = db.Column(db.Integer, nullable=False)
    date = db.Column(db.Date, nullable=False, unique=True)
    daily_gross_profit = db.Column(db.Float, nullable=False)
    turnover = db.Column(db.Float, nullable=False)
    num_bets = db.Column(db.Integer, nullable=False)
    total_bank_value_start = db.Column(db.Float, nullable=False)
    total_bank_value_end = db.Column(db.Float, nullable=False)
    distributed_net_profit = db.Column(db.Float, nullable=False, default=0.0)
    collected_fees = db.Column(db.Float, nullable=False, default=0.0)
    unallocated_profit = db.Column(db.Float, nullable=False, default=0.0)
    fee_rate = db.Column(db.Float, nullable=False, default=0.0)
    notes = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'day': self.day,
            'date': self.date.isoformat(),
            'daily_gross_profit': self.daily_gross_profit,
            'turnover': self.turnover,
            'num_bets': self.num_bets,
            'total_bank_value_start': self.total_bank_value_start,
            'total_bank_value_end': self.total_bank_value_end,
            'distributed_net_profit': self.distributed_net_profit,
            'collected_fees': self.collected_fees,
            'unallocated_profit': self.unallocated_profit,
            'fee_rate': self.fee_rate,
            'notes': self.notes,
        }

    def __repr__(self):
        return f'<DailyHistoryRecord day {self.day} {self.date}>'

class GlobalStats(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    total_invested = db.Column(db.Float, nullable=False, default=0.0)
    total_profit_distributed = db.Column(db.Float, nullable=False, default=0.0)
    total_fees_collected = db.Column(db.Float, nullable=False, default=0.0)
    unallocated_profit = db.Column(db.Float, nullable=False, default=0.0)
    active_investors = db.Column(db.Integer, nullable=False, default=0)
    platform_fee_rate = db.Column(db.Float, nullable=False, default=0.0)
    current_turnover = db.Column(db.Float, nullable=False, default=0.0)
    total_bets_placed = db.Column(db.Integer, nullable=False, default=0)
    last_profit_update_time = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'total_invested': self.total_invested,
            'total_profit_distributed': self.total_profit_distributed,
            'total_fees_collected': self.total_fees_collected,
            'unallocated_profit': self.unallocated_profit,
            'active_investors': self.active_investors,
            'platform_fee_rate': self.platform_fee_rate,
            'current_turnover': self.current_turnover,
            'total_bets_placed': self.total_bets_placed,
            'last_profit_update_time': (
                self.last_profit_update_time.isoformat() if self.last_profit_update_time else None
            ),
        }

class FundRequest(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    investor_id = db.Column(db.Integer, db.ForeignKey('investor.id'), nullable=False)
    type = db.Column(db.Enum(RequestType), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    status = db.Column(db.Enum(RequestStatus), nullable=False, default=RequestStatus.PENDING)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    decided_at = db.Column(db.DateTime, nullable=True)
    decided_by = db.Column(db.Integer, db.ForeignKey('investor.id'), nullable=True)

    investor = db.relationship('Investor', foreign_keys=[investor_id],
                               backref=db.backref('fund_requests', lazy=True))

    def to_dict(self):
        return {
            'id': self.id,
            'investor_id': self.investor_id,
            'type': self.type.value,
            'amount': self.amount,
            'status': self.status.value,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'decided_at': self.decided_at.isoformat() if self.decided_at else None,
            'decided_by': self.decided_by,
        }

    def __repr__(self):
        return f'<FundRequest {self.type.value} {self.amount:.2f} {self.status.value}>'

class AuditLogEntry(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.Enum(AuditAction), nullable=False, index=True)
    admin_id = db.Column(db.Integer, nullable=True)
    investor_id = db.Column(db.Integer, nullable=True, index=True)
    amount = db.Column(db.Float, nullable=True)
    description = db.Column(db.String(500), nullable=False, default='')
    details = db.Column(db.JSON, nullable=False, default=dict)
    ts = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'action': self.action.value,
            'admin_id': self.admin_id,
            'investor_id': self.investor_id,
            'amount': self.amount,
            'description': self.description,
            'details': self.details,
            'ts': self.ts.isoformat() if self.ts else None,
        }

class InvestmentGoal(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    investor_id = db.Column(db.Integer, db.ForeignKey('investor.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    goal_type = db.Column(db.Enum(GoalType), nullable=False)
    target_amount = db.Column(db.Float, nullable=False)
    status = db.Column(db.Enum(GoalStatus), nullable=False, default=GoalStatus.ACTIVE)
    amount_at_creation = db.Column(db.Float, nullable=False, default=0.0)
    target_date = db.Column(db.Date, nullable=True)
    started_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'investor_id': self.investor_id,
            'name': self.name,
            'goal_type': self.goal_type.value,
            'target_amount': self.target_amount,
            'status': self.status.value,
            'amount_at_creation': self.amount_at_creation,
            'target_date': self.target_date.isoformat() if self.target_date else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }

class InvestmentAlert(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    investor_id = db.Column(db.Integer, db.ForeignKey('investor.id'), nullable=False)
    condition = db.Column(db.Enum(AlertCondition), nullable=False)
    threshold = db.Column(db.Float, nullable=False)
    reference_invested_amount = db.Column(db.Float, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_triggered_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'investor_id': self.investor_id,
            'condition': self.condition.value,
            'threshold': self.threshold,
            'reference_invested_amount': self.reference_invested_amount,
            'is_active': self.is_active,
            'last_triggered_at': self.last_triggered_at.isoformat() if self.last_triggered_at else None,
        }
