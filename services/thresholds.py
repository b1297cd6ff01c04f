"""
Goal and alert evaluation against investor balances.

Runs as a receiver of ``profit_distributed``: whenever an investor is
credited, their active goals are checked for completion and their active
alerts for triggering.
"""
import logging
from datetime import datetime, timedelta

from flask import current_app

from models import (
    AlertCondition,
    AuditAction,
    GoalStatus,
    GoalType,
    Investor,
    InvestmentAlert,
    InvestmentGoal,
    Role,
    db,
)
from services import audit
from services.errors import InvalidAmount, InvalidInput, NotFound
from services.events import profit_distributed
from services.ledger import parse_day

logger = logging.getLogger(__name__)


def goal_value(goal_type, invested_amount, total_profit_earned):
    if GoalType(goal_type) == GoalType.TARGET_BALANCE:
        return invested_amount + total_profit_earned
    return total_profit_earned


def goal_reached(goal_type, target_amount, invested_amount, total_profit_earned):
    return goal_value(goal_type, invested_amount, total_profit_earned) >= target_amount


def evaluate_alert(condition, threshold, invested_amount, total_profit_earned, reference_invested_amount=None):
    """
    Returns the alert message if the condition holds, otherwise None.

    Percentage conditions compare profit against the reference invested
    amount, falling back to the current principal when no positive
    reference was stored.
    """
    condition = AlertCondition(condition)
    current_value = invested_amount + total_profit_earned
    if reference_invested_amount is not None and reference_invested_amount > 0:
        reference = reference_invested_amount
    else:
        reference = max(invested_amount, 0.0)

    if condition == AlertCondition.PROFIT_GAIN_PERCENT:
        if reference > 0 and total_profit_earned > 0:
            percent = total_profit_earned / reference * 100
            if percent >= threshold:
                return (f"Profit reached {percent:.2f}% of the reference investment {reference:.2f} "
                        f"(threshold {threshold}%). Current profit: {total_profit_earned:.2f}.")
    elif condition == AlertCondition.PROFIT_LOSS_PERCENT:
        if reference > 0 and total_profit_earned < 0:
            percent = abs(total_profit_earned) / reference * 100
            if percent >= threshold:
                return (f"Loss reached {percent:.2f}% of the reference investment {reference:.2f} "
                        f"(threshold {threshold}%). Current loss: {total_profit_earned:.2f}.")
    elif condition == AlertCondition.INVESTMENT_VALUE_REACHES_ABOVE:
        if current_value >= threshold:
            return f"Investment value {current_value:.2f} reached or passed {threshold:.2f}."
    elif condition == AlertCondition.INVESTMENT_VALUE_DROPS_BELOW:
        if current_value <= threshold:
            return f"Investment value {current_value:.2f} dropped to or below {threshold:.2f}."
    return None


class ThresholdMonitor:
    def __init__(self, session, cooldown=timedelta(hours=24)):
        self.session = session
        self.cooldown = cooldown

    def _investor(self, investor_id):
        investor = self.session.get(Investor, investor_id)
        if investor is None:
            raise NotFound(f"Investor {investor_id} not found.")
        return investor

    def create_goal(self, investor_id, name, goal_type, target_amount, target_date=None):
        investor = self._investor(investor_id)
        name = (name or '').strip()
        if not name:
            raise InvalidInput('Goal name cannot be empty.')
        try:
            goal_type = GoalType(goal_type)
        except ValueError:
            raise InvalidInput(f"Unknown goal type {goal_type!r}.")
        try:
            target_amount = float(target_amount)
        except (TypeError, ValueError):
            raise InvalidAmount('Target amount must be a number.')

        goal = InvestmentGoal(
            investor_id=investor.id,
            name=name,
            goal_type=goal_type,
            target_amount=target_amount,
            status=GoalStatus.ACTIVE,
            amount_at_creation=goal_value(goal_type, investor.invested_amount, investor.total_profit_earned),
            target_date=parse_day(target_date) if target_date else None,
        )
        self.session.add(goal)
        self.session.flush()
        audit.record(self.session, AuditAction.GOAL_CREATED, f'Goal "{name}" created.',
                     investor_id=investor.id, amount=target_amount, goal_id=goal.id,
                     goal_type=goal_type.value)
        self.session.commit()
        return goal

    def create_alert(self, investor_id, condition, threshold, reference_invested_amount=None):
        investor = self._investor(investor_id)
        try:
            condition = AlertCondition(condition)
        except ValueError:
            raise InvalidInput(f"Unknown alert condition {condition!r}.")
        try:
            threshold = float(threshold)
            reference = float(reference_invested_amount) if reference_invested_amount is not None else None
        except (TypeError, ValueError):
            raise InvalidAmount('Alert threshold and reference must be numbers.')

        alert = InvestmentAlert(
            investor_id=investor.id,
            condition=condition,
            threshold=threshold,
            reference_invested_amount=reference,
            is_active=True,
        )
        self.session.add(alert)
        self.session.flush()
        audit.record(self.session, AuditAction.ALERT_CREATED, f'Alert {condition.value} created.',
                     investor_id=investor.id, alert_id=alert.id, threshold=threshold)
        self.session.commit()
        return alert

    def check_investor(self, investor_id, now=None):
        """Complete reached goals and fire due alerts. Returns (completed goals, triggered alerts)."""
        now = now or datetime.utcnow()
        investor = self._investor(investor_id)
        if investor.role != Role.USER:
            return [], []

        invested = investor.invested_amount or 0.0
        profit = investor.total_profit_earned or 0.0

        completed = []
        goals = (
            self.session.query(InvestmentGoal)
            .filter(InvestmentGoal.investor_id == investor.id, InvestmentGoal.status == GoalStatus.ACTIVE)
            .all()
        )
        for goal in goals:
            if goal_reached(goal.goal_type, goal.target_amount, invested, profit):
                goal.status = GoalStatus.COMPLETED
                goal.completed_at = now
                completed.append(goal)
                audit.record(self.session, AuditAction.GOAL_COMPLETED, f'Goal "{goal.name}" reached.',
                             investor_id=investor.id, amount=goal.target_amount, goal_id=goal.id,
                             completed_amount=goal_value(goal.goal_type, invested, profit))

        triggered = []
        if investor.is_active:
            alerts = (
                self.session.query(InvestmentAlert)
                .filter(InvestmentAlert.investor_id == investor.id, InvestmentAlert.is_active.is_(True))
                .all()
            )
            for alert in alerts:
                if alert.last_triggered_at and now - alert.last_triggered_at < self.cooldown:
                    continue
                message = evaluate_alert(alert.condition, alert.threshold, invested, profit,
                                         alert.reference_invested_amount)
                if message is None:
                    continue
                alert.last_triggered_at = now
                triggered.append(alert)
                audit.record(self.session, AuditAction.ALERT_TRIGGERED, message,
                             investor_id=investor.id, alert_id=alert.id,
                             triggered_value=invested + profit, profit=profit)

        if completed or triggered:
            self.session.commit()
            logger.info(
                f"[Thresholds] Investor {investor.id}: {len(completed)} goals completed, "
                f"{len(triggered)} alerts triggered"
            )
        return completed, triggered


def on_profit_distributed(sender, event):
    """Receiver for ``profit_distributed``; a failed check is rolled back and logged."""
    cooldown = timedelta(hours=current_app.config.get('ALERT_COOLDOWN_HOURS', 24))
    try:
        ThresholdMonitor(db.session, cooldown=cooldown).check_investor(event.investor_id)
    except Exception:
        db.session.rollback()
        logger.exception(f"[Thresholds] Check failed for investor {event.investor_id} on {event.date}")


def connect_threshold_monitor():
    profit_distributed.connect(on_profit_distributed)
