"""
Ledger service: the only writer of investor balances, bets and daily
history.

Every operation reads the collections it needs, computes the change
with the pure helpers in ``services.accounts`` / ``services.distribution``
and commits all staged rows in one transaction under a process-wide
lock. Any exception rolls the session back, so a failed operation
leaves nothing half-applied.
"""
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime

from models import (
    AuditAction,
    Bet,
    BetStatus,
    BetType,
    FundRequest,
    Investor,
    RequestStatus,
    RequestType,
    Role,
)
from services import audit, distribution
from services.accounts import approve_deposit, approve_withdrawal
from services.errors import (
    BetAlreadyProcessed,
    DayAlreadyClosed,
    Forbidden,
    InvalidAmount,
    InvalidInput,
    NotFound,
    RequestAlreadyDecided,
)
from services.events import publish
from services.fees import FeeSchedule
from services.odds import american_to_decimal, compute_bet_profit
from services.stores import BetStore, HistoryStore, InvestorStore, StatsStore

logger = logging.getLogger(__name__)

# Coarse lock: deposits, withdrawals, bet edits and day resolution all
# read-then-write the investor collection and must not interleave.
_ledger_lock = threading.RLock()

BET_UPDATABLE_FIELDS = ('status', 'odds', 'stake', 'notes', 'date', 'event', 'market', 'selection')


def parse_day(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidInput(f"Invalid accounting date {value!r}, expected YYYY-MM-DD.")


def _positive(value, label):
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidAmount(f"{label} must be a number.")
    if not value > 0:
        raise InvalidAmount(f"{label} must be positive.")
    return value


def _decimal_odds(data):
    if data.get('odds') is not None:
        odds = _positive(data['odds'], 'Odds')
    elif data.get('american_odds') is not None:
        try:
            odds = american_to_decimal(int(data['american_odds']))
        except ValueError as e:
            raise InvalidInput(str(e))
    else:
        raise InvalidInput('Odds are required.')
    if odds <= 1.0:
        raise InvalidAmount('Decimal odds must be greater than 1.0.')
    return odds


class LedgerService:
    def __init__(self, session, fee_schedule=None):
        self.session = session
        self.fee_schedule = fee_schedule or FeeSchedule()
        self.investors = InvestorStore(session)
        self.bets = BetStore(session)
        self.history = HistoryStore(session)
        self.stats = StatsStore(session)

    @contextmanager
    def _transaction(self):
        with _ledger_lock:
            try:
                yield
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

    def _require_admin(self, admin_id):
        admin = self.session.get(Investor, admin_id) if admin_id is not None else None
        if admin is None or admin.role != Role.ADMIN or not admin.is_active:
            raise Forbidden()
        return admin

    # Investors

    def create_investor(self, name, admin_id, role=Role.USER):
        name = (name or '').strip()
        if not name:
            raise InvalidInput('Name cannot be empty.')
        try:
            role = Role(role)
        except ValueError:
            raise InvalidInput(f"Unknown role {role!r}.")
        with self._transaction():
            self._require_admin(admin_id)
            investor = Investor(
                name=name,
                role=role,
                is_active=True,
                invested_amount=0.0,
                total_profit_earned=0.0,
                current_gross_profit=0.0,
                current_net_profit=0.0,
                platform_fee_paid=0.0,
            )
            self.session.add(investor)
            self.session.flush()
            audit.record(self.session, AuditAction.INVESTOR_CREATED,
                         f'Investor {name} created.', admin_id=admin_id, investor_id=investor.id,
                         role=investor.role.value)
        logger.info(f"[Investors] Created {investor.role.value} {investor.id} ({name})")
        return investor

    def set_investor_active(self, investor_id, is_active, admin_id):
        with self._transaction():
            self._require_admin(admin_id)
            investor = self.investors.get_row(investor_id)
            before = investor.is_active
            investor.is_active = bool(is_active)
            self.stats.refresh_investor_totals(self.fee_schedule)
            audit.record(self.session, AuditAction.INVESTOR_UPDATED,
                         f'Investor {investor.name} {"activated" if is_active else "deactivated"}.',
                         admin_id=admin_id, investor_id=investor.id,
                         changed_fields=[{'field': 'is_active', 'old': before, 'new': investor.is_active}])
        return investor

    # Bets

    def _new_bet(self, data, group_id, bet_type, admin_id):
        return Bet(
            group_id=group_id,
            date=parse_day(data.get('date')),
            event=data.get('event') or '',
            market=data.get('market'),
            selection=data.get('selection'),
            odds=_decimal_odds(data),
            stake=_positive(data.get('stake'), 'Stake'),
            bet_type=bet_type,
            status=BetStatus.PENDING,
            profit=None,
            processed_in_daily_history=False,
            notes=data.get('notes'),
            created_by=admin_id,
        )

    def place_bet(self, data, admin_id):
        """Place a single PENDING value bet in its own group."""
        with self._transaction():
            self._require_admin(admin_id)
            bet = self._new_bet(data, uuid.uuid4().hex, BetType.VALUE, admin_id)
            self.session.add(bet)
            self.session.flush()
            audit.record(self.session, AuditAction.BET_PLACED,
                         f'Value bet placed for {bet.event}.', admin_id=admin_id, amount=bet.stake,
                         bet_id=bet.id, group_id=bet.group_id, selection=bet.selection,
                         odds=bet.odds, stake=bet.stake)
        logger.info(f"[Bets] Placed bet {bet.id} ({bet.stake:.2f} @ {bet.odds}) for {bet.date}")
        return bet

    def place_bet_group(self, value_data, middle_data, admin_id):
        """Place a value bet and its middle bet under one shared group id."""
        with self._transaction():
            self._require_admin(admin_id)
            group_id = uuid.uuid4().hex
            value_bet = self._new_bet(value_data, group_id, BetType.VALUE, admin_id)
            middle_bet = self._new_bet(middle_data, group_id, BetType.MIDDLE, admin_id)
            self.session.add_all([value_bet, middle_bet])
            self.session.flush()
            audit.record(self.session, AuditAction.BET_PLACED,
                         f'Value + middle group placed for {value_bet.event}.', admin_id=admin_id,
                         amount=value_bet.stake + middle_bet.stake, group_id=group_id,
                         bet_ids=[value_bet.id, middle_bet.id])
        logger.info(f"[Bets] Placed group {group_id} (bets {value_bet.id}, {middle_bet.id})")
        return value_bet, middle_bet

    def update_bet(self, bet_id, updates, admin_id):
        """
        Apply an admin correction to a bet that is not yet processed.

        Leaving PENDING stamps ``resolved_at``; returning to PENDING
        clears profit and ``resolved_at``. Profit is recomputed from
        stake, odds and status for every resolved bet.
        """
        with self._transaction():
            self._require_admin(admin_id)
            bet = self.bets.get_row(bet_id)
            if bet.processed_in_daily_history:
                raise BetAlreadyProcessed(f"Bet {bet_id} is part of a closed day and cannot change.")

            old_status = bet.status
            before = {field: getattr(bet, field) for field in BET_UPDATABLE_FIELDS}

            if 'status' in updates:
                try:
                    bet.status = BetStatus(updates['status'])
                except ValueError:
                    raise InvalidInput(f"Unknown bet status {updates['status']!r}.")
            if 'odds' in updates or 'american_odds' in updates:
                bet.odds = _decimal_odds(updates)
            if 'stake' in updates:
                bet.stake = _positive(updates['stake'], 'Stake')
            if 'date' in updates:
                bet.date = parse_day(updates['date'])
            for field in ('notes', 'event', 'market', 'selection'):
                if field in updates:
                    setattr(bet, field, updates[field])

            if bet.status == BetStatus.PENDING:
                bet.profit = None
                bet.resolved_at = None
            else:
                bet.profit = compute_bet_profit(bet.stake, bet.odds, bet.status)
                if old_status == BetStatus.PENDING:
                    bet.resolved_at = datetime.utcnow()

            changes = []
            for field, old in before.items():
                new = getattr(bet, field)
                if old != new:
                    changes.append({'field': field, 'old': _jsonable(old), 'new': _jsonable(new)})
            if changes:
                audit.record(self.session, AuditAction.BET_UPDATED,
                             f'Bet {bet.id} for {bet.event} updated.', admin_id=admin_id,
                             bet_id=bet.id, group_id=bet.group_id, changed_fields=changes)
        return bet

    def delete_bet_group(self, group_id, admin_id):
        with self._transaction():
            self._require_admin(admin_id)
            bets = self.session.query(Bet).filter(Bet.group_id == group_id).all()
            if not bets:
                raise NotFound(f"Bet group {group_id} not found.")
            if any(bet.processed_in_daily_history for bet in bets):
                raise BetAlreadyProcessed(f"Bet group {group_id} is part of a closed day.")
            deleted = [{'id': bet.id, 'selection': bet.selection, 'stake': bet.stake} for bet in bets]
            for bet in bets:
                self.session.delete(bet)
            audit.record(self.session, AuditAction.BET_GROUP_DELETED,
                         f'Bet group {group_id} deleted.', admin_id=admin_id,
                         group_id=group_id, deleted=deleted)
        return len(deleted)

    # Deposits and withdrawals

    def submit_request(self, investor_id, request_type, amount):
        amount = _positive(amount, 'Amount')
        try:
            request_type = RequestType(request_type)
        except ValueError:
            raise InvalidInput(f"Unknown request type {request_type!r}.")
        with self._transaction():
            investor = self.investors.get_row(investor_id)
            fund_request = FundRequest(investor_id=investor.id, type=request_type,
                                       amount=amount, status=RequestStatus.PENDING)
            self.session.add(fund_request)
            self.session.flush()
            audit.record(self.session, AuditAction.REQUEST_SUBMITTED,
                         f'{request_type.value.title()} request of {amount:.2f} by {investor.name}.',
                         investor_id=investor.id, amount=amount, request_id=fund_request.id)
        return fund_request

    def approve_request(self, request_id, admin_id):
        return self._decide_request(request_id, RequestStatus.APPROVED, admin_id)

    def reject_request(self, request_id, admin_id):
        return self._decide_request(request_id, RequestStatus.REJECTED, admin_id)

    def _decide_request(self, request_id, decision, admin_id):
        with self._transaction():
            self._require_admin(admin_id)
            fund_request = self.session.get(FundRequest, request_id)
            if fund_request is None:
                raise NotFound(f"Request {request_id} not found.")
            if fund_request.status == decision:
                # Repeated decision for the same request id is a no-op.
                return fund_request
            if fund_request.status != RequestStatus.PENDING:
                raise RequestAlreadyDecided(
                    f"Request {request_id} is already {fund_request.status.value}."
                )

            before = self.investors.get(fund_request.investor_id)
            after = before
            if decision == RequestStatus.APPROVED:
                if fund_request.type == RequestType.DEPOSIT:
                    after = approve_deposit(before, fund_request.amount)
                else:
                    after = approve_withdrawal(before, fund_request.amount)
                self.investors.save(after)

            fund_request.status = decision
            fund_request.decided_at = datetime.utcnow()
            fund_request.decided_by = admin_id
            self.stats.refresh_investor_totals(self.fee_schedule)

            action = {
                (RequestType.DEPOSIT, RequestStatus.APPROVED): AuditAction.DEPOSIT_APPROVED,
                (RequestType.DEPOSIT, RequestStatus.REJECTED): AuditAction.DEPOSIT_REJECTED,
                (RequestType.WITHDRAWAL, RequestStatus.APPROVED): AuditAction.WITHDRAWAL_APPROVED,
                (RequestType.WITHDRAWAL, RequestStatus.REJECTED): AuditAction.WITHDRAWAL_REJECTED,
            }[(fund_request.type, decision)]
            audit.record(
                self.session, action,
                f'{fund_request.type.value.title()} request {fund_request.id} '
                f'({fund_request.amount:.2f}) {decision.value.lower()}.',
                admin_id=admin_id, investor_id=fund_request.investor_id, amount=fund_request.amount,
                request_id=fund_request.id,
                requested_amount=fund_request.amount,
                applied_amount=abs(after.invested_amount - before.invested_amount),
                before={'invested_amount': before.invested_amount,
                        'total_profit_earned': before.total_profit_earned},
                after={'invested_amount': after.invested_amount,
                       'total_profit_earned': after.total_profit_earned},
            )
        logger.info(
            f"[Requests] {fund_request.type.value} {fund_request.id} {decision.value} "
            f"for investor {fund_request.investor_id}"
        )
        return fund_request

    # Day resolution

    def resolve_day(self, day, admin_id):
        """
        Close one accounting day and distribute its result.

        Returns the ``DayResolution`` or ``None`` when the day has no
        unprocessed resolved bets. ProfitDistributed events go out only
        after the transaction commits.
        """
        day = parse_day(day)
        with self._transaction():
            self._require_admin(admin_id)
            slips = self.bets.unprocessed_for(day)
            if not slips:
                logger.info(f"[Resolve] Nothing to resolve for {day}")
                return None

            closed = self.history.for_date(day)
            if closed is not None:
                raise DayAlreadyClosed(f"{day} is already closed as day {closed.day}.")

            stats = self.stats.refresh_investor_totals(self.fee_schedule)
            resolution = distribution.resolve_day(
                day,
                self.investors.all(),
                slips,
                prior_record=self.history.latest(),
                fee_policy=self.fee_schedule,
                total_invested=stats.total_invested,
                active_investors=stats.active_investors,
            )
            record = resolution.record

            self.investors.save_all(resolution.investors)
            self.bets.mark_processed(resolution.bets)
            self.history.add(record, notes='Generated from resolved bets.')
            self.stats.apply_resolution(resolution)
            self.stats.refresh_investor_totals(self.fee_schedule)

            audit.record(self.session, AuditAction.BETS_RESOLVED,
                         f'{record.num_bets} bets for {day} processed. Gross profit: '
                         f'{record.daily_gross_profit:.2f}.',
                         admin_id=admin_id, amount=record.daily_gross_profit,
                         date=day.isoformat(), num_bets=record.num_bets,
                         bet_ids=[slip.id for slip in resolution.bets])
            audit.record(self.session, AuditAction.PROFIT_DISTRIBUTED,
                         f'Profit distributed for {day}. Net: {record.distributed_net_profit:.2f}, '
                         f'fees: {record.collected_fees:.2f}.',
                         admin_id=admin_id, amount=record.distributed_net_profit,
                         date=day.isoformat(),
                         total_distributed_net_profit=record.distributed_net_profit,
                         total_collected_fees=record.collected_fees,
                         unallocated_profit=record.unallocated_profit,
                         fee_rate=record.fee_rate)

        logger.info(
            f"[Resolve] Day {record.day} ({day}): gross {record.daily_gross_profit:.2f}, "
            f"net {record.distributed_net_profit:.2f}, fees {record.collected_fees:.2f}"
        )
        if record.unallocated_profit:
            logger.warning(
                f"[Resolve] {record.unallocated_profit:.2f} left unallocated on {day}: "
                f"no investor holds a positive balance"
            )
        publish(resolution.events, sender=self)
        return resolution


def _jsonable(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, 'value'):
        return value.value
    return value
