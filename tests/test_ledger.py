from datetime import date

import pytest

from models import (
    db,
    AuditAction,
    AuditLogEntry,
    Bet,
    BetStatus,
    BetType,
    DailyHistoryRecord,
    GlobalStats,
    HistoryEntryType,
    Investor,
    RequestStatus,
)
from services.errors import (
    BetAlreadyProcessed,
    DayAlreadyClosed,
    Forbidden,
    InvalidAmount,
    InvalidInput,
    NotFound,
    RequestAlreadyDecided,
)
from services.stores import HistoryStore
from services.thresholds import ThresholdMonitor

DAY = '2024-05-01'


def bet_data(**overrides):
    data = {'date': DAY, 'event': 'Team A - Team B', 'market': '1X2', 'selection': 'Team A',
            'odds': 2.1, 'stake': 100}
    data.update(overrides)
    return data


def place_resolved(service, admin, status='WON', **overrides):
    bet = service.place_bet(bet_data(**overrides), admin.id)
    return service.update_bet(bet.id, {'status': status}, admin.id)


@pytest.fixture
def pool(make_investor):
    """Investors A (3000) and B (2000)."""
    return make_investor('A', 3000), make_investor('B', 2000)


# Deposits and withdrawals

def test_deposit_approval_updates_balance_and_stats(service, admin, make_investor):
    investor = make_investor('A')
    fund_request = service.submit_request(investor.id, 'DEPOSIT', 1500)
    assert fund_request.status == RequestStatus.PENDING
    assert db.session.get(Investor, investor.id).invested_amount == 0

    service.approve_request(fund_request.id, admin.id)

    investor = db.session.get(Investor, investor.id)
    assert investor.invested_amount == 1500
    assert investor.history_entries[-1].type == HistoryEntryType.DEPOSIT
    stats = db.session.get(GlobalStats, 1)
    assert stats.total_invested == 1500
    assert stats.active_investors == 1
    assert stats.platform_fee_rate == 0.0


def test_approval_is_idempotent_per_request(service, admin, make_investor):
    investor = make_investor('A')
    fund_request = service.submit_request(investor.id, 'DEPOSIT', 1000)
    service.approve_request(fund_request.id, admin.id)
    service.approve_request(fund_request.id, admin.id)

    investor = db.session.get(Investor, investor.id)
    assert investor.invested_amount == 1000
    assert len(investor.history_entries) == 1


def test_conflicting_decision_is_rejected(service, admin, make_investor):
    investor = make_investor('A')
    fund_request = service.submit_request(investor.id, 'DEPOSIT', 1000)
    service.approve_request(fund_request.id, admin.id)
    with pytest.raises(RequestAlreadyDecided):
        service.reject_request(fund_request.id, admin.id)


def test_rejection_leaves_balance_but_is_audited(service, admin, make_investor):
    investor = make_investor('A', 500)
    fund_request = service.submit_request(investor.id, 'WITHDRAWAL', 200)
    service.reject_request(fund_request.id, admin.id)

    assert db.session.get(Investor, investor.id).invested_amount == 500
    entry = AuditLogEntry.query.filter_by(action=AuditAction.WITHDRAWAL_REJECTED).one()
    assert entry.details['before'] == entry.details['after']


def test_over_withdrawal_is_clamped(service, admin, make_investor):
    investor = make_investor('A', 3000)
    fund_request = service.submit_request(investor.id, 'WITHDRAWAL', 5000)
    service.approve_request(fund_request.id, admin.id)

    investor = db.session.get(Investor, investor.id)
    assert investor.invested_amount == 0
    assert investor.history_entries[-1].amount == -3000
    entry = AuditLogEntry.query.filter_by(action=AuditAction.WITHDRAWAL_APPROVED).one()
    assert entry.details['requested_amount'] == 5000
    assert entry.details['applied_amount'] == 3000
    assert db.session.get(GlobalStats, 1).active_investors == 0


def test_request_validation(service, make_investor):
    investor = make_investor('A')
    with pytest.raises(InvalidAmount):
        service.submit_request(investor.id, 'DEPOSIT', -10)
    with pytest.raises(InvalidInput):
        service.submit_request(investor.id, 'LOAN', 10)
    with pytest.raises(NotFound):
        service.submit_request(9999, 'DEPOSIT', 10)


def test_only_admins_decide(service, make_investor):
    investor = make_investor('A')
    fund_request = service.submit_request(investor.id, 'DEPOSIT', 100)
    with pytest.raises(Forbidden):
        service.approve_request(fund_request.id, investor.id)
    with pytest.raises(Forbidden):
        service.approve_request(fund_request.id, None)


# Bets

def test_place_bet_starts_pending(service, admin):
    bet = service.place_bet(bet_data(), admin.id)
    assert bet.status == BetStatus.PENDING
    assert bet.profit is None
    assert bet.processed_in_daily_history is False
    assert bet.bet_type == BetType.VALUE


def test_place_bet_with_american_odds(service, admin):
    bet = service.place_bet(bet_data(odds=None, american_odds=150), admin.id)
    assert bet.odds == pytest.approx(2.5)


@pytest.mark.parametrize('overrides', [{'stake': 0}, {'odds': 1.0}, {'odds': None}, {'date': 'tomorrow'}])
def test_place_bet_validation(service, admin, overrides):
    with pytest.raises(InvalidInput):
        service.place_bet(bet_data(**overrides), admin.id)


def test_bet_group_shares_group_id(service, admin):
    value_bet, middle_bet = service.place_bet_group(bet_data(), bet_data(selection='Team B', odds=3.2), admin.id)
    assert value_bet.group_id == middle_bet.group_id
    assert middle_bet.bet_type == BetType.MIDDLE

    assert service.delete_bet_group(value_bet.group_id, admin.id) == 2
    assert Bet.query.count() == 0


def test_update_bet_resolves_and_reverts(service, admin):
    bet = service.place_bet(bet_data(), admin.id)
    bet = service.update_bet(bet.id, {'status': 'WON'}, admin.id)
    assert bet.profit == pytest.approx(110.0)
    assert bet.resolved_at is not None

    bet = service.update_bet(bet.id, {'odds': 3.0}, admin.id)
    assert bet.profit == pytest.approx(200.0)

    bet = service.update_bet(bet.id, {'status': 'PENDING'}, admin.id)
    assert bet.profit is None
    assert bet.resolved_at is None

    changes = AuditLogEntry.query.filter_by(action=AuditAction.BET_UPDATED).count()
    assert changes == 3


def test_unknown_status_is_rejected(service, admin):
    bet = service.place_bet(bet_data(), admin.id)
    with pytest.raises(InvalidInput):
        service.update_bet(bet.id, {'status': 'MAYBE'}, admin.id)


# Day resolution

def test_resolve_day_end_to_end(service, admin, pool):
    a, b = pool
    bet = place_resolved(service, admin)

    resolution = service.resolve_day(DAY, admin.id)

    assert resolution.fees_total == pytest.approx(1.10)
    assert resolution.distributed_total == pytest.approx(108.90)

    a = db.session.get(Investor, a.id)
    b = db.session.get(Investor, b.id)
    assert a.total_profit_earned == pytest.approx(65.34)
    assert b.total_profit_earned == pytest.approx(43.56)
    assert a.history_entries[-2].type == HistoryEntryType.PROFIT_PAYOUT
    assert a.history_entries[-1].type == HistoryEntryType.FEE

    record = DailyHistoryRecord.query.one()
    assert record.day == 1
    assert record.date == date(2024, 5, 1)
    assert record.total_bank_value_start == 5000
    assert record.total_bank_value_end == pytest.approx(5110)

    assert db.session.get(Bet, bet.id).processed_in_daily_history is True

    stats = db.session.get(GlobalStats, 1)
    assert stats.total_profit_distributed == pytest.approx(108.90)
    assert stats.total_fees_collected == pytest.approx(1.10)
    assert stats.current_turnover == 100
    assert stats.total_bets_placed == 1
    assert stats.last_profit_update_time is not None

    actions = {entry.action for entry in AuditLogEntry.query.all()}
    assert {AuditAction.BETS_RESOLVED, AuditAction.PROFIT_DISTRIBUTED} <= actions


def test_resolving_twice_is_a_no_op(service, admin, pool):
    place_resolved(service, admin)
    service.resolve_day(DAY, admin.id)

    assert service.resolve_day(DAY, admin.id) is None
    assert DailyHistoryRecord.query.count() == 1
    a = db.session.get(Investor, pool[0].id)
    assert a.total_profit_earned == pytest.approx(65.34)


def test_pending_bets_are_left_for_later(service, admin, pool):
    service.place_bet(bet_data(), admin.id)
    assert service.resolve_day(DAY, admin.id) is None
    assert DailyHistoryRecord.query.count() == 0


def test_days_chain(service, admin, pool):
    place_resolved(service, admin)
    service.resolve_day(DAY, admin.id)
    place_resolved(service, admin, status='LOST', date='2024-05-02')
    resolution = service.resolve_day('2024-05-02', admin.id)

    assert resolution.record.day == 2
    assert resolution.record.total_bank_value_start == pytest.approx(5110)
    assert resolution.record.total_bank_value_end == pytest.approx(5010)
    assert resolution.fees_total == 0


def test_new_bets_on_closed_day_are_rejected(service, admin, pool):
    place_resolved(service, admin)
    service.resolve_day(DAY, admin.id)
    place_resolved(service, admin)
    with pytest.raises(DayAlreadyClosed):
        service.resolve_day(DAY, admin.id)


def test_processed_bets_cannot_be_edited(service, admin, pool):
    bet = place_resolved(service, admin)
    service.resolve_day(DAY, admin.id)
    with pytest.raises(BetAlreadyProcessed):
        service.update_bet(bet.id, {'status': 'LOST'}, admin.id)
    with pytest.raises(BetAlreadyProcessed):
        service.delete_bet_group(bet.group_id, admin.id)


def test_failed_resolution_rolls_back_everything(service, admin, pool, monkeypatch):
    bet = place_resolved(service, admin)

    def fail(self, record, notes=None):
        raise RuntimeError('disk full')

    monkeypatch.setattr(HistoryStore, 'add', fail)
    with pytest.raises(RuntimeError):
        service.resolve_day(DAY, admin.id)

    a = db.session.get(Investor, pool[0].id)
    assert a.total_profit_earned == 0
    assert all(entry.type != HistoryEntryType.PROFIT_PAYOUT for entry in a.history_entries)
    assert db.session.get(Bet, bet.id).processed_in_daily_history is False
    assert DailyHistoryRecord.query.count() == 0
    assert db.session.get(GlobalStats, 1).total_profit_distributed == 0


def test_deactivated_investor_is_skipped(service, admin, pool):
    a, b = pool
    service.set_investor_active(b.id, False, admin.id)
    place_resolved(service, admin)
    resolution = service.resolve_day(DAY, admin.id)

    assert [p.investor_id for p in resolution.payouts] == [a.id]
    assert db.session.get(Investor, b.id).total_profit_earned == 0
    # One participant left: lowest fee tier.
    assert resolution.record.fee_rate == 0.0


def test_no_funded_investors_leaves_profit_unallocated(service, admin, make_investor):
    make_investor('A')
    place_resolved(service, admin)
    resolution = service.resolve_day(DAY, admin.id)

    assert resolution.record.unallocated_profit == pytest.approx(110.0)
    assert db.session.get(GlobalStats, 1).unallocated_profit == pytest.approx(110.0)


def test_stats_fee_rate_matches_charged_rate(service, admin, make_investor):
    a = make_investor('A', 1000)
    make_investor('B', 1000)
    place_resolved(service, admin)
    service.resolve_day(DAY, admin.id)

    # A keeps only profit after withdrawing all principal.
    withdrawal = service.submit_request(a.id, 'WITHDRAWAL', 1000)
    service.approve_request(withdrawal.id, admin.id)
    stats = db.session.get(GlobalStats, 1)
    assert stats.active_investors == 2
    shown_rate = stats.platform_fee_rate

    place_resolved(service, admin, date='2024-05-02')
    resolution = service.resolve_day('2024-05-02', admin.id)

    assert resolution.record.fee_rate == shown_rate == 0.01
    assert db.session.get(GlobalStats, 1).platform_fee_rate == resolution.record.fee_rate


def test_bet_resolved_after_later_day_closed_is_distributed(service, admin, pool):
    late = service.place_bet(bet_data(), admin.id)
    place_resolved(service, admin, date='2024-05-02')
    first = service.resolve_day('2024-05-02', admin.id)

    service.update_bet(late.id, {'status': 'WON'}, admin.id)
    second = service.resolve_day(DAY, admin.id)

    assert second is not None
    assert second.record.day == first.record.day + 1
    assert second.record.total_bank_value_start == pytest.approx(5110)
    assert second.record.total_bank_value_end == pytest.approx(5220)
    assert db.session.get(Bet, late.id).processed_in_daily_history is True

    place_resolved(service, admin, date='2024-05-03')
    third = service.resolve_day('2024-05-03', admin.id)
    assert third.record.day == 3
    assert third.record.total_bank_value_start == pytest.approx(5220)


def test_closed_day_that_is_not_latest_is_rejected(service, admin, pool):
    place_resolved(service, admin)
    service.resolve_day(DAY, admin.id)
    place_resolved(service, admin, date='2024-05-02')
    service.resolve_day('2024-05-02', admin.id)

    place_resolved(service, admin)
    with pytest.raises(DayAlreadyClosed):
        service.resolve_day(DAY, admin.id)


def test_failing_threshold_check_does_not_fail_resolution(service, admin, pool, monkeypatch):
    def fail(self, investor_id, now=None):
        raise RuntimeError('alert backend down')

    monkeypatch.setattr(ThresholdMonitor, 'check_investor', fail)
    place_resolved(service, admin)
    resolution = service.resolve_day(DAY, admin.id)

    assert resolution.record.day == 1
    assert DailyHistoryRecord.query.count() == 1
    assert db.session.get(Investor, pool[0].id).total_profit_earned == pytest.approx(65.34)
