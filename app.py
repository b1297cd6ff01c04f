from flask import Flask, Response, current_app, jsonify, request
import csv
from datetime import timedelta
from io import StringIO
import logging
import os

from config import Config
from models import (
    db,
    AuditAction,
    AuditLogEntry,
    Bet,
    BetStatus,
    DailyHistoryRecord,
    FundRequest,
    InvestmentAlert,
    InvestmentGoal,
    Investor,
    RequestStatus,
    Role,
)
from services.errors import InvalidInput, LedgerError
from services.fees import FeeSchedule
from services.ledger import LedgerService, parse_day
from services.stores import BetStore, InvestorStore, StatsStore
from services.thresholds import ThresholdMonitor, connect_threshold_monitor

logger = logging.getLogger(__name__)


def ledger():
    return LedgerService(db.session, current_app.extensions['fee_schedule'])


def threshold_monitor():
    return ThresholdMonitor(db.session, timedelta(hours=current_app.config['ALERT_COOLDOWN_HOURS']))


def admin_id():
    """Acting admin from the X-Admin-Id header; the service checks the role."""
    raw = request.headers.get('X-Admin-Id')
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


def payload():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput('Expected a JSON object body.')
    return data


def register_routes(app):
    @app.errorhandler(LedgerError)
    def handle_ledger_error(error):
        logger.warning(f"[API] {error.__class__.__name__}: {error.message}")
        return jsonify({'error': error.__class__.__name__, 'message': error.message}), error.status_code

    @app.route('/api/health')
    def health():
        return jsonify({'ok': True, 'service': 'pool-ledger'})

    @app.route('/api/investors', methods=['GET', 'POST'])
    def investors():
        """List investors with balances, or create one (admin)"""
        if request.method == 'POST':
            data = payload()
            investor = ledger().create_investor(data.get('name'), admin_id(), data.get('role', Role.USER.value))
            return jsonify(investor.to_dict()), 201
        rows = Investor.query.order_by(Investor.id).all()
        return jsonify([investor.to_dict() for investor in rows])

    @app.route('/api/investors/<int:investor_id>')
    def investor_detail(investor_id):
        investor = InvestorStore(db.session).get_row(investor_id)
        return jsonify(investor.to_dict(with_history=True))

    @app.route('/api/investors/<int:investor_id>/status', methods=['POST'])
    def investor_status(investor_id):
        data = payload()
        investor = ledger().set_investor_active(investor_id, bool(data.get('is_active')), admin_id())
        return jsonify(investor.to_dict())

    @app.route('/api/bets', methods=['GET', 'POST'])
    def bets():
        """List bets (optionally by date/status), or place a single bet (admin)"""
        if request.method == 'POST':
            bet = ledger().place_bet(payload(), admin_id())
            return jsonify(bet.to_dict()), 201

        query = Bet.query
        date_filter = request.args.get('date')
        status = request.args.get('status')
        if date_filter:
            query = query.filter(Bet.date == parse_day(date_filter))
        if status:
            try:
                query = query.filter(Bet.status == BetStatus(status.upper()))
            except ValueError:
                raise InvalidInput(f"Unknown bet status {status!r}.")
        rows = query.order_by(Bet.placed_at.desc(), Bet.id.desc()).all()
        return jsonify([bet.to_dict() for bet in rows])

    @app.route('/api/bets/group', methods=['POST'])
    def bet_group():
        """Place a value + middle pair"""
        data = payload()
        value_bet, middle_bet = ledger().place_bet_group(data.get('value') or {}, data.get('middle') or {},
                                                         admin_id())
        return jsonify({'group_id': value_bet.group_id,
                        'bets': [value_bet.to_dict(), middle_bet.to_dict()]}), 201

    @app.route('/api/bets/group/<group_id>', methods=['DELETE'])
    def delete_bet_group(group_id):
        deleted = ledger().delete_bet_group(group_id, admin_id())
        return jsonify({'group_id': group_id, 'deleted': deleted})

    @app.route('/api/bets/<int:bet_id>', methods=['GET', 'PATCH'])
    def bet_detail(bet_id):
        if request.method == 'PATCH':
            bet = ledger().update_bet(bet_id, payload(), admin_id())
            return jsonify(bet.to_dict())
        return jsonify(BetStore(db.session).get_row(bet_id).to_dict())

    @app.route('/api/days/<day>/resolve', methods=['POST'])
    def resolve_day(day):
        """Close an accounting day and distribute its profit"""
        resolution = ledger().resolve_day(day, admin_id())
        if resolution is None:
            return jsonify({'resolved': False, 'message': 'No unprocessed resolved bets for this date.'})
        record = DailyHistoryRecord.query.filter_by(date=resolution.record.date).one()
        return jsonify({
            'resolved': True,
            'record': record.to_dict(),
            'distributed_total': resolution.distributed_total,
            'fees_total': resolution.fees_total,
            'payouts': [
                {'investor_id': p.investor_id, 'share': p.share, 'gross': p.gross, 'fee': p.fee, 'net': p.net}
                for p in resolution.payouts
            ],
            'bet_ids': [bet.id for bet in resolution.bets],
        })

    @app.route('/api/history')
    def history():
        rows = DailyHistoryRecord.query.order_by(DailyHistoryRecord.date).all()
        return jsonify([row.to_dict() for row in rows])

    @app.route('/api/history.csv')
    def history_csv():
        """Export daily history as CSV"""
        rows = DailyHistoryRecord.query.order_by(DailyHistoryRecord.date).all()

        output = StringIO()
        writer = csv.writer(output)
        writer.writerow(['Day', 'Date', 'Gross Profit', 'Turnover', 'Bets', 'Bank Start', 'Bank End',
                         'Distributed', 'Fees'])

        for row in rows:
            writer.writerow([
                row.day,
                row.date.isoformat(),
                f"{row.daily_gross_profit:.2f}",
                f"{row.turnover:.2f}",
                row.num_bets,
                f"{row.total_bank_value_start:.2f}",
                f"{row.total_bank_value_end:.2f}",
                f"{row.distributed_net_profit:.2f}",
                f"{row.collected_fees:.2f}",
            ])

        output.seek(0)
        return Response(
            output.getvalue(),
            mimetype='text/csv',
            headers={'Content-Disposition': 'attachment; filename=daily_history.csv'}
        )

    @app.route('/api/requests', methods=['GET', 'POST'])
    def fund_requests():
        """List deposit/withdrawal requests, or submit one"""
        if request.method == 'POST':
            data = payload()
            fund_request = ledger().submit_request(data.get('investor_id'), data.get('type'), data.get('amount'))
            return jsonify(fund_request.to_dict()), 201

        query = FundRequest.query
        status = request.args.get('status')
        if status:
            try:
                query = query.filter(FundRequest.status == RequestStatus(status.upper()))
            except ValueError:
                raise InvalidInput(f"Unknown request status {status!r}.")
        return jsonify([r.to_dict() for r in query.order_by(FundRequest.id).all()])

    @app.route('/api/requests/<int:request_id>/approve', methods=['POST'])
    def approve_request(request_id):
        return jsonify(ledger().approve_request(request_id, admin_id()).to_dict())

    @app.route('/api/requests/<int:request_id>/reject', methods=['POST'])
    def reject_request(request_id):
        return jsonify(ledger().reject_request(request_id, admin_id()).to_dict())

    @app.route('/api/stats')
    def stats():
        snapshot = StatsStore(db.session).get()
        fee_schedule = current_app.extensions['fee_schedule']
        data = snapshot.to_dict()
        data['fee_tier'] = fee_schedule.describe(snapshot.active_investors)
        return jsonify(data)

    @app.route('/api/fees')
    def fees():
        """Fee tier lookup and fee estimate for a hypothetical day"""
        fee_schedule = current_app.extensions['fee_schedule']
        stats = StatsStore(db.session).get()
        try:
            count = int(request.args.get('investors', stats.active_investors))
            profit = float(request.args.get('profit', 0))
        except ValueError:
            raise InvalidInput('investors must be an integer and profit a number.')
        return jsonify(fee_schedule.simulate(profit, count))

    @app.route('/api/investors/<int:investor_id>/goals', methods=['GET', 'POST'])
    def goals(investor_id):
        if request.method == 'POST':
            data = payload()
            goal = threshold_monitor().create_goal(investor_id, data.get('name'), data.get('goal_type'),
                                                   data.get('target_amount'), data.get('target_date'))
            return jsonify(goal.to_dict()), 201
        rows = InvestmentGoal.query.filter_by(investor_id=investor_id).order_by(InvestmentGoal.id).all()
        return jsonify([goal.to_dict() for goal in rows])

    @app.route('/api/investors/<int:investor_id>/alerts', methods=['GET', 'POST'])
    def alerts(investor_id):
        if request.method == 'POST':
            data = payload()
            alert = threshold_monitor().create_alert(investor_id, data.get('condition'), data.get('threshold'),
                                                     data.get('reference_invested_amount'))
            return jsonify(alert.to_dict()), 201
        rows = InvestmentAlert.query.filter_by(investor_id=investor_id).order_by(InvestmentAlert.id).all()
        return jsonify([alert.to_dict() for alert in rows])

    @app.route('/api/audit')
    def audit_log():
        query = AuditLogEntry.query
        action = request.args.get('action')
        investor_id = request.args.get('investor_id', type=int)
        if action:
            try:
                query = query.filter(AuditLogEntry.action == AuditAction(action.upper()))
            except ValueError:
                raise InvalidInput(f"Unknown audit action {action!r}.")
        if investor_id:
            query = query.filter(AuditLogEntry.investor_id == investor_id)
        return jsonify([entry.to_dict() for entry in query.order_by(AuditLogEntry.id.desc()).all()])


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    database_url = app.config['SQLALCHEMY_DATABASE_URI']
    logger.info(f"Using database: {database_url.split('://')[0]}")

    # Initialize db with app
    db.init_app(app)
    app.extensions['fee_schedule'] = FeeSchedule(app.config['FEE_TIERS'])

    register_routes(app)
    connect_threshold_monitor()

    from db import init_db, seed_db
    init_db(app)
    seed_db(app)
    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_ENV') == 'development'
    create_app().run(host='0.0.0.0', port=port, debug=debug)
