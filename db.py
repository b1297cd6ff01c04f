import logging

from models import db, GlobalStats, Investor, Role

logger = logging.getLogger(__name__)

def init_db(app):
    """Initialize the database"""
    with app.app_context():
        db.create_all()

def seed_db(app):
    """Seed the database with the operator account and the global stats row"""
    with app.app_context():
        if db.session.get(GlobalStats, 1) is None:
            db.session.add(GlobalStats(
                id=1,
                total_invested=0.0,
                total_profit_distributed=0.0,
                total_fees_collected=0.0,
                unallocated_profit=0.0,
                active_investors=0,
                platform_fee_rate=0.0,
                current_turnover=0.0,
                total_bets_placed=0,
            ))

        if Investor.query.filter_by(role=Role.ADMIN).count() > 0:
            db.session.commit()
            logger.info("Database already seeded")
            return

        admin = Investor(
            name=app.config.get('SEED_ADMIN_NAME', 'Admin'),
            role=Role.ADMIN,
            is_active=True,
            invested_amount=0.0,
            total_profit_earned=0.0,
            current_gross_profit=0.0,
            current_net_profit=0.0,
            platform_fee_paid=0.0,
        )
        db.session.add(admin)
        db.session.commit()

        logger.info(f"Database seeded with admin {admin.name} (id {admin.id})")

if __name__ == '__main__':
    from app import create_app
    app = create_app()
    init_db(app)
    seed_db(app)
