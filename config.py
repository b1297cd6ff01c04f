import json
import os

from dotenv import load_dotenv

load_dotenv()

# (max active investors in tier, fee rate); None means no upper bound
DEFAULT_FEE_TIERS = [
    (1, 0.0),
    (5, 0.01),
    (10, 0.015),
    (20, 0.02),
    (50, 0.025),
    (100, 0.05),
    (200, 0.10),
    (500, 0.15),
    (None, 0.19),
]


def database_url_from_env():
    """Resolve the SQLAlchemy URL, preferring PostgreSQL when DATABASE_URL is set."""
    database_url = os.environ.get('DATABASE_URL')
    if not database_url:
        return 'sqlite:///pool_ledger.db'
    if database_url.startswith('postgres://'):
        return database_url.replace('postgres://', 'postgresql+psycopg://', 1)
    # Ensure we're using psycopg driver
    return database_url.replace('postgresql://', 'postgresql+psycopg://', 1)


def fee_tiers_from_env():
    raw = os.environ.get('FEE_TIERS')
    if not raw:
        return list(DEFAULT_FEE_TIERS)
    return [(bound, float(rate)) for bound, rate in json.loads(raw)]


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_DATABASE_URI = database_url_from_env()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    FEE_TIERS = fee_tiers_from_env()
    ALERT_COOLDOWN_HOURS = int(os.environ.get('ALERT_COOLDOWN_HOURS', 24))
    SEED_ADMIN_NAME = os.environ.get('SEED_ADMIN_NAME', 'Admin')


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    FEE_TIERS = list(DEFAULT_FEE_TIERS)
    ALERT_COOLDOWN_HOURS = 24
    LOG_LEVEL = 'DEBUG'
