import logging

from models import AuditLogEntry

logger = logging.getLogger(__name__)


def record(session, action, description, admin_id=None, investor_id=None, amount=None, **details):
    """Stage an audit entry on ``session``; it commits with the surrounding transaction."""
    entry = AuditLogEntry(
        action=action,
        admin_id=admin_id,
        investor_id=investor_id,
        amount=amount,
        description=description,
        details=details,
    )
    session.add(entry)
    logger.debug(f"[Audit] {action.value}: {description}")
    return entry
