"""
Scoped transactions.

Every multi-statement mutation runs inside ``atomic()``: the block either
commits as a whole or is rolled back, on every exit path.

Usage:
    from crm.core.transaction import atomic

    with atomic():
        db.session.add(rule)
        db.session.flush()
        set_read_only(rule.target_field_id, True)
"""

import logging
from contextlib import contextmanager

from crm.models import db

logger = logging.getLogger(__name__)


@contextmanager
def atomic(session=None):
    """Run the enclosed block as one unit of work.

    Commits when the block exits normally (including an early ``return``
    inside the ``with``), rolls back and re-raises on any exception.

    Args:
        session: SQLAlchemy session; defaults to the Flask-SQLAlchemy scoped session.

    Yields:
        The session in use.
    """
    session = session or db.session
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        logger.debug("Transaction rolled back")
        raise
