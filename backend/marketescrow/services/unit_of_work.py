from __future__ import annotations

from contextlib import contextmanager

from marketescrow.extensions import db


@contextmanager
def unit_of_work():
    """Commit once on success, roll everything back on any error."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
