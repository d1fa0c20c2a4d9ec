"""Small helpers shared by blueprints and services.

Lookups return error tuples instead of calling ``abort`` so a view can
``return err`` and keep its own control flow.  Datetimes are compared as
aware UTC values everywhere; ``as_utc`` covers the SQLite round-trip.
"""
import logging
from datetime import date, datetime, timezone

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from testhub.models import db
from testhub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Accepted by parse_date after plain ISO; reviewers paste dates from e-mails
_DATE_FORMATS = ("%d.%m.%Y", "%d/%m/%Y")


def get_or_404(model, pk, label=None):
    """``(obj, None)`` when found, ``(None, error_response)`` otherwise.

        uat_session, err = get_or_404(UatSession, session_id, "UAT session")
        if err:
            return err
    """
    obj = db.session.get(model, pk)
    if obj is None:
        return None, api_error(E.NOT_FOUND, f"{label or model.__name__} not found")
    return obj, None


def parse_date(value):
    """Lenient date parsing; None for empty or unparseable input.

    Takes ISO dates, ISO datetimes (date part kept) and day-first
    ``DD.MM.YYYY`` / ``DD/MM/YYYY``.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    for parse in (date.fromisoformat, lambda s: datetime.fromisoformat(s).date()):
        try:
            return parse(text)
        except ValueError:
            continue
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_datetime(value):
    """Strict ISO-8601 parsing into an aware UTC datetime.

    Empty input gives None; malformed input raises ValueError so the
    caller can report which field was wrong.  A trailing ``Z`` is accepted.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    return as_utc(datetime.fromisoformat(text))


def as_utc(value):
    """Aware UTC view of ``value``; naive values are assumed to be UTC.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def db_commit_or_error():
    """Commit the request's unit of work.

    Returns None on success.  On failure the session is rolled back and an
    error tuple is returned: 409 for constraint violations (two reviewers
    racing on the same response row, for example), 500 otherwise.

        err = db_commit_or_error()
        if err:
            return err
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Commit rejected by constraint: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Commit failed: database unavailable")
        return api_error(E.DATABASE, "Database error")
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Commit failed")
        return api_error(E.DATABASE, "Database error")
    return None
