"""Clock provider for the ledger services.

Services import these helpers instead of calling ``datetime`` directly so
tests can patch the clock at the module that uses it.
"""

from datetime import date, datetime, timezone


def get_utc_now() -> datetime:
    """
    Returns a naive UTC datetime.
    Matches the DB schema (TIMESTAMP WITHOUT TIME ZONE).
    Avoids 'datetime.utcnow()' deprecation warnings.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_today() -> date:
    """Current UTC calendar date."""
    return get_utc_now().date()


def stamp(moment: datetime) -> str:
    """Timestamp format used in free-text bill notes."""
    return moment.strftime("%Y-%m-%d %H:%M:%S")
