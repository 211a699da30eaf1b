import logging
import uuid
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo

from . import settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Format written by the legacy system, e.g. "Wed Jan 01 10:00:00 UTC 2025".
LEGACY_TIMESTAMP_FORMAT = "%a %b %d %H:%M:%S %Y"
UTC_ALIASES = {"UTC", "GMT", "Z"}


def utc_now() -> datetime:
    """Returns the current instant as a timezone-aware UTC datetime, whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def ledger_zone() -> ZoneInfo:
    """The single zone used for calendar-date bucketing."""
    return ZoneInfo(settings.LEDGER_TIMEZONE)


def ledger_date(moment: datetime) -> date:
    """Returns the calendar date of `moment` as seen from the ledger timezone."""
    return moment.astimezone(ledger_zone()).date()


def round_money(value) -> Decimal:
    """Rounds a number to two decimals, half-up, as a Decimal."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value) -> str:
    """Formats a money amount the way it is persisted: '0.00'."""
    return f"{round_money(value):.2f}"


def generate_document_id(prefix: str) -> str:
    """
    Returns an id such as 'SALE-20250101103000-4F2A'.
    The timestamp keeps ids roughly sortable; the suffix avoids collisions
    between documents opened within the same second.
    """
    stamp = utc_now().strftime("%Y%m%d%H%M%S")
    return f"{prefix}-{stamp}-{uuid.uuid4().hex[:4].upper()}"


def format_timestamp(moment: datetime) -> str:
    """Formats a datetime as a UTC ISO-8601 instant, e.g. '2025-01-01T10:00:00Z'."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(text: str) -> datetime:
    """
    Parses a persisted timestamp into an aware UTC datetime.
    1. ISO-8601 ('Z' suffix, explicit offset, or naive which is read as UTC).
    2. The legacy textual format 'EEE MMM dd HH:mm:ss zzz yyyy'.
    Raises ValueError when neither format matches.
    """
    raw = (text or "").strip()
    if not raw:
        raise ValueError("empty timestamp")

    try:
        iso = raw[:-1] + "+00:00" if raw.endswith(("Z", "z")) else raw
        parsed = datetime.fromisoformat(iso)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except ValueError:
        logger.debug(f"'{raw}' is not an ISO-8601 instant. Trying legacy format.")

    parts = raw.split()
    if len(parts) != 6:
        raise ValueError(f"Unrecognized timestamp: '{raw}'")

    zone_name = parts.pop(4)
    parsed = datetime.strptime(" ".join(parts), LEGACY_TIMESTAMP_FORMAT)
    if zone_name.upper() in UTC_ALIASES:
        zone = timezone.utc
    else:
        logger.warning(
            f"Legacy timestamp '{raw}' uses zone '{zone_name}'. "
            f"Interpreting it in {settings.LEDGER_TIMEZONE}."
        )
        zone = ledger_zone()
    return parsed.replace(tzinfo=zone).astimezone(timezone.utc)
