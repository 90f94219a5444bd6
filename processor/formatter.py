"""Timestamp rendering for the device display."""
from datetime import datetime

from processor.normalizer import resolve_zone

DATE_FORMATS = {
    'MDY': '%m/%d/%Y',
    'DMY': '%d/%m/%Y',
    'YMD': '%Y-%m-%d',
}


def format_timestamp(epoch_ms: int, timezone_name: str = 'UTC',
                     date_format: str = 'MDY', time_format: str = '24h') -> str:
    """
    Render an instant in the given zone's wall-clock time.

    Args:
        epoch_ms: Instant in epoch milliseconds
        timezone_name: IANA zone name, UTC if unknown
        date_format: 'MDY', 'DMY' or 'YMD' (anything else renders as MDY)
        time_format: '24h', or '12h' for hours with an AM/PM marker

    Returns:
        e.g. '03/10/2024 01:30 PM' or '2024-03-10 13:30'
    """
    local = datetime.fromtimestamp(epoch_ms / 1000, tz=resolve_zone(timezone_name))
    date_str = local.strftime(DATE_FORMATS.get(date_format, DATE_FORMATS['MDY']))

    if time_format == '24h':
        time_str = local.strftime('%H:%M')
    else:
        marker = 'AM' if local.hour < 12 else 'PM'
        time_str = f"{local.strftime('%I:%M')} {marker}"

    return f"{date_str} {time_str}"
