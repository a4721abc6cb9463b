"""Read-side aggregation of scan events.

Summaries are recomputed from raw scans on every read. Per-code volumes are
small; a code with very heavy traffic would need persisted rollups instead.
"""
from collections import Counter
from datetime import datetime, timezone, tzinfo
from typing import Iterable, Optional
from .models import Scan
from .schemas import ScanSummary

UNKNOWN_DEVICE = "Unknown Device"


def _as_zone(ts: datetime, tz: tzinfo) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(tz)


def date_label(d) -> str:
    return f"{d.month}/{d.day}"


def summarize(scans: Iterable[Scan], tz: Optional[tzinfo] = None) -> ScanSummary:
    """Count scans per calendar day and per device string.

    ``tz`` picks the calendar used for day buckets (UTC by default).
    ``by_date`` is returned in chronological order.
    """
    tz = tz or timezone.utc
    per_day = Counter()
    per_device = Counter()
    latest = None
    total = 0

    for scan in scans:
        ts = _as_zone(scan.timestamp, tz)
        per_day[ts.date()] += 1
        per_device[scan.device or UNKNOWN_DEVICE] += 1
        if latest is None or ts > latest:
            latest = ts
        total += 1

    by_date = {}
    for day in sorted(per_day):
        # labels carry no year, so the same day in different years shares a bucket
        label = date_label(day)
        by_date[label] = by_date.get(label, 0) + per_day[day]

    return ScanSummary(
        by_date=by_date,
        by_device=dict(per_device),
        total=total,
        last_scan_date=latest.date() if latest else None,
    )
