"""Sector / type / role counts over a snapshot of review records."""

import logging

from normalizer import (
    AUDIT_TYPE,
    DRILL_TYPE,
    SECTORS,
    UNKNOWN_LABEL,
    is_distinguished_role,
    is_practical_drill,
    normalize_role,
    read_name,
    read_role,
    read_sector,
    read_type,
    resolve_event_date,
    to_datetime,
)

logger = logging.getLogger(__name__)

GROUP_BY_FIELDS = {
    "type": read_type,
    "sector": read_sector,
    "role": read_role,
    "name": read_name,
}


def empty_counts():
    return {"distinguished_role_count": 0, "other_role_count": 0}


def _bump(counts, distinguished):
    if distinguished:
        counts["distinguished_role_count"] += 1
    else:
        counts["other_role_count"] += 1


def _tally(bucket, type_label, distinguished):
    type_counts = bucket["by_type"].setdefault(type_label, empty_counts())
    _bump(type_counts, distinguished)


def aggregate(records, from_date, to_date_end=None, type_filter=None):
    """Bucket records by sector and type, split by role class.

    A record is kept only if it has an event date inside
    [from_date, to_date_end], a recognized sector and (when type_filter is set)
    a matching type. Audit records that were also a practical drill are tallied a
    second time under the mission-drill label, and that second tally counts in
    the sector totals too.

    Raises ValueError when from_date (or a given to_date_end) is not a date.
    """
    from_dt = to_datetime(from_date)
    if from_dt is None:
        raise ValueError(f"Invalid from_date {from_date!r}")
    to_dt = None
    if to_date_end is not None:
        to_dt = to_datetime(to_date_end)
        if to_dt is None:
            raise ValueError(f"Invalid to_date_end {to_date_end!r}")
    type_filter = type_filter or None

    by_sector = {sector: {"by_type": {}, "totals": empty_counts()} for sector in SECTORS}
    types = set()
    kept = 0

    for record in records:
        event_at = resolve_event_date(record)
        if event_at is None:
            continue
        if event_at < from_dt:
            continue
        if to_dt is not None and event_at > to_dt:
            continue

        sector = read_sector(record)
        if sector not in by_sector:
            continue

        base_type = read_type(record)
        if type_filter and base_type != type_filter:
            continue

        distinguished = is_distinguished_role(record)
        bucket = by_sector[sector]
        _tally(bucket, base_type, distinguished)
        _bump(bucket["totals"], distinguished)
        types.add(base_type)

        if base_type == AUDIT_TYPE and is_practical_drill(record):
            _tally(bucket, DRILL_TYPE, distinguished)
            _bump(bucket["totals"], distinguished)
            types.add(DRILL_TYPE)

        kept += 1

    for bucket in by_sector.values():
        bucket["by_type"] = {label: bucket["by_type"][label] for label in sorted(bucket["by_type"])}

    logger.debug("Aggregated %s record(s) into %s type(s)", kept, len(types))
    return {"by_sector": by_sector, "types": sorted(types), "kept": kept}


def grand_totals(agg):
    totals = empty_counts()
    for bucket in agg["by_sector"].values():
        totals["distinguished_role_count"] += bucket["totals"]["distinguished_role_count"]
        totals["other_role_count"] += bucket["totals"]["other_role_count"]
    return totals


def count_by(records, group_by, sector=None, type_filter=None, role=None):
    """Count records per value of one field (type, sector, role or name)."""
    reader = GROUP_BY_FIELDS.get(group_by)
    if reader is None:
        raise ValueError(f"Unsupported group_by '{group_by}'. Use one of: {', '.join(GROUP_BY_FIELDS)}")

    role = normalize_role(role) if role else None
    counts = {}
    for record in records:
        if sector and read_sector(record) != sector:
            continue
        if type_filter and read_type(record) != type_filter:
            continue
        if role and read_role(record) != role:
            continue
        key = reader(record) or UNKNOWN_LABEL
        counts[key] = counts.get(key, 0) + 1

    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return dict(ordered)
