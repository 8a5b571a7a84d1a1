"""Canonical reads over review records written by every form version.

The schema moved fields around over time (root -> meta, several places for the
training kind, Firestore timestamps vs ISO strings). Everything here is total:
bad input gives "" / None, never an exception.
"""

import math
from collections import namedtuple
from datetime import date, datetime

SECTORS = ["אלון מורה", "איתמר", "ברכה", "לב השומרון"]

AUDIT_TYPE = "ביקורת קצה מבצעי"
DRILL_TYPE = "תרגול משימה"
PATROL_TYPE = "סיור"
REVIEW_TYPES = [AUDIT_TYPE, DRILL_TYPE, PATROL_TYPE]
UNKNOWN_LABEL = "לא ידוע"

DISTINGUISHED_ROLE = 'צמ"מ'
OTHER_ROLE_LABEL = "אחרים"

PRACTICAL_KIND = "מעשי"
METHODICAL_KIND = "מתודי"
TRAINING_TYPE_KINDS = {"practical": PRACTICAL_KIND, "methodical": METHODICAL_KIND}

# Priority order; first non-empty wins.
TRAINING_KIND_PATHS = [
    ("sections", "training", "kind"),
    ("sections", "forceTraining", "kind"),
    ("meta", "trainingKind"),
    ("trainingKind",),
    ("forceTrainingType",),
]

ROLE_QUOTE_CHARS = "״“”"
_QUOTE_TABLE = str.maketrans({ch: '"' for ch in ROLE_QUOTE_CHARS})


def record_data(record):
    """Unwrap `{"id": ..., "data": {...}}` snapshots into the document dict."""
    if not isinstance(record, dict):
        return {}
    data = record.get("data")
    if isinstance(data, dict) and "id" in record:
        return data
    return record


def read_path(record, *path):
    node = record_data(record)
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _text(value):
    if value is None:
        return ""
    return str(value).strip()


def _first_text(*values):
    for value in values:
        text = _text(value)
        if text:
            return text
    return ""


def normalize_role(raw):
    return _text(raw).translate(_QUOTE_TABLE)


def read_role(record):
    return normalize_role(_first_text(read_path(record, "role"), read_path(record, "meta", "role")))


def read_sector(record):
    return _first_text(read_path(record, "sector"), read_path(record, "meta", "sector"))


def read_type(record):
    return _text(read_path(record, "type")) or UNKNOWN_LABEL


def read_name(record):
    return _first_text(read_path(record, "name"), read_path(record, "meta", "name"))


def is_distinguished_role(record):
    return read_role(record) == DISTINGUISHED_ROLE


def read_training_kind(record):
    for path in TRAINING_KIND_PATHS:
        kind = _text(read_path(record, *path))
        if kind:
            return kind
    legacy = _text(read_path(record, "audit", "forceTraining", "trainingType"))
    return TRAINING_TYPE_KINDS.get(legacy, legacy)


def is_practical_drill(record):
    return read_training_kind(record) == PRACTICAL_KIND


# ---------------------------
# Timestamps
# ---------------------------
NativeDate = namedtuple("NativeDate", "value")
IsoString = namedtuple("IsoString", "value")
ProviderTimestamp = namedtuple("ProviderTimestamp", "value")

PROVIDER_CONVERTERS = ("to_datetime", "to_date", "toDate")


def _provider_converter(raw):
    for attr in PROVIDER_CONVERTERS:
        method = getattr(raw, attr, None)
        if callable(method):
            return method
    return None


def to_timestamp(raw):
    """Classify a raw timestamp value into one of the three variants, or None."""
    if isinstance(raw, (datetime, date)):
        return NativeDate(raw)
    if isinstance(raw, str):
        return IsoString(raw)
    if raw is not None and _provider_converter(raw) is not None:
        return ProviderTimestamp(raw)
    return None


def _naive_local(value):
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            try:
                value = value.astimezone()
            except (OverflowError, OSError, ValueError):
                return None
            return value.replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return None


def _parse_iso(text):
    text = text.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def timestamp_to_datetime(ts):
    if isinstance(ts, NativeDate):
        return _naive_local(ts.value)
    if isinstance(ts, IsoString):
        return _naive_local(_parse_iso(ts.value))
    if isinstance(ts, ProviderTimestamp):
        converter = _provider_converter(ts.value)
        if converter is None:
            return None
        try:
            converted = converter()
        except (TypeError, ValueError, AttributeError, OverflowError):
            return None
        return _naive_local(converted)
    return None


def to_datetime(raw):
    return timestamp_to_datetime(to_timestamp(raw))


def resolve_event_date(record):
    return to_datetime(read_path(record, "eventAt")) or to_datetime(read_path(record, "createdAt"))


def to_number(value):
    """Float for a usable rating value, None otherwise."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(number):
        return None
    return number
