"""Weighted quality score for operational edge audits.

Ratings are 1-5. "na", missing, 0 and anything non-numeric are left out of
every average. The overall score is a weighted mean over the groups that
actually have ratings, so a record without intelligence/medical ratings is not
pulled down by them.
"""

import math

from normalizer import AUDIT_TYPE, read_path, read_type, to_number

NA_SENTINEL = "na"

RATING_GROUPS = [
    {
        "key": "operational",
        "label": "מבצעיות",
        "weight": 0.80,
        "fields": [
            ("posSector", "מיקום+שפה+גזרה"),
            ("missionBriefing", "תדריך משימה"),
            ("sectorHistory", "היסטוריה גזרתית"),
            ("threatUnderstanding", "הבנת האיום"),
            ("appearance", "נראות ודיגום"),
            ("effort", "עקרון המאמ״ץ"),
            ("drills", "תרגולות ומקת״גים"),
            ("roe", "הופ״א"),
        ],
    },
    {
        "key": "technical",
        "label": "תקשוב",
        "weight": 0.10,
        "fields": [
            ("systems", "ליונט/אלפ״א/תיק משימה"),
            ("communication", "קשר"),
        ],
    },
    {
        "key": "intelligence",
        "label": "מודיעין",
        "weight": 0.05,
        "fields": [("intelTools", "עזרים בעמדה")],
    },
    {
        "key": "medical",
        "label": "רפואה",
        "weight": 0.05,
        "fields": [("medical", "רפואה")],
    },
]

RATING_FIELDS = [field for group in RATING_GROUPS for field, _label in group["fields"]]

# schemaVersion 1 audits, kept for display of old records.
LEGACY_FIELDS = [
    ("appearance", "נראות הכוח"),
    ("discipline", "שמירה על מאמ״ץ"),
    ("knowledge", "הכרת הגזרה והיסטוריה"),
    ("readiness", "תקינות ומוכנות"),
    ("cleanliness", "ניקיון העמדה"),
    ("missionDeliveryQuality", "איכות שילוח המשימה"),
    ("missionMastery", "בקיאות במשימה"),
]


def round_half_up(value, digits=0):
    factor = 10 ** digits
    # strip float noise so 82.49999999 and 82.5 round the same way
    rounded = math.floor(round(value * factor, 6) + 0.5) / factor
    return int(rounded) if digits == 0 else rounded


def rating_value(raw):
    """The rating as a float, or None when it must not count."""
    if isinstance(raw, str) and raw.strip().lower() == NA_SENTINEL:
        return None
    number = to_number(raw)
    if number is None or number <= 0:
        return None
    return number


def average(values):
    usable = [v for v in (rating_value(raw) for raw in values) if v is not None]
    if not usable:
        return None
    return sum(usable) / len(usable)


def to_100(avg5):
    if avg5 is None:
        return None
    return round_half_up(avg5 * 100 / 5)


def group_averages(audit):
    audit = audit if isinstance(audit, dict) else {}
    return {
        group["key"]: average([audit.get(field) for field, _label in group["fields"]])
        for group in RATING_GROUPS
    }


def compute_scores(audit):
    if not isinstance(audit, dict):
        return None

    averages = group_averages(audit)
    weighted = 0.0
    weight_total = 0.0
    for group in RATING_GROUPS:
        avg = averages[group["key"]]
        if avg is None:
            continue
        weighted += avg * group["weight"]
        weight_total += group["weight"]

    overall5 = weighted / weight_total if weight_total else None
    return {
        "overall_0_100": to_100(overall5),
        "overall_1_5": round_half_up(overall5, 1) if overall5 is not None else None,
        "operational_0_100": to_100(averages["operational"]),
        "technical_0_100": to_100(averages["technical"]),
        "intelligence_0_100": to_100(averages["intelligence"]),
        "medical_0_100": to_100(averages["medical"]),
    }


def legacy_average(audit):
    if not isinstance(audit, dict):
        return None
    avg = average([audit.get(field) for field, _label in LEGACY_FIELDS])
    if avg is None:
        return None
    return round_half_up(avg, 1)


def record_scores(record):
    """Persisted score when the record carries one, otherwise computed."""
    if read_type(record) != AUDIT_TYPE:
        return None
    audit = read_path(record, "audit")
    if not isinstance(audit, dict) or is_legacy_audit(audit):
        return None
    stored = read_path(record, "score")
    if isinstance(stored, dict) and "overall_0_100" in stored:
        return stored
    return compute_scores(audit)


def overall_display(record):
    scores = record_scores(record)
    if scores and scores.get("overall_0_100") is not None:
        return str(scores["overall_0_100"])
    legacy = legacy_average(read_path(record, "audit")) if read_type(record) == AUDIT_TYPE else None
    if legacy is not None:
        return f"{legacy}/5"
    return "—"


def score_band(score):
    if score is None:
        return "secondary"
    if score >= 80:
        return "success"
    if score >= 50:
        return "warning"
    return "danger"


def is_legacy_audit(audit):
    """True for schemaVersion 1 audits, which share only `appearance` with the current fields."""
    if not isinstance(audit, dict):
        return False
    current_only = set(RATING_FIELDS) - {field for field, _label in LEGACY_FIELDS}
    legacy_only = {field for field, _label in LEGACY_FIELDS} - set(RATING_FIELDS)
    return not (current_only & audit.keys()) and bool(legacy_only & audit.keys())
