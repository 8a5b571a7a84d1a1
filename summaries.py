"""Text and table renderings of review records and dashboard aggregates."""

from aggregator import grand_totals
from normalizer import (
    AUDIT_TYPE,
    DISTINGUISHED_ROLE,
    OTHER_ROLE_LABEL,
    read_name,
    read_path,
    read_role,
    read_sector,
    read_training_kind,
    read_type,
    resolve_event_date,
    to_datetime,
)
from scoring import (
    LEGACY_FIELDS,
    RATING_GROUPS,
    is_legacy_audit,
    legacy_average,
    rating_value,
    record_scores,
)

EMPTY = "—"
STAR = "⭐"
KEEP_IMPROVE_LIMIT = 3


def format_datetime(raw):
    value = to_datetime(raw)
    if value is None:
        return EMPTY
    return value.strftime("%d.%m.%Y %H:%M")


def stars(raw):
    value = rating_value(raw)
    if value is None:
        return EMPTY
    return STAR * int(max(1, min(5, value)))


def traffic_icon(raw):
    value = rating_value(raw)
    if value is None:
        return "⚪"
    if value >= 5:
        return "🟢"
    if value >= 4:
        return "✅"
    if value >= 3:
        return "🙂"
    if value >= 2:
        return "⚠️"
    return "🔴"


def rating_text(raw):
    if raw is None or raw == "":
        return EMPTY
    return str(raw)


def _value_or_empty(value):
    return EMPTY if value is None else str(value)


def text_field(record, key):
    return str(read_path(record, key) or "").strip()


def list_items(record, key):
    items = read_path(record, key)
    if not isinstance(items, list):
        return []
    return [str(x).strip() for x in items if str(x).strip()][:KEEP_IMPROVE_LIMIT]


def training_summary(record):
    """("כן"/"לא"/"—", kind) for the force-training question of an audit."""
    trained = read_path(record, "audit", "forceTraining", "trained")
    kind = read_training_kind(record)
    if trained == "yes" or (trained is None and kind):
        return "כן", kind or EMPTY
    if trained == "no":
        return "לא", ""
    return EMPTY, ""


def score_lines(record):
    scores = record_scores(record)
    if not scores:
        return []
    return [
        f"🏁 ציון סופי: *{_value_or_empty(scores.get('overall_0_100'))}*"
        f" ({_value_or_empty(scores.get('overall_1_5'))}/5)",
        f"מבצעיות: {_value_or_empty(scores.get('operational_0_100'))}"
        f" | תקשוב: {_value_or_empty(scores.get('technical_0_100'))}"
        f" | מודיעין: {_value_or_empty(scores.get('intelligence_0_100'))}"
        f" | רפואה: {_value_or_empty(scores.get('medical_0_100'))}",
    ]


def rating_sections(audit):
    """[(title, [(label, value)])] for the rating groups present in an audit."""
    if not isinstance(audit, dict):
        return []
    if is_legacy_audit(audit):
        rows = [(label, audit.get(field)) for field, label in LEGACY_FIELDS if field in audit]
        return [("ציונים", rows)]
    sections = []
    for group in RATING_GROUPS:
        rows = [(label, audit.get(field)) for field, label in group["fields"] if field in audit]
        if rows:
            sections.append((f"{group['label']} ({round(group['weight'] * 100)}%)", rows))
    return sections


def build_whatsapp_text(record):
    record_type = read_type(record)
    audit = read_path(record, "audit")
    lines = [
        f"📋 *סיכום {record_type}*",
        f"🕒 {format_datetime(resolve_event_date(record))}",
        f"📍 גזרה: {read_sector(record) or EMPTY}",
        f"👤 מבצע: {read_name(record) or EMPTY} ({read_role(record) or EMPTY})",
        f"🧩 כוח: {read_path(record, 'meta', 'force') or EMPTY}",
    ]

    if record_type == AUDIT_TYPE and isinstance(audit, dict):
        lines.append("")
        lines.extend(score_lines(record))
        legacy = legacy_average(audit) if is_legacy_audit(audit) else None
        if legacy is not None:
            lines.append(f"⭐ ממוצע: *{legacy}/5*")
        for title, rows in rating_sections(audit):
            lines.append("")
            lines.append(f"📌 *{title}*")
            glyph = stars if legacy is not None else traffic_icon
            for idx, (label, value) in enumerate(rows, start=1):
                lines.append(f"{idx}) {label}: {glyph(value)} ({rating_text(value)})")
        trained, kind = training_summary(record)
        lines.append(f"🎯 תרגול הכוח: {trained}{f' ({kind})' if kind else ''}")

    description = text_field(record, "exerciseDescription")
    if record_type != AUDIT_TYPE and description:
        lines.extend(["", "🗒️ תיאור התרגול:", description])

    for key, title in (("gaps", "⚠️ פערים שעלו מהכוח:"), ("notes", "📝 הערות:")):
        text = text_field(record, key)
        if text:
            lines.extend(["", title, text])

    for key, title in (("keep", "✅ נק׳ לשימור:"), ("improve", "🛠️ נק׳ לשיפור:")):
        items = list_items(record, key)
        if items:
            lines.append("")
            lines.append(title)
            lines.extend(f"{i}. {item}" for i, item in enumerate(items, start=1))

    return "\n".join(lines)


def dashboard_table_rows(agg):
    rows = []
    for sector, bucket in agg["by_sector"].items():
        for type_label, counts in bucket["by_type"].items():
            distinguished = counts["distinguished_role_count"]
            other = counts["other_role_count"]
            rows.append(
                {
                    "sector": sector,
                    "type": type_label,
                    "distinguished": distinguished,
                    "other": other,
                    "total": distinguished + other,
                }
            )
    return rows


def build_dashboard_whatsapp_text(agg, period_label, type_filter=None):
    lines = [f"📊 *סיכום ביקורות ותרגולים* · {period_label}"]
    if type_filter:
        lines.append(f"🔎 סוג: {type_filter}")

    for sector, bucket in agg["by_sector"].items():
        totals = bucket["totals"]
        lines.append("")
        lines.append(
            f"📍 *{sector}* · {DISTINGUISHED_ROLE}: {totals['distinguished_role_count']}"
            f" · {OTHER_ROLE_LABEL}: {totals['other_role_count']}"
        )
        if not bucket["by_type"]:
            lines.append("  אין רשומות")
            continue
        for type_label, counts in bucket["by_type"].items():
            lines.append(
                f"  • {type_label}: {DISTINGUISHED_ROLE} {counts['distinguished_role_count']}"
                f" | {OTHER_ROLE_LABEL} {counts['other_role_count']}"
            )

    totals = grand_totals(agg)
    lines.append("")
    lines.append(
        f"סה״כ: {DISTINGUISHED_ROLE} {totals['distinguished_role_count']}"
        f" | {OTHER_ROLE_LABEL} {totals['other_role_count']} | רשומות: {agg['kept']}"
    )
    return "\n".join(lines)


def record_rows(records):
    """One flat row per record, for spreadsheet export."""
    rows = []
    for record in records:
        scores = record_scores(record) or {}
        rows.append(
            {
                "id": record.get("id", "") if isinstance(record, dict) else "",
                "event_at": format_datetime(resolve_event_date(record)),
                "created_at": format_datetime(read_path(record, "createdAt")),
                "type": read_type(record),
                "sector": read_sector(record),
                "name": read_name(record),
                "role": read_role(record),
                "force": read_path(record, "meta", "force") or "",
                "training_kind": read_training_kind(record),
                "overall_0_100": scores.get("overall_0_100"),
                "operational_0_100": scores.get("operational_0_100"),
                "technical_0_100": scores.get("technical_0_100"),
                "intelligence_0_100": scores.get("intelligence_0_100"),
                "medical_0_100": scores.get("medical_0_100"),
                "gaps": text_field(record, "gaps"),
                "notes": text_field(record, "notes"),
                "keep": " | ".join(list_items(record, "keep")),
                "improve": " | ".join(list_items(record, "improve")),
            }
        )
    return rows
