"""PDF renderings of a single review and of a dashboard aggregate (reportlab)."""

import os
from io import BytesIO
from xml.sax.saxutils import escape

from bidi.algorithm import get_display
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from aggregator import grand_totals
from normalizer import (
    AUDIT_TYPE,
    DISTINGUISHED_ROLE,
    OTHER_ROLE_LABEL,
    read_name,
    read_path,
    read_role,
    read_sector,
    read_type,
    resolve_event_date,
)
from scoring import record_scores
from summaries import (
    EMPTY,
    dashboard_table_rows,
    format_datetime,
    list_items,
    rating_sections,
    rating_text,
    text_field,
    training_summary,
)

DEFAULT_FONT = "Helvetica"
DEFAULT_BOLD_FONT = "Helvetica-Bold"
REPORT_FONT_NAME = "ReportFont"

# absolute font path -> registered reportlab name
_REGISTERED_FONTS = {}

TABLE_STYLE = [
    ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
    ("GRID", (0, 0), (-1, -1), 1, colors.black),
    ("ALIGN", (0, 0), (-1, -1), "CENTER"),
    ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
]


def register_font(font_path):
    """Register a TTF (needed for Hebrew glyphs) and return (regular, bold) names."""
    if not font_path or not os.path.exists(font_path):
        return DEFAULT_FONT, DEFAULT_BOLD_FONT
    key = os.path.abspath(font_path)
    name = _REGISTERED_FONTS.get(key)
    if name is None:
        name = f"{REPORT_FONT_NAME}{len(_REGISTERED_FONTS) + 1}"
        pdfmetrics.registerFont(TTFont(name, key))
        _REGISTERED_FONTS[key] = name
    return name, name


def visual(text):
    """Text in the left-to-right glyph order reportlab draws (Hebrew runs reversed)."""
    return "\n".join(get_display(line) for line in str(text).split("\n"))


def _styles(font, bold_font):
    styles = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "ReviewTitle", parent=styles["Title"], fontName=bold_font, fontSize=16, spaceAfter=14, alignment=TA_CENTER
        ),
        "subtitle": ParagraphStyle(
            "ReviewSubtitle", parent=styles["Heading2"], fontName=bold_font, fontSize=12, spaceAfter=8, alignment=TA_CENTER
        ),
        "bold": ParagraphStyle(
            "ReviewBold", parent=styles["Normal"], fontName=bold_font, fontSize=11, spaceAfter=6, alignment=TA_RIGHT
        ),
        "normal": ParagraphStyle(
            "ReviewNormal", parent=styles["Normal"], fontName=font, fontSize=10, leading=13, alignment=TA_RIGHT
        ),
    }


def _para(text, style):
    return Paragraph(escape(visual(text)).replace("\n", "<br/>"), style)


def _table(data, col_widths, font, bold_font, zebra=True):
    data = [[visual(cell) if isinstance(cell, str) else cell for cell in row] for row in data]
    table = Table(data, colWidths=col_widths, repeatRows=1)
    style = TABLE_STYLE + [
        ("FONTNAME", (0, 0), (-1, -1), font),
        ("FONTNAME", (0, 0), (-1, 0), bold_font),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
    ]
    if zebra and len(data) > 2:
        style.append(("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.whitesmoke]))
    table.setStyle(TableStyle(style))
    return table


def _build(elements):
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=36, rightMargin=36, topMargin=50, bottomMargin=36)
    doc.build(elements)
    return buffer.getvalue()


def build_review_pdf(record, font_path=None):
    font, bold_font = register_font(font_path)
    st = _styles(font, bold_font)
    record_type = read_type(record)

    elements = [
        _para(f"סיכום {record_type}", st["title"]),
        _para(format_datetime(resolve_event_date(record)), st["subtitle"]),
        Spacer(1, 8),
    ]
    meta_rows = [
        ["שדה", "ערך"],
        ["גזרה", read_sector(record) or EMPTY],
        ["מבצע", read_name(record) or EMPTY],
        ["תפקיד", read_role(record) or EMPTY],
        ["כוח מתרגל", read_path(record, "meta", "force") or EMPTY],
    ]
    elements.append(_table(meta_rows, [140, 330], font, bold_font, zebra=False))
    elements.append(Spacer(1, 12))

    audit = read_path(record, "audit")
    if record_type == AUDIT_TYPE and isinstance(audit, dict):
        scores = record_scores(record)
        if scores:
            score_rows = [
                ["סופי", "מבצעיות", "תקשוב", "מודיעין", "רפואה"],
                [
                    rating_text(scores.get("overall_0_100")),
                    rating_text(scores.get("operational_0_100")),
                    rating_text(scores.get("technical_0_100")),
                    rating_text(scores.get("intelligence_0_100")),
                    rating_text(scores.get("medical_0_100")),
                ],
            ]
            elements.append(_para("ציונים", st["bold"]))
            elements.append(_table(score_rows, [94] * 5, font, bold_font, zebra=False))
            elements.append(Spacer(1, 10))
        for title, rows in rating_sections(audit):
            elements.append(_para(title, st["bold"]))
            data = [["סעיף", "דירוג"]] + [[label, rating_text(value)] for label, value in rows]
            elements.append(_table(data, [330, 140], font, bold_font))
            elements.append(Spacer(1, 8))
        trained, kind = training_summary(record)
        elements.append(_para(f"תרגול הכוח: {trained}{f' ({kind})' if kind else ''}", st["normal"]))
        elements.append(Spacer(1, 10))

    sections = []
    if record_type != AUDIT_TYPE:
        sections.append(("תיאור התרגול", text_field(record, "exerciseDescription")))
    sections.append(("פערים שעלו מהכוח", text_field(record, "gaps")))
    sections.append(("הערות", text_field(record, "notes")))
    for title, text in sections:
        elements.append(_para(title, st["bold"]))
        elements.append(_para(text or EMPTY, st["normal"]))
        elements.append(Spacer(1, 8))

    keep = list_items(record, "keep")
    improve = list_items(record, "improve")
    length = max(len(keep), len(improve), 1)
    points = [["נקודות לשימור", "נקודות לשיפור"]]
    for idx in range(length):
        points.append(
            [
                _para(keep[idx] if idx < len(keep) else "", st["normal"]),
                _para(improve[idx] if idx < len(improve) else "", st["normal"]),
            ]
        )
    elements.append(_table(points, [235, 235], font, bold_font, zebra=False))
    return _build(elements)


def build_dashboard_pdf(agg, period_label, type_filter=None, font_path=None):
    font, bold_font = register_font(font_path)
    st = _styles(font, bold_font)

    elements = [
        _para("סיכום ביקורות ותרגולים", st["title"]),
        _para(period_label, st["subtitle"]),
    ]
    if type_filter:
        elements.append(_para(f"סוג: {type_filter}", st["subtitle"]))
    elements.append(Spacer(1, 10))

    sector_rows = [["גזרה", DISTINGUISHED_ROLE, OTHER_ROLE_LABEL, "סה״כ"]]
    for sector, bucket in agg["by_sector"].items():
        totals = bucket["totals"]
        distinguished = totals["distinguished_role_count"]
        other = totals["other_role_count"]
        sector_rows.append([sector, str(distinguished), str(other), str(distinguished + other)])
    totals = grand_totals(agg)
    sector_rows.append(
        [
            "סה״כ",
            str(totals["distinguished_role_count"]),
            str(totals["other_role_count"]),
            str(totals["distinguished_role_count"] + totals["other_role_count"]),
        ]
    )
    elements.append(_para("לפי גזרה", st["bold"]))
    elements.append(_table(sector_rows, [170, 100, 100, 100], font, bold_font))
    elements.append(Spacer(1, 14))

    detail_rows = [["גזרה", "סוג", DISTINGUISHED_ROLE, OTHER_ROLE_LABEL, "סה״כ"]]
    for row in dashboard_table_rows(agg):
        detail_rows.append([row["sector"], row["type"], str(row["distinguished"]), str(row["other"]), str(row["total"])])
    if len(detail_rows) == 1:
        detail_rows.append(["", "אין רשומות בטווח", "", "", ""])
    elements.append(_para("לפי גזרה וסוג", st["bold"]))
    elements.append(_table(detail_rows, [110, 150, 70, 70, 70], font, bold_font))
    elements.append(Spacer(1, 10))
    elements.append(_para(f"רשומות שנכללו: {agg['kept']}", st["normal"]))
    return _build(elements)
