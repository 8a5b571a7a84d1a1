import io
import json
import logging
import os
import sqlite3
from datetime import datetime, timedelta
from functools import wraps

import pandas as pd
from flask import (
    Flask,
    flash,
    g,
    jsonify,
    make_response,
    redirect,
    render_template,
    request,
    send_file,
    session,
    url_for,
)
from werkzeug.security import check_password_hash, generate_password_hash

from aggregator import aggregate, count_by, grand_totals
from normalizer import (
    AUDIT_TYPE,
    DISTINGUISHED_ROLE,
    METHODICAL_KIND,
    PRACTICAL_KIND,
    REVIEW_TYPES,
    SECTORS,
    normalize_role,
    to_datetime,
)
from pdf_report import build_dashboard_pdf, build_review_pdf
from scoring import NA_SENTINEL, RATING_GROUPS, compute_scores, overall_display, record_scores, score_band
from summaries import (
    KEEP_IMPROVE_LIMIT,
    build_dashboard_whatsapp_text,
    build_whatsapp_text,
    dashboard_table_rows,
    format_datetime,
    rating_sections,
    record_rows,
    traffic_icon,
    training_summary,
)

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
# Local SQLite document store. APP_DATA_DIR pins it to a fixed directory.
DATA_DIR = os.getenv("APP_DATA_DIR", BASE_DIR)
os.makedirs(DATA_DIR, exist_ok=True)
DATABASE = os.path.join(DATA_DIR, "reviews.db")
DEFAULT_ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
DEFAULT_ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "1234")
FETCH_PAGE_SIZE = int(os.getenv("FETCH_PAGE_SIZE", "500"))
MAX_FETCH_DOCS = int(os.getenv("MAX_FETCH_DOCS", "5000"))
REPORTS_PAGE_SIZE = int(os.getenv("REPORTS_PAGE_SIZE", "200"))
DEFAULT_DAYS_BACK = int(os.getenv("DEFAULT_DAYS_BACK", "30"))
PDF_FONT_PATH = os.getenv("PDF_FONT_PATH", "")
SCHEMA_VERSION = 2
RATING_CHOICES = ["1", "2", "3", "4", "5", NA_SENTINEL]

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "change-this-secret-key")
app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024
app.config["DB_INITIALIZED"] = False


# ---------------------------
# Database helpers
# ---------------------------
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(DATABASE)
        g.db.row_factory = sqlite3.Row
    return g.db


@app.teardown_appcontext
def close_db(_error):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    db.executescript(
        """
        CREATE TABLE IF NOT EXISTS admins (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS reviews (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            event_at TEXT,
            doc_json TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_reviews_created ON reviews (created_at DESC, id DESC);
        """
    )
    migrate_reviews_table(db)

    admin = db.execute("SELECT id FROM admins LIMIT 1").fetchone()
    if not admin:
        db.execute(
            "INSERT INTO admins (email, password_hash, created_at) VALUES (?, ?, ?)",
            (DEFAULT_ADMIN_EMAIL, generate_password_hash(DEFAULT_ADMIN_PASSWORD), now_ts()),
        )
        logger.info("Seeded default admin %s", DEFAULT_ADMIN_EMAIL)
    db.commit()
    logger.info("Database ready at %s", DATABASE)


def migrate_reviews_table(db):
    cols = db.execute("PRAGMA table_info(reviews)").fetchall()
    col_names = {c["name"] for c in cols}
    if "updated_at" in col_names:
        return
    db.execute("ALTER TABLE reviews ADD COLUMN updated_at TEXT")


@app.before_request
def ensure_db_initialized():
    if not app.config["DB_INITIALIZED"]:
        init_db()
        app.config["DB_INITIALIZED"] = True


def now_ts():
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def to_ts(value):
    return value.strftime("%Y-%m-%d %H:%M:%S")


def row_to_record(row):
    try:
        data = json.loads(row["doc_json"])
    except (TypeError, ValueError):
        data = {}
    if not isinstance(data, dict):
        data = {}
    data["createdAt"] = row["created_at"]
    if row["event_at"]:
        data["eventAt"] = row["event_at"]
    else:
        data.pop("eventAt", None)
    return {"id": row["id"], "data": data}


def stored_doc(data):
    """The JSON document without the timestamp fields kept in their own columns."""
    return json.dumps(
        {k: v for k, v in data.items() if k not in ("createdAt", "eventAt")},
        ensure_ascii=False,
    )


def insert_review(db, data, created_at=None, event_at=None):
    cur = db.execute(
        """
        INSERT INTO reviews (type, created_at, event_at, doc_json, updated_at)
        VALUES (?, ?, ?, ?, NULL)
        """,
        (str(data.get("type") or ""), created_at or now_ts(), event_at, stored_doc(data)),
    )
    return cur.lastrowid


def get_review(db, review_id):
    row = db.execute("SELECT * FROM reviews WHERE id = ?", (review_id,)).fetchone()
    return row_to_record(row) if row else None


# ---------------------------
# Paged retrieval
# ---------------------------
SECTOR_SQL = (
    "TRIM(COALESCE(NULLIF(TRIM(json_extract(doc_json, '$.sector')), ''), "
    "json_extract(doc_json, '$.meta.sector'), ''))"
)


def encode_cursor(record):
    return f"{record['data']['createdAt']}|{record['id']}"


def decode_cursor(raw):
    if not raw or "|" not in raw:
        return None
    created_at, _, review_id = raw.rpartition("|")
    try:
        return created_at, int(review_id)
    except ValueError:
        return None


def fetch_reviews_page(db, page_size, cursor=None, since=None, type_filter=None, sector=None):
    """One page ordered newest first, plus the cursor for the next page (None on a short page)."""
    filters = ["1 = 1"]
    params = []
    if since:
        filters.append("created_at >= ?")
        params.append(to_ts(since))
    if type_filter:
        filters.append("type = ?")
        params.append(type_filter)
    if sector:
        filters.append(f"{SECTOR_SQL} = ?")
        params.append(sector)
    if cursor:
        filters.append("(created_at < ? OR (created_at = ? AND id < ?))")
        params.extend([cursor[0], cursor[0], cursor[1]])
    params.append(page_size)

    rows = db.execute(
        f"""
        SELECT *
        FROM reviews
        WHERE {" AND ".join(filters)}
        ORDER BY created_at DESC, id DESC
        LIMIT ?
        """,
        tuple(params),
    ).fetchall()
    records = [row_to_record(r) for r in rows]
    next_cursor = None
    if len(records) == page_size:
        last = records[-1]
        next_cursor = (last["data"]["createdAt"], last["id"])
    return records, next_cursor


def fetch_all_reviews(db, max_docs=None, page_size=None, since=None):
    max_docs = max_docs or MAX_FETCH_DOCS
    page_size = page_size or FETCH_PAGE_SIZE
    out = []
    cursor = None
    while len(out) < max_docs:
        batch, cursor = fetch_reviews_page(db, page_size, cursor=cursor, since=since)
        out.extend(batch)
        if cursor is None:
            break
    return out[:max_docs]


# ---------------------------
# Auth helpers
# ---------------------------
def current_user():
    uid = session.get("admin_id")
    if not uid:
        return None
    return get_db().execute("SELECT id, email FROM admins WHERE id = ?", (uid,)).fetchone()


def login_required(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        if "admin_id" not in session:
            if request.path.startswith("/api/"):
                return jsonify({"success": False, "error": "Login required"}), 401
            return redirect(url_for("login", next=request.path))
        if not current_user():
            session.clear()
            flash("Session expired. Please login again.", "danger")
            return redirect(url_for("login"))
        return func(*args, **kwargs)

    return wrapper


# ---------------------------
# Form parsing
# ---------------------------
def form_text(form, key):
    return (form.get(key) or "").strip()


def form_list(form, prefix):
    items = [form_text(form, f"{prefix}{i}") for i in range(1, KEEP_IMPROVE_LIMIT + 1)]
    return [item for item in items if item]


def lines_list(raw):
    items = [line.strip() for line in (raw or "").splitlines()]
    return [item for item in items if item][:KEEP_IMPROVE_LIMIT]


def parse_event_at(raw):
    raw = (raw or "").strip()
    if not raw:
        return None
    value = to_datetime(raw)
    if value is None:
        raise ValueError(f"Invalid date/time '{raw}'")
    return to_ts(value)


def parse_audit(form, errors):
    audit = {}
    for group in RATING_GROUPS:
        for field, label in group["fields"]:
            raw = form_text(form, f"r_{field}") or NA_SENTINEL
            if raw.lower() == NA_SENTINEL:
                audit[field] = NA_SENTINEL
            elif raw in RATING_CHOICES:
                audit[field] = int(raw)
            else:
                errors.append(f"{label}: rating '{raw}' must be 1-5 or {NA_SENTINEL}")

    trained = form_text(form, "training_trained")
    training_type = form_text(form, "training_type")
    if trained not in ("", "yes", "no"):
        errors.append("training_trained must be yes or no")
    if training_type not in ("", "practical", "methodical"):
        errors.append("training_type must be practical or methodical")
    audit["forceTraining"] = {
        "trained": trained or None,
        "trainingType": training_type if trained == "yes" else None,
    }
    return audit


def parse_review_form(form):
    """Build a review document from the submission form. Raises ValueError listing every problem."""
    errors = []
    review_type = form_text(form, "type")
    role = normalize_role(form_text(form, "role"))
    name = form_text(form, "name")
    sector = form_text(form, "sector")
    force = form_text(form, "force")

    if not review_type:
        errors.append("type is required")
    if not role:
        errors.append("role is required")
    if not name:
        errors.append("name is required")
    if not sector:
        errors.append("sector is required")
    elif sector not in SECTORS:
        errors.append(f"Unknown sector '{sector}'")

    event_at = None
    try:
        event_at = parse_event_at(form.get("event_at"))
    except ValueError as ex:
        errors.append(str(ex))

    data = {
        "type": review_type,
        "meta": {"role": role, "name": name, "sector": sector, "force": force},
        "audit": None,
        "gaps": form_text(form, "gaps"),
        "notes": form_text(form, "notes"),
        "keep": form_list(form, "keep"),
        "improve": form_list(form, "improve"),
        "schemaVersion": SCHEMA_VERSION,
    }

    if review_type == AUDIT_TYPE:
        audit = parse_audit(form, errors)
        data["audit"] = audit
        training = audit["forceTraining"]
        if training["trained"] == "yes" and training["trainingType"]:
            kind = PRACTICAL_KIND if training["trainingType"] == "practical" else METHODICAL_KIND
            data["sections"] = {"training": {"kind": kind}}
    else:
        data["exerciseDescription"] = form_text(form, "exercise_description")

    if errors:
        preview = "; ".join(errors[:8])
        remaining = len(errors) - 8
        if remaining > 0:
            preview += f"; and {remaining} more error(s)"
        raise ValueError("Form validation failed: " + preview)

    if data["audit"]:
        data["score"] = compute_scores(data["audit"])
    if event_at:
        data["eventAt"] = event_at
    return data


def parse_review_edit(form, record):
    data = dict(record["data"])
    meta = {
        "name": form_text(form, "name"),
        "role": normalize_role(form_text(form, "role")),
        "sector": form_text(form, "sector"),
        "force": form_text(form, "force"),
    }
    sector = meta["sector"]
    if sector not in SECTORS:
        raise ValueError(f"Unknown sector '{sector}'")
    event_at = parse_event_at(form.get("event_at"))
    data["meta"] = {**(data.get("meta") or {}), **meta}
    # Root copies from old schema versions would shadow the edited meta values.
    for key in ("role", "sector", "name"):
        data.pop(key, None)
    data["gaps"] = form_text(form, "gaps")
    data["notes"] = form_text(form, "notes")
    data["keep"] = lines_list(form.get("keep"))
    data["improve"] = lines_list(form.get("improve"))
    if data.get("type") != AUDIT_TYPE:
        data["exerciseDescription"] = form_text(form, "exercise_description")
    return data, event_at


# ---------------------------
# Dashboard filters
# ---------------------------
def parse_date_arg(raw, label):
    try:
        return datetime.strptime(raw, "%Y-%m-%d")
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {label} date '{raw}'. Use YYYY-MM-DD.") from None


def parse_dashboard_filters(args, now=None):
    """(from_date, to_date_end, type_filter, period_label) from query args."""
    now = now or datetime.now()
    days = (args.get("days") or str(DEFAULT_DAYS_BACK)).strip()
    type_filter = (args.get("type") or "").strip() or None

    if days == "custom":
        from_date = parse_date_arg((args.get("date_from") or "").strip(), "from")
        raw_to = (args.get("date_to") or "").strip()
        to_day = parse_date_arg(raw_to, "to") if raw_to else now
        to_date_end = to_day.replace(hour=23, minute=59, second=59, microsecond=999999)
        if to_date_end < from_date:
            raise ValueError("date_to must not be before date_from")
        label = f"טווח מותאם ({from_date:%d.%m.%Y} עד {to_date_end:%d.%m.%Y})"
        return from_date, to_date_end, type_filter, label

    try:
        days_back = int(days)
    except ValueError:
        raise ValueError(f"Invalid days value '{days}'") from None
    if days_back <= 0:
        raise ValueError("days must be positive")
    return now - timedelta(days=days_back), None, type_filter, f"{days_back} ימים אחרונים"


def load_dashboard(args):
    from_date, to_date_end, type_filter, label = parse_dashboard_filters(args)
    records = fetch_all_reviews(get_db())
    agg = aggregate(records, from_date, to_date_end=to_date_end, type_filter=type_filter)
    logger.info("Dashboard load: fetched=%s kept=%s (%s)", len(records), agg["kept"], label)
    return agg, len(records), type_filter, label


def attachment(content, mimetype, filename):
    response = make_response(content)
    response.headers["Content-Type"] = mimetype
    response.headers["Content-Disposition"] = f"attachment; filename={filename}"
    return response


def pdf_response(content, filename):
    return send_file(io.BytesIO(content), mimetype="application/pdf", as_attachment=False, download_name=filename)


# ---------------------------
# Submission form (public)
# ---------------------------
def render_form(values=None):
    return render_template(
        "form.html",
        values=values or {},
        sectors=SECTORS,
        review_types=REVIEW_TYPES,
        audit_type=AUDIT_TYPE,
        rating_groups=RATING_GROUPS,
        rating_choices=RATING_CHOICES,
        distinguished_role=DISTINGUISHED_ROLE,
        keep_limit=KEEP_IMPROVE_LIMIT,
    )


@app.route("/", methods=["GET", "POST"])
@app.route("/form", methods=["GET", "POST"])
def review_form():
    if request.method == "POST":
        try:
            data = parse_review_form(request.form)
        except ValueError as ex:
            flash(str(ex), "danger")
            return render_form(request.form), 400

        db = get_db()
        review_id = insert_review(db, data, event_at=data.pop("eventAt", None))
        db.commit()
        logger.info("Review %s created (type=%s)", review_id, data["type"])
        flash("✅ נשמר בהצלחה", "success")
        return redirect(url_for("review_form"))

    return render_form()


@app.route("/form/whatsapp", methods=["POST"])
def form_whatsapp():
    try:
        data = parse_review_form(request.form)
    except ValueError as ex:
        return jsonify({"success": False, "error": str(ex)}), 400
    data.setdefault("createdAt", now_ts())
    return make_response(build_whatsapp_text(data), 200, {"Content-Type": "text/plain; charset=utf-8"})


@app.route("/form/pdf", methods=["POST"])
def form_pdf():
    try:
        data = parse_review_form(request.form)
    except ValueError as ex:
        return jsonify({"success": False, "error": str(ex)}), 400
    data.setdefault("createdAt", now_ts())
    return pdf_response(build_review_pdf(data, font_path=PDF_FONT_PATH), "review.pdf")


# ---------------------------
# Login
# ---------------------------
@app.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "").strip()

        db = get_db()
        admin = db.execute("SELECT * FROM admins WHERE lower(email) = ?", (email,)).fetchone()
        if not admin or not check_password_hash(admin["password_hash"], password):
            logger.warning("Failed login for %s", email or "<empty>")
            flash("❌ התחברות נכשלה (בדוק אימייל/סיסמה)", "danger")
            return render_template("login.html"), 401

        session["admin_id"] = admin["id"]
        next_path = request.args.get("next") or ""
        if next_path.startswith("/") and not next_path.startswith("//"):
            return redirect(next_path)
        return redirect(url_for("dashboard"))

    return render_template("login.html")


@app.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("login"))


# ---------------------------
# Reports
# ---------------------------
@app.route("/reports")
@login_required
def reports():
    type_filter = request.args.get("type", "").strip()
    sector = request.args.get("sector", "").strip()
    name = request.args.get("name", "").strip().lower()
    try:
        days_back = int(request.args.get("days") or DEFAULT_DAYS_BACK)
    except ValueError:
        days_back = DEFAULT_DAYS_BACK
    since = datetime.now() - timedelta(days=max(days_back, 1))

    page, next_cursor = fetch_reviews_page(
        get_db(),
        REPORTS_PAGE_SIZE,
        cursor=decode_cursor(request.args.get("cursor")),
        since=since,
        type_filter=type_filter or None,
        sector=sector or None,
    )
    rows = page
    if name:
        rows = [r for r in page if name in str((r["data"].get("meta") or {}).get("name") or "").lower()]

    more_args = None
    if next_cursor:
        more_args = {k: v for k, v in request.args.items() if k != "cursor"}
        more_args["cursor"] = f"{next_cursor[0]}|{next_cursor[1]}"

    return render_template(
        "reports.html",
        rows=rows,
        more_args=more_args,
        filters={"type": type_filter, "sector": sector, "name": name, "days": days_back},
        sectors=SECTORS,
        review_types=REVIEW_TYPES,
    )


def review_or_redirect(review_id):
    record = get_review(get_db(), review_id)
    if not record:
        flash("Review not found.", "danger")
    return record


@app.route("/reports/<int:review_id>")
@login_required
def review_detail(review_id):
    record = review_or_redirect(review_id)
    if not record:
        return redirect(url_for("reports"))
    return render_template(
        "review_detail.html",
        record=record,
        scores=record_scores(record),
        sections=rating_sections(record["data"].get("audit")),
        training=training_summary(record),
        audit_type=AUDIT_TYPE,
    )


@app.route("/reports/<int:review_id>/edit", methods=["GET", "POST"])
@login_required
def review_edit(review_id):
    record = review_or_redirect(review_id)
    if not record:
        return redirect(url_for("reports"))

    if request.method == "POST":
        try:
            data, event_at = parse_review_edit(request.form, record)
        except ValueError as ex:
            flash(str(ex), "danger")
            return render_template("review_edit.html", record=record, audit_type=AUDIT_TYPE, sectors=SECTORS), 400

        db = get_db()
        db.execute(
            "UPDATE reviews SET doc_json = ?, event_at = COALESCE(?, event_at), updated_at = ? WHERE id = ?",
            (stored_doc(data), event_at, now_ts(), review_id),
        )
        db.commit()
        logger.info("Review %s updated", review_id)
        flash("Review updated.", "success")
        return redirect(url_for("review_detail", review_id=review_id))

    return render_template("review_edit.html", record=record, audit_type=AUDIT_TYPE, sectors=SECTORS)


@app.route("/reports/<int:review_id>/delete", methods=["POST"])
@login_required
def review_delete(review_id):
    db = get_db()
    cur = db.execute("DELETE FROM reviews WHERE id = ?", (review_id,))
    db.commit()
    if cur.rowcount:
        logger.info("Review %s deleted", review_id)
        flash("נמחק בהצלחה", "success")
    else:
        flash("Review not found.", "danger")
    return redirect(url_for("reports"))


@app.route("/reports/<int:review_id>/whatsapp")
@login_required
def review_whatsapp(review_id):
    record = get_review(get_db(), review_id)
    if not record:
        return jsonify({"success": False, "error": "Review not found"}), 404
    return make_response(build_whatsapp_text(record), 200, {"Content-Type": "text/plain; charset=utf-8"})


@app.route("/reports/<int:review_id>/pdf")
@login_required
def review_pdf(review_id):
    record = get_review(get_db(), review_id)
    if not record:
        return jsonify({"success": False, "error": "Review not found"}), 404
    return pdf_response(build_review_pdf(record, font_path=PDF_FONT_PATH), f"review_{review_id}.pdf")


@app.route("/reports/export.json")
@login_required
def reports_export_json():
    out = []
    for record in fetch_all_reviews(get_db(), max_docs=10**9):
        data = record["data"]
        out.append(
            {
                "id": record["id"],
                "createdAt": data.get("createdAt"),
                "eventAt": data.get("eventAt"),
                "schemaVersion": data.get("schemaVersion"),
                "type": data.get("type"),
                "meta": data.get("meta"),
                "audit": data.get("audit"),
                "score": data.get("score"),
                "exerciseDescription": data.get("exerciseDescription"),
                "gaps": data.get("gaps"),
                "notes": data.get("notes"),
                "keep": data.get("keep"),
                "improve": data.get("improve"),
            }
        )
    content = json.dumps(out, ensure_ascii=False, indent=2)
    return attachment(content, "application/json; charset=utf-8", "all_reviews_export.json")


@app.route("/reports/export.xlsx")
@login_required
def reports_export_xlsx():
    records = fetch_all_reviews(get_db(), max_docs=10**9)
    df = pd.DataFrame(record_rows(records))
    buffer = io.BytesIO()
    df.to_excel(buffer, index=False, engine="openpyxl")
    buffer.seek(0)
    return send_file(buffer, as_attachment=True, download_name="reviews.xlsx")


def parse_import_payload(raw_bytes):
    try:
        payload = json.loads(raw_bytes.decode("utf-8-sig"))
    except (UnicodeDecodeError, ValueError) as ex:
        raise ValueError(f"Could not parse JSON file: {ex}") from ex
    if not isinstance(payload, list):
        raise ValueError("Import file must contain a JSON list of reviews.")

    items = []
    errors = []
    for idx, item in enumerate(payload, start=1):
        if not isinstance(item, dict):
            errors.append(f"Item {idx}: not an object")
            continue
        created = to_datetime(item.get("createdAt"))
        event = to_datetime(item.get("eventAt"))
        data = {k: v for k, v in item.items() if k not in ("id", "createdAt", "eventAt")}
        items.append((data, to_ts(created) if created else now_ts(), to_ts(event) if event else None))

    if errors:
        preview = "; ".join(errors[:8])
        remaining = len(errors) - 8
        if remaining > 0:
            preview += f"; and {remaining} more error(s)"
        raise ValueError("Import validation failed: " + preview)
    return items


@app.route("/reports/import", methods=["POST"])
@login_required
def reports_import():
    upload = request.files.get("import_file")
    if not upload:
        flash("Choose a JSON export file to import.", "danger")
        return redirect(url_for("reports"))
    try:
        items = parse_import_payload(upload.read())
    except ValueError as ex:
        flash(str(ex), "danger")
        return redirect(url_for("reports"))

    db = get_db()
    for data, created_at, event_at in items:
        insert_review(db, data, created_at=created_at, event_at=event_at)
    db.commit()
    logger.info("Imported %s review(s)", len(items))
    flash(f"Imported {len(items)} review(s).", "success")
    return redirect(url_for("reports"))


# ---------------------------
# Dashboard
# ---------------------------
@app.route("/dashboard")
@login_required
def dashboard():
    return render_template(
        "dashboard.html",
        review_types=REVIEW_TYPES,
        default_days=DEFAULT_DAYS_BACK,
        distinguished_role=DISTINGUISHED_ROLE,
    )


@app.route("/api/dashboard")
@login_required
def api_dashboard():
    try:
        agg, fetched, type_filter, label = load_dashboard(request.args)
    except ValueError as ex:
        return jsonify({"success": False, "error": str(ex)}), 400
    return jsonify(
        {
            "success": True,
            "period": label,
            "fetched": fetched,
            "kept": agg["kept"],
            "types": agg["types"],
            "by_sector": agg["by_sector"],
            "totals": grand_totals(agg),
            "rows": dashboard_table_rows(agg),
            "whatsapp_text": build_dashboard_whatsapp_text(agg, label, type_filter=type_filter),
        }
    )


@app.route("/dashboard/pdf")
@login_required
def dashboard_pdf():
    try:
        agg, _fetched, type_filter, label = load_dashboard(request.args)
    except ValueError as ex:
        return jsonify({"success": False, "error": str(ex)}), 400
    content = build_dashboard_pdf(agg, label, type_filter=type_filter, font_path=PDF_FONT_PATH)
    return pdf_response(content, "dashboard.pdf")


@app.route("/api/stats")
@login_required
def api_stats():
    group_by = request.args.get("group_by", "type").strip()
    try:
        days_back = int(request.args.get("days") or DEFAULT_DAYS_BACK)
    except ValueError:
        return jsonify({"success": False, "error": "Bad days value"}), 400
    since = datetime.now() - timedelta(days=max(days_back, 1))
    records = fetch_all_reviews(get_db(), since=since)
    try:
        counts = count_by(
            records,
            group_by,
            sector=request.args.get("sector", "").strip() or None,
            type_filter=request.args.get("type", "").strip() or None,
            role=request.args.get("role", "").strip() or None,
        )
    except ValueError as ex:
        return jsonify({"success": False, "error": str(ex)}), 400
    return jsonify(
        {
            "success": True,
            "counts": counts,
            "total": len(records),
            "group_by": group_by,
            "days": days_back,
        }
    )


@app.context_processor
def inject_helpers():
    return {
        "session_user": current_user(),
        "format_datetime": format_datetime,
        "overall_display": overall_display,
        "score_band": score_band,
        "traffic_icon": traffic_icon,
    }


if __name__ == "__main__":
    with app.app_context():
        init_db()
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 5000)),
        debug=os.environ.get("FLASK_DEBUG", "0") == "1",
    )
