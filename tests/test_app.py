"""Route tests through the Flask test client against a temporary database."""

import io
import json
from datetime import datetime, timedelta

import pytest

import app as app_module
from app import fetch_all_reviews, fetch_reviews_page, get_db, get_review, insert_review, parse_dashboard_filters


def seed(flask_app, *docs, created_at=None, event_at=None):
    with flask_app.app_context():
        app_module.init_db()
        db = get_db()
        ids = [insert_review(db, dict(doc), created_at=created_at, event_at=event_at) for doc in docs]
        db.commit()
    return ids


def recent_ts(days=1):
    return (datetime.now() - timedelta(days=days)).strftime("%Y-%m-%d %H:%M:%S")


PATROL = {"type": "סיור", "meta": {"role": 'צמ"מ', "name": "רון", "sector": "איתמר", "force": ""}}
AUDIT = {
    "type": "ביקורת קצה מבצעי",
    "meta": {"role": "מפקד", "name": "דני", "sector": "ברכה", "force": ""},
    "audit": {"posSector": 4, "forceTraining": {"trained": "yes", "trainingType": "practical"}},
    "sections": {"training": {"kind": "מעשי"}},
}


class TestSubmissionForm:
    def test_form_renders(self, client):
        response = client.get("/form")
        assert response.status_code == 200
        assert "ביקורת קצה מבצעי" in response.get_data(as_text=True)

    def test_valid_audit_is_stored_with_score(self, flask_app, client, audit_form):
        response = client.post("/form", data=audit_form)
        assert response.status_code == 302

        with flask_app.app_context():
            records = fetch_all_reviews(get_db())
        assert len(records) == 1
        data = records[0]["data"]
        assert data["schemaVersion"] == 2
        assert data["meta"]["role"] == 'צמ"מ'
        assert data["eventAt"] == "2025-01-05 10:30:00"
        assert data["sections"] == {"training": {"kind": "מעשי"}}
        assert data["score"]["overall_0_100"] == 100
        assert data["keep"] == ["ערנות"]

    def test_missing_fields_are_rejected(self, client, audit_form):
        audit_form.pop("sector")
        audit_form["name"] = ""
        response = client.post("/form", data=audit_form)
        assert response.status_code == 400
        body = response.get_data(as_text=True)
        assert "sector is required" in body
        assert "name is required" in body

    def test_bad_rating_is_rejected(self, client, audit_form):
        audit_form["r_roe"] = "7"
        response = client.post("/form", data=audit_form)
        assert response.status_code == 400
        assert "must be 1-5 or na" in response.get_data(as_text=True)

    def test_unknown_sector_is_rejected(self, client, audit_form):
        audit_form["sector"] = "חברון"
        assert client.post("/form", data=audit_form).status_code == 400

    def test_whatsapp_preview(self, client, audit_form):
        response = client.post("/form/whatsapp", data=audit_form)
        assert response.status_code == 200
        assert response.mimetype == "text/plain"
        text = response.get_data(as_text=True)
        assert "ציון סופי: *100*" in text
        assert "05.01.2025 10:30" in text

    def test_whatsapp_preview_error(self, client):
        response = client.post("/form/whatsapp", data={"type": "סיור"})
        assert response.status_code == 400
        assert response.get_json()["success"] is False

    def test_pdf_preview(self, client, audit_form):
        response = client.post("/form/pdf", data=audit_form)
        assert response.status_code == 200
        assert response.data.startswith(b"%PDF")


class TestAuth:
    def test_reports_require_login(self, client):
        response = client.get("/reports")
        assert response.status_code == 302
        assert "/login" in response.headers["Location"]

    def test_api_requires_login(self, client):
        response = client.get("/api/dashboard")
        assert response.status_code == 401
        assert response.get_json()["success"] is False

    def test_bad_password(self, client):
        response = client.post("/login", data={"email": app_module.DEFAULT_ADMIN_EMAIL, "password": "wrong"})
        assert response.status_code == 401

    def test_login_and_logout(self, admin_client):
        assert admin_client.get("/dashboard").status_code == 200
        admin_client.get("/logout")
        assert admin_client.get("/dashboard").status_code == 302


class TestDashboardApi:
    def test_counts(self, flask_app, admin_client):
        seed(flask_app, PATROL, AUDIT, created_at=recent_ts(), event_at=recent_ts())
        body = admin_client.get("/api/dashboard?days=30").get_json()
        assert body["success"] is True
        assert body["kept"] == 2
        assert body["fetched"] == 2
        assert body["types"] == ["ביקורת קצה מבצעי", "סיור", "תרגול משימה"]
        assert body["by_sector"]["ברכה"]["by_type"]["תרגול משימה"] == {
            "distinguished_role_count": 0,
            "other_role_count": 1,
        }
        assert body["totals"] == {"distinguished_role_count": 1, "other_role_count": 2}
        assert "איתמר" in body["whatsapp_text"]

    def test_old_events_are_excluded(self, flask_app, admin_client):
        seed(flask_app, PATROL, created_at=recent_ts(), event_at=recent_ts(days=60))
        assert admin_client.get("/api/dashboard?days=30").get_json()["kept"] == 0

    def test_custom_range_and_type(self, flask_app, admin_client):
        seed(flask_app, PATROL, AUDIT, created_at=recent_ts(), event_at="2025-01-05 10:00:00")
        body = admin_client.get(
            "/api/dashboard?days=custom&date_from=2025-01-05&date_to=2025-01-05&type=סיור"
        ).get_json()
        assert body["kept"] == 1
        assert body["types"] == ["סיור"]

    def test_invalid_date(self, admin_client):
        response = admin_client.get("/api/dashboard?days=custom&date_from=05/01/2025")
        assert response.status_code == 400
        assert "Invalid from date" in response.get_json()["error"]

    def test_dashboard_pdf(self, flask_app, admin_client):
        seed(flask_app, PATROL, created_at=recent_ts())
        response = admin_client.get("/dashboard/pdf?days=7")
        assert response.status_code == 200
        assert response.data.startswith(b"%PDF")

    def test_stats(self, flask_app, admin_client):
        seed(flask_app, PATROL, PATROL, AUDIT, created_at=recent_ts())
        body = admin_client.get("/api/stats?group_by=sector").get_json()
        assert body["counts"] == {"איתמר": 2, "ברכה": 1}
        assert admin_client.get("/api/stats?group_by=force").status_code == 400


class TestReports:
    def test_list_and_filters(self, flask_app, admin_client):
        seed(flask_app, PATROL, AUDIT, created_at=recent_ts())
        body = admin_client.get("/reports").get_data(as_text=True)
        assert "<td>רון</td>" in body and "<td>דני</td>" in body

        body = admin_client.get("/reports?sector=ברכה").get_data(as_text=True)
        assert "<td>דני</td>" in body and "<td>רון</td>" not in body

        body = admin_client.get("/reports?name=רו").get_data(as_text=True)
        assert "<td>רון</td>" in body and "<td>דני</td>" not in body

    def test_detail_whatsapp_and_pdf(self, flask_app, admin_client):
        (review_id,) = seed(flask_app, AUDIT, created_at=recent_ts())
        assert admin_client.get(f"/reports/{review_id}").status_code == 200
        text = admin_client.get(f"/reports/{review_id}/whatsapp").get_data(as_text=True)
        assert "ציון סופי: *80*" in text
        assert admin_client.get(f"/reports/{review_id}/pdf").data.startswith(b"%PDF")

    def test_missing_review(self, admin_client):
        assert admin_client.get("/reports/999").status_code == 302
        assert admin_client.get("/reports/999/whatsapp").status_code == 404

    def test_edit(self, flask_app, admin_client):
        legacy = dict(PATROL, sector="לב השומרון")
        (review_id,) = seed(flask_app, legacy, created_at=recent_ts())
        response = admin_client.post(
            f"/reports/{review_id}/edit",
            data={
                "name": "רון כהן",
                "role": "צמ״מ",
                "sector": "ברכה",
                "force": "",
                "event_at": "2025-02-01 08:00",
                "gaps": "פער",
                "notes": "",
                "keep": "א\nב\nג\nד",
                "improve": "",
                "exercise_description": "תיאור",
            },
        )
        assert response.status_code == 302
        with flask_app.app_context():
            data = get_review(get_db(), review_id)["data"]
        assert data["meta"]["name"] == "רון כהן"
        assert data["meta"]["sector"] == "ברכה"
        assert "sector" not in data
        assert data["eventAt"] == "2025-02-01 08:00:00"
        assert data["keep"] == ["א", "ב", "ג"]
        assert data["exerciseDescription"] == "תיאור"

    def test_edit_rejects_unknown_sector(self, flask_app, admin_client):
        (review_id,) = seed(flask_app, PATROL, created_at=recent_ts())
        response = admin_client.post(
            f"/reports/{review_id}/edit",
            data={"name": "רון", "role": "מפקד", "sector": "חברון", "gaps": "שונה"},
        )
        assert response.status_code == 400
        assert "Unknown sector" in response.get_data(as_text=True)
        with flask_app.app_context():
            data = get_review(get_db(), review_id)["data"]
        assert data["meta"]["sector"] == "איתמר"
        assert "gaps" not in data

    def test_delete(self, flask_app, admin_client):
        (review_id,) = seed(flask_app, PATROL, created_at=recent_ts())
        assert admin_client.post(f"/reports/{review_id}/delete").status_code == 302
        with flask_app.app_context():
            assert get_review(get_db(), review_id) is None

    def test_export_json(self, flask_app, admin_client):
        seed(flask_app, PATROL, AUDIT, created_at=recent_ts())
        response = admin_client.get("/reports/export.json")
        assert "attachment" in response.headers["Content-Disposition"]
        exported = json.loads(response.get_data(as_text=True))
        assert {item["type"] for item in exported} == {"סיור", "ביקורת קצה מבצעי"}

    def test_export_xlsx(self, flask_app, admin_client):
        seed(flask_app, PATROL, created_at=recent_ts())
        response = admin_client.get("/reports/export.xlsx")
        assert response.status_code == 200
        assert response.data[:2] == b"PK"

    def test_import_round_trip(self, flask_app, admin_client):
        payload = json.dumps(
            [dict(PATROL, id=5, createdAt="2025-01-01T09:00:00Z"), dict(AUDIT, eventAt="2025-01-02T10:00:00")],
            ensure_ascii=False,
        ).encode("utf-8")
        response = admin_client.post(
            "/reports/import",
            data={"import_file": (io.BytesIO(payload), "export.json")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 302
        with flask_app.app_context():
            records = fetch_all_reviews(get_db())
        assert len(records) == 2
        assert any(r["data"].get("eventAt") == "2025-01-02 10:00:00" for r in records)

    def test_import_rejects_non_list(self, flask_app, admin_client):
        response = admin_client.post(
            "/reports/import",
            data={"import_file": (io.BytesIO(b'{"type": "x"}'), "export.json")},
            content_type="multipart/form-data",
            follow_redirects=True,
        )
        assert "JSON list" in response.get_data(as_text=True)
        with flask_app.app_context():
            assert fetch_all_reviews(get_db()) == []


class TestPagedFetch:
    def test_pages_do_not_overlap(self, flask_app):
        ids = seed(flask_app, *[PATROL] * 5, created_at="2025-01-01 10:00:00")
        with flask_app.app_context():
            db = get_db()
            seen = []
            cursor = None
            while True:
                page, cursor = fetch_reviews_page(db, 2, cursor=cursor)
                seen.extend(r["id"] for r in page)
                if cursor is None:
                    break
        assert seen == sorted(ids, reverse=True)

    def test_fetch_all_respects_max_docs(self, flask_app):
        seed(flask_app, *[PATROL] * 5, created_at=recent_ts())
        with flask_app.app_context():
            assert len(fetch_all_reviews(get_db(), max_docs=3, page_size=2)) == 3

    def test_sector_filter_reads_root_and_meta(self, flask_app):
        seed(flask_app, PATROL, {"type": "סיור", "sector": "איתמר"}, AUDIT, created_at=recent_ts())
        with flask_app.app_context():
            page, _cursor = fetch_reviews_page(get_db(), 10, sector="איתמר")
        assert len(page) == 2


class TestDashboardFilters:
    now = datetime(2025, 3, 10, 12, 0)

    def test_default_days(self):
        start, end, type_filter, label = parse_dashboard_filters({}, now=self.now)
        assert start == self.now - timedelta(days=30)
        assert end is None and type_filter is None
        assert label == "30 ימים אחרונים"

    def test_custom_to_date_is_inclusive(self):
        start, end, _type, _label = parse_dashboard_filters(
            {"days": "custom", "date_from": "2025-03-01", "date_to": "2025-03-02"}, now=self.now
        )
        assert start == datetime(2025, 3, 1)
        assert end == datetime(2025, 3, 2, 23, 59, 59, 999999)

    def test_custom_without_to_date_uses_today(self):
        _start, end, _type, _label = parse_dashboard_filters({"days": "custom", "date_from": "2025-03-01"}, now=self.now)
        assert end.date() == self.now.date()

    @pytest.mark.parametrize(
        "args",
        [
            {"days": "custom"},
            {"days": "custom", "date_from": "2025-03-05", "date_to": "2025-03-01"},
            {"days": "abc"},
            {"days": "0"},
        ],
    )
    def test_invalid(self, args):
        with pytest.raises(ValueError):
            parse_dashboard_filters(args, now=self.now)
