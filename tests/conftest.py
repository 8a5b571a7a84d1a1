"""Shared pytest fixtures for the review collector tests."""

from datetime import datetime, timedelta

import pytest

import app as app_module

ALL_FIVE = {
    "posSector": 5,
    "missionBriefing": 5,
    "sectorHistory": 5,
    "threatUnderstanding": 5,
    "appearance": 5,
    "effort": 5,
    "drills": 5,
    "roe": 5,
    "systems": 5,
    "communication": 5,
    "intelTools": 5,
    "medical": 5,
}


@pytest.fixture
def now():
    return datetime.now().replace(microsecond=0)


@pytest.fixture
def make_record(now):
    """Factory for bare-dict review records, dated a day before `now` by default."""

    def _make(review_type="סיור", sector="ברכה", role="מפקד", event_at=None, **extra):
        record = {
            "type": review_type,
            "meta": {"role": role, "name": "ישראל", "sector": sector, "force": "כיתת כוננות"},
            "eventAt": (event_at or now - timedelta(days=1)).isoformat(),
            "createdAt": now.isoformat(),
        }
        record.update(extra)
        return record

    return _make


@pytest.fixture
def scenario_records(make_record, now):
    """Two audits in ברכה (one with a practical drill) and a patrol in איתמר, all rated 4."""
    all_four = {field: 4 for field in ALL_FIVE}
    return [
        make_record("ביקורת קצה מבצעי", sector="ברכה", role='צמ"מ', audit=dict(all_four)),
        make_record(
            "ביקורת קצה מבצעי",
            sector="ברכה",
            role="other",
            event_at=now - timedelta(days=2),
            audit=dict(all_four),
            trainingKind="מעשי",
        ),
        make_record("סיור", sector="איתמר", role='צמ"מ', event_at=now - timedelta(days=3)),
    ]


@pytest.fixture
def flask_app(tmp_path, monkeypatch):
    monkeypatch.setattr(app_module, "DATABASE", str(tmp_path / "reviews.db"))
    app_module.app.config.update(TESTING=True, DB_INITIALIZED=False, SECRET_KEY="test-secret")
    yield app_module.app
    app_module.app.config["DB_INITIALIZED"] = False


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def admin_client(client):
    response = client.post(
        "/login",
        data={"email": app_module.DEFAULT_ADMIN_EMAIL, "password": app_module.DEFAULT_ADMIN_PASSWORD},
    )
    assert response.status_code == 302
    return client


@pytest.fixture
def audit_form():
    """Submission form fields for an audit rated 5 everywhere."""
    form = {
        "type": "ביקורת קצה מבצעי",
        "sector": "ברכה",
        "role": "צמ״מ",
        "name": "דני",
        "force": "כיתת כוננות",
        "event_at": "2025-01-05T10:30",
        "training_trained": "yes",
        "training_type": "practical",
        "gaps": "אין",
        "notes": "",
        "keep1": "ערנות",
        "improve1": "קשר",
    }
    form.update({f"r_{field}": "5" for field in ALL_FIVE})
    return form
