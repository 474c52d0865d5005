"""Tests for API endpoints."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from calsync.sync.backend import AccessDeniedError, CalendarBackendError
from tests.fakes import FakeCalendarBackend, make_event


def _tomorrow(hour: int) -> datetime:
    day = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return day + timedelta(days=1, hours=hour)


@pytest.fixture
def busy_backend(fake_backend):
    fake_backend.add(
        make_event(event_id="meeting", calendar_id="cal-a", start=_tomorrow(10)),
        make_event(event_id="lunch", calendar_id="cal-b", start=_tomorrow(12)),
    )
    return fake_backend


def _override_backend(backend):
    from calsync.main import app
    from calsync.sync.google_calendar import get_calendar_backend

    app.dependency_overrides[get_calendar_backend] = lambda: backend


def test_health_check(client):
    """Health check reports the database as connected."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "connected", "sync_running": False}


def test_list_calendars_marks_selected(client, fake_backend):
    """Configured calendars are flagged as selected."""
    fake_backend.calendars["cal-c"] = {}
    fake_backend.read_only.add("cal-c")

    response = client.get("/api/calendars")

    assert response.status_code == 200
    data = {c["id"]: c for c in response.json()}
    assert set(data) == {"cal-a", "cal-b", "cal-c"}
    assert data["cal-a"]["is_selected"] is True
    assert data["cal-c"]["is_selected"] is False
    assert data["cal-c"]["is_writable"] is False


def test_list_calendars_writable_only(client, fake_backend):
    """Read-only calendars can be filtered out."""
    fake_backend.calendars["cal-c"] = {}
    fake_backend.read_only.add("cal-c")

    response = client.get("/api/calendars", params={"writable_only": True})

    assert [c["id"] for c in response.json()] == ["cal-a", "cal-b"]


@pytest.mark.parametrize(
    "error,status_code",
    [(AccessDeniedError(), 403), (CalendarBackendError("boom"), 502)],
)
def test_list_calendars_errors(client, error, status_code):
    """Backend failures map onto HTTP errors."""
    def _raise():
        raise error

    _override_backend(SimpleNamespace(list_calendars=_raise, list_writable_calendars=_raise))

    response = client.get("/api/calendars")

    assert response.status_code == status_code


def test_sync_status_before_first_run(client):
    """Status shows the configuration and no previous run."""
    response = client.get("/api/sync/status")

    assert response.status_code == 200
    data = response.json()
    assert data["calendar_ids"] == ["cal-a", "cal-b"]
    assert data["is_configured"] is True
    assert data["sync_running"] is False
    assert data["sync_interval_minutes"] == 0
    assert data["placeholder_title"] == "Busy"
    assert data["last_run"] is None


def test_run_sync_and_read_history(client, busy_backend):
    """A manual run syncs the calendars and shows up in the history."""
    response = client.post("/api/sync/run")

    assert response.status_code == 200
    data = response.json()
    assert data["dry_run"] is False
    assert data["total_created"] == 2
    assert data["errors"] == []
    assert [(r["source_id"], r["target_id"]) for r in data["results"]] == [
        ("cal-a", "cal-b"), ("cal-b", "cal-a"),
    ]
    assert len(busy_backend.events_in("cal-b")) == 2

    log = client.get("/api/sync/log").json()
    assert log["total"] == 1
    assert log["entries"][0]["status"] == "success"
    assert log["entries"][0]["created"] == 2

    status_data = client.get("/api/sync/status").json()
    assert status_data["last_run"]["action"] == "sync"


def test_run_sync_dry_run(client, busy_backend):
    """Dry runs report changes without writing."""
    response = client.post("/api/sync/run", params={"dry_run": True})

    assert response.status_code == 200
    data = response.json()
    assert data["dry_run"] is True
    assert data["total_created"] == 2
    assert busy_backend.write_calls() == []

    log = client.get("/api/sync/log").json()
    assert log["entries"][0]["action"] == "dry_run"


def test_run_sync_requires_configuration(client, monkeypatch):
    """Fewer than two calendars cannot be synced."""
    from calsync.config import get_settings

    monkeypatch.setenv("SYNC_CALENDAR_IDS", "cal-a")
    get_settings.cache_clear()

    response = client.post("/api/sync/run")

    assert response.status_code == 400


def test_run_sync_access_denied(client, fake_backend):
    """Lost calendar access is reported as forbidden and logged."""
    fake_backend.deny_access = True

    response = client.post("/api/sync/run")

    assert response.status_code == 403
    log = client.get("/api/sync/log").json()
    assert log["entries"][0]["status"] == "failure"


def test_run_sync_conflict(client, monkeypatch):
    """A run already in progress is a conflict."""
    import calsync.api.sync as sync_api

    async def skipped(*_args, **_kwargs):
        return None

    monkeypatch.setattr(sync_api, "trigger_sync", skipped)

    response = client.post("/api/sync/run")

    assert response.status_code == 409


def test_sync_log_rejects_bad_paging(client):
    """Page numbers start at one."""
    assert client.get("/api/sync/log", params={"page": 0}).status_code == 400
    assert client.get("/api/sync/log", params={"page_size": 0}).status_code == 400


def test_sync_log_paging(client):
    """Paging parameters are echoed back."""
    response = client.get("/api/sync/log", params={"page": 2, "page_size": 10})

    assert response.status_code == 200
    assert response.json() == {"entries": [], "total": 0, "page": 2, "page_size": 10}


def test_three_calendar_run(client, monkeypatch):
    """All configured calendars take part in a manual run."""
    from calsync.config import get_settings

    backend = FakeCalendarBackend(("cal-a", "cal-b", "cal-c"))
    backend.add(make_event(event_id="meeting", calendar_id="cal-c", start=_tomorrow(9)))
    _override_backend(backend)
    monkeypatch.setenv("SYNC_CALENDAR_IDS", "cal-a;cal-b;cal-c")
    get_settings.cache_clear()

    data = client.post("/api/sync/run").json()

    assert data["total_created"] == 2
    assert len(data["results"]) == 6


def test_startup_requests_calendar_access(client, fake_backend):
    """The app asks for calendar access while starting up."""
    assert fake_backend.access_requests == 1


def test_startup_survives_denied_access(fake_backend, monkeypatch):
    """Denied access is logged and the app still serves requests."""
    from fastapi.testclient import TestClient

    import calsync.main as main_module

    fake_backend.deny_access = True
    monkeypatch.setattr(main_module, "get_calendar_backend", lambda: fake_backend)

    with TestClient(main_module.app) as c:
        response = c.get("/health")

    assert fake_backend.access_requests == 1
    assert response.status_code == 200


def test_run_sync_uses_configuration_check(client, monkeypatch):
    """Manual runs are refused whenever the configuration check fails."""
    import calsync.api.sync as sync_api

    monkeypatch.setattr(sync_api, "is_sync_configured", lambda: False)

    assert client.post("/api/sync/run").status_code == 400
    assert client.get("/api/sync/status").json()["is_configured"] is False
