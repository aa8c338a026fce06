"""
Tests for the HTTP API
"""

from hearth.db_models import StateDocument
from hearth.sync import UpstreamError


def _drain(connection):
    frames = []
    while not connection.queue.empty():
        frames.append(connection.queue.get_nowait())
    return frames


# Public routes


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_get_state_returns_document_and_device_id(client, ctx):
    response = client.get("/api/state")
    assert response.status_code == 200
    data = response.json()
    assert data["deviceId"] == ctx.device_id
    assert data["state"]["theme"] == "dark"
    assert data["state"]["modules"] == {"calendar": True, "photos": True, "weather": True}


def test_pairing_code_and_network(client, ctx):
    code = client.get("/api/pairing").json()["code"]
    assert code == ctx.pairing_code
    assert len(code) == 6
    assert client.get("/api/network").json() == {"lanIp": "192.168.1.50"}


def test_events_with_wrong_device_id(client, ctx):
    response = client.get("/api/display/not-this-device/events")
    assert response.status_code == 404
    assert response.json()["detail"] == "Invalid device"
    assert ctx.hub.connection_count() == 0


def test_events_stream_pushes_state(client, ctx, monkeypatch):
    subscribe = ctx.subscribe_display

    def subscribe_then_write(device_id):
        connection = subscribe(device_id)
        ctx.update_state({"noteTitle": "Pushed"})
        ctx.hub.close_all()
        return connection

    monkeypatch.setattr(ctx, "subscribe_display", subscribe_then_write)

    response = client.get(f"/api/display/{ctx.device_id}/events")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    frames = [f for f in response.text.split("\n\n") if f and f != ":heartbeat"]
    assert frames[0] == ":connected"
    assert frames[1].startswith("event: state\ndata: ")
    assert '"noteTitle":"Pushed"' in frames[1]
    assert len(frames) == 2
    assert ctx.hub.connection_count() == 0


# Pairing and auth


def test_pair_with_wrong_code(client):
    response = client.post("/api/control/pair", json={"code": "WRONG1"})
    assert response.status_code == 401


def test_pair_with_short_code_is_invalid(client):
    response = client.post("/api/control/pair", json={"code": "AB"})
    assert response.status_code == 422


def test_control_requires_token(client):
    response = client.post("/api/control/state", json={"state": {"note": "x"}})
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"

    response = client.post(
        "/api/control/state",
        json={"state": {"note": "x"}},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


def test_session_accepts_header_or_query_token(client, token, auth_headers):
    assert client.get("/api/control/session", headers=auth_headers).json() == {"ok": True}
    assert client.get(f"/api/control/session?token={token}").json() == {"ok": True}
    assert client.get("/api/control/session?token=bad").status_code == 401
    assert client.get("/api/control/session").status_code == 401


def test_query_token_only_accepted_by_session(client, token):
    response = client.get(f"/api/control/calendar/settings?token={token}")
    assert response.status_code == 401


# State writes


def test_fresh_boot_pair_and_write(client, ctx):
    state = client.get("/api/state").json()["state"]
    assert state["modules"]["calendar"] is True

    update = {"state": {"note": "Dinner at 6"}}
    assert client.post("/api/control/state", json=update).status_code == 401

    code = client.get("/api/pairing").json()["code"]
    token = client.post("/api/control/pair", json={"code": code}).json()["token"]

    response = client.post(
        "/api/control/state", json=update, headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 200
    assert response.json()["note"] == "Dinner at 6"
    assert response.json()["modules"]["calendar"] is True


def test_pair_then_write_scenario(client, ctx, auth_headers):
    display = ctx.subscribe_display(ctx.device_id)
    before = client.get("/api/state").json()["state"]

    response = client.post(
        "/api/control/state",
        json={"state": {"noteTitle": "Hello", "weather": {"temp": "60°F"}}},
        headers=auth_headers,
    )
    assert response.status_code == 200
    written = response.json()
    assert written["noteTitle"] == "Hello"
    assert written["weather"]["temp"] == "60°F"
    assert written["weather"]["location"] == before["weather"]["location"]
    assert written["updatedAt"] > before["updatedAt"]

    assert client.get("/api/state").json()["state"] == written

    frames = _drain(display)
    assert len(frames) == 1
    assert frames[0].startswith("event: state\ndata: ")
    assert '"noteTitle":"Hello"' in frames[0]


def test_state_update_rejects_unknown_and_invalid_fields(client, ctx, auth_headers):
    before = ctx.read_state()
    bad_payloads = [
        {"state": {"bogus": 1}},
        {"state": {"modules": {"calendar": None}}},
        {"state": {"photoTiles": 9}},
        {"state": {"offSchedule": {"start": "25:00"}}},
        {"state": {"theme": "neon"}},
        {"other": {}},
    ]
    for payload in bad_payloads:
        response = client.post("/api/control/state", json=payload, headers=auth_headers)
        assert response.status_code == 422, payload
    assert ctx.read_state() == before


def test_manual_events_get_default_source(client, auth_headers):
    response = client.post(
        "/api/control/state",
        json={"state": {"events": [{"id": "e1", "title": "Dentist", "date": "2026-03-12", "allDay": True}]}},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["events"] == [
        {"id": "e1", "title": "Dentist", "date": "2026-03-12", "allDay": True, "source": "manual"}
    ]


def test_toggle_module(client, auth_headers):
    response = client.post(
        "/api/control/modules/toggle",
        json={"module": "photos", "enabled": False},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["modules"] == {"calendar": True, "photos": False, "weather": True}

    response = client.post(
        "/api/control/modules/toggle",
        json={"module": "note", "enabled": False},
        headers=auth_headers,
    )
    assert response.status_code == 422


def test_update_layout(client, auth_headers):
    layout = {
        "mode": "classic",
        "sidebar": "left",
        "modules": {
            "calendar": {"column": "right", "span": 2, "order": 2},
            "photos": {"column": "left", "span": 1, "order": 1, "height": "tall"},
            "note": {"column": "left", "span": 1, "order": 3},
        },
    }
    response = client.post("/api/control/layout", json={"layout": layout}, headers=auth_headers)
    assert response.status_code == 200
    saved = response.json()["layout"]
    assert saved["sidebar"] == "left"
    assert saved["modules"]["photos"]["height"] == "tall"
    assert saved["modules"]["calendar"]["height"] == "auto"


def test_state_missing_returns_500(client, ctx, auth_headers):
    with ctx.store.session() as db:
        db.query(StateDocument).delete()
        db.commit()

    response = client.post(
        "/api/control/state", json={"state": {"note": "x"}}, headers=auth_headers
    )
    assert response.status_code == 500
    assert response.json()["detail"] == "State missing"


def test_listener_failure_does_not_break_writes(client, ctx, auth_headers):
    def broken(state):
        raise RuntimeError("boom")

    ctx.add_state_listener(broken)
    response = client.post(
        "/api/control/state", json={"state": {"note": "still works"}}, headers=auth_headers
    )
    assert response.status_code == 200
    assert ctx.read_state()["note"] == "still works"


# Settings


def test_calendar_settings_round_trip(client, auth_headers):
    assert client.get("/api/control/calendar/settings", headers=auth_headers).json() == {"icsUrl": ""}
    response = client.post(
        "/api/control/calendar/settings",
        json={"icsUrl": " webcal://example.com/family.ics "},
        headers=auth_headers,
    )
    assert response.json() == {"ok": True}
    assert client.get("/api/control/calendar/settings", headers=auth_headers).json() == {
        "icsUrl": "webcal://example.com/family.ics"
    }


def test_calendar_sync_now_failure_reports_502(client, app, ctx, auth_headers):
    async def failing_job():
        raise UpstreamError("Failed to fetch ICS (500)", 500)

    app.state.syncs["calendar"].job = failing_job
    before = ctx.read_state()

    response = client.post(
        "/api/control/calendar/settings",
        json={"icsUrl": "https://example.com/cal.ics", "syncNow": True},
        headers=auth_headers,
    )
    assert response.status_code == 502
    assert ctx.read_state() == before


def test_weather_sync_now_runs_job(client, app, ctx, auth_headers):
    async def job():
        return ctx.update_state({"weather": {"temp": "40°F"}})

    app.state.syncs["weather"].job = job
    response = client.post(
        "/api/control/weather/settings",
        json={"query": "Bergen", "syncNow": True},
        headers=auth_headers,
    )
    assert response.json() == {"ok": True}
    assert ctx.read_state()["weather"]["temp"] == "40°F"
    assert client.get("/api/control/weather/settings", headers=auth_headers).json() == {
        "query": "Bergen"
    }


def test_local_photo_scan_and_serve(client, ctx, auth_headers, tmp_path):
    (tmp_path / "a.jpg").write_bytes(b"jpeg-bytes")
    (tmp_path / ".hidden.png").write_bytes(b"x")
    (tmp_path / "notes.txt").write_text("x")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b.PNG").write_bytes(b"png-bytes")

    response = client.post(
        "/api/control/photos/local/scan",
        json={"directory": str(tmp_path)},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"ok": True, "count": 2}

    state = ctx.read_state()
    assert state["photosLocal"] == [
        "/api/photos/local?path=a.jpg",
        "/api/photos/local?path=sub%2Fb.PNG",
    ]
    assert state["photos"] == state["photosGoogle"] + state["photosLocal"]
    assert client.get("/api/control/photos/local/settings", headers=auth_headers).json() == {
        "directory": str(tmp_path)
    }

    photo = client.get("/api/photos/local", params={"path": "sub/b.PNG"})
    assert photo.status_code == 200
    assert photo.content == b"png-bytes"
    assert photo.headers["content-type"] == "image/png"

    assert client.get("/api/photos/local", params={"path": "../secret.jpg"}).status_code == 404
    assert client.get("/api/photos/local", params={"path": "missing.jpg"}).status_code == 404
    assert client.get("/api/photos/local").status_code == 400


def test_local_photo_scan_missing_directory(client, auth_headers, tmp_path):
    response = client.post("/api/control/photos/local/scan", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Directory required"

    response = client.post(
        "/api/control/photos/local/scan",
        json={"directory": str(tmp_path / "nope")},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Local photos directory not found"


# Popups


def test_popup_lifecycle(client, ctx, auth_headers):
    display = ctx.subscribe_display(ctx.device_id)

    response = client.post(
        "/api/control/popups",
        json={"id": "door", "message": "Someone at the door", "mode": "manual", "priority": "warning"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    created = response.json()
    assert created["visible"] is True
    assert created["position"] == "center"
    assert created["expiresAt"] is None

    assert [p["id"] for p in client.get("/api/popups").json()["popups"]] == ["door"]

    response = client.post(
        "/api/control/popups/door", json={"message": "Package delivered"}, headers=auth_headers
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Package delivered"
    assert response.json()["createdAt"] == created["createdAt"]

    response = client.post("/api/control/popups/clear", headers=auth_headers)
    assert response.json() == {"ok": True}
    assert client.get("/api/popups").json() == {"popups": []}

    all_popups = client.get("/api/control/popups", headers=auth_headers).json()["popups"]
    assert [(p["id"], p["visible"]) for p in all_popups] == [("door", False)]

    frames = _drain(display)
    assert [f.split("\n", 1)[0] for f in frames] == ["event: popup"] * 3
    assert '"action":"clear"' in frames[-1]


def test_popup_update_unknown_id(client, auth_headers):
    response = client.post(
        "/api/control/popups/missing", json={"visible": False}, headers=auth_headers
    )
    assert response.status_code == 404


def test_popup_validation(client, auth_headers):
    for payload in (
        {"message": ""},
        {"message": "x", "position": "middle"},
        {"message": "x", "durationSeconds": 0},
        {"message": "x", "color": "red"},
    ):
        response = client.post("/api/control/popups", json=payload, headers=auth_headers)
        assert response.status_code == 422, payload


def test_popups_require_token(client):
    assert client.get("/api/control/popups").status_code == 401
    assert client.post("/api/control/popups", json={"message": "x"}).status_code == 401
    assert client.post("/api/control/popups/clear").status_code == 401
