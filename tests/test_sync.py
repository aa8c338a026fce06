"""
Tests for calendar and weather sync and the periodic scheduler
"""

import asyncio
from datetime import date, datetime, timezone

import httpx
import pytest

from hearth.config import Config
from hearth.context import HearthContext
from hearth.sync import UpstreamError
from hearth.sync.calendar import (
    normalize_ics_url,
    parse_ics_events,
    replace_ics_events,
    sync_calendar,
)
from hearth.sync.scheduler import PeriodicSync, SyncInProgressError
from hearth.sync.weather import (
    build_forecast,
    build_weather_info,
    format_utc_offset,
    sync_weather,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _ics(*events):
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Hearth Tests//EN"]
    for event in events:
        lines.append("BEGIN:VEVENT")
        lines.extend(event)
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


SAMPLE_ICS = _ics(
    [
        "UID:bday@test",
        "DTSTAMP:20260101T000000Z",
        "DTSTART;VALUE=DATE:20260315",
        "DTEND;VALUE=DATE:20260316",
        "SUMMARY:Birthday",
    ],
    [
        "UID:dinner@test",
        "DTSTAMP:20260101T000000Z",
        "DTSTART:20260312T183000Z",
        "DTEND:20260312T193000Z",
        "SUMMARY:Dinner",
    ],
    [
        "UID:standup@test",
        "DTSTAMP:20260101T000000Z",
        "DTSTART:20260302T090000Z",
        "DTEND:20260302T091500Z",
        "RRULE:FREQ=WEEKLY;COUNT=4",
        "EXDATE:20260309T090000Z",
        "SUMMARY:Standup",
    ],
    [
        "UID:summer@test",
        "DTSTAMP:20260101T000000Z",
        "DTSTART;VALUE=DATE:20260601",
        "SUMMARY:Out of window",
    ],
)


def _by_uid(events, uid):
    return [e for e in events if e["id"].startswith(uid)]


# ICS parsing


def test_normalize_ics_url():
    assert normalize_ics_url("webcal://example.com/cal.ics") == "https://example.com/cal.ics"
    assert normalize_ics_url(" https://example.com/a.ics ") == "https://example.com/a.ics"


def test_parse_all_day_event():
    events = parse_ics_events(SAMPLE_ICS, now=NOW, tz=timezone.utc)
    assert _by_uid(events, "bday@test") == [
        {
            "id": "bday@test-2026-03-15-all",
            "title": "Birthday",
            "date": "2026-03-15",
            "allDay": True,
            "source": "ics",
        }
    ]


def test_parse_timed_event_labels():
    events = parse_ics_events(SAMPLE_ICS, now=NOW, tz=timezone.utc)
    dinner = _by_uid(events, "dinner@test")
    assert len(dinner) == 1
    assert dinner[0]["title"] == "6:30 PM Dinner"
    assert dinner[0]["allDay"] is False
    assert dinner[0]["date"] == "2026-03-12"

    events = parse_ics_events(SAMPLE_ICS, now=NOW, time_format="24h", tz=timezone.utc)
    assert _by_uid(events, "dinner@test")[0]["title"] == "18:30 Dinner"


def test_parse_recurring_event_honours_exdate():
    events = parse_ics_events(SAMPLE_ICS, now=NOW, tz=timezone.utc)
    dates = [e["date"] for e in _by_uid(events, "standup@test")]
    assert dates == ["2026-03-02", "2026-03-16", "2026-03-23"]


def test_parse_skips_events_outside_window():
    events = parse_ics_events(SAMPLE_ICS, now=NOW, tz=timezone.utc)
    assert _by_uid(events, "summer@test") == []


def test_parse_midnight_day_long_event_is_all_day():
    ics = _ics(
        [
            "UID:trip@test",
            "DTSTAMP:20260101T000000Z",
            "DTSTART:20260320T000000Z",
            "DTEND:20260321T000000Z",
            "SUMMARY:Trip",
        ]
    )
    events = parse_ics_events(ics, now=NOW, tz=timezone.utc)
    assert events[0]["allDay"] is True
    assert events[0]["title"] == "Trip"


def test_parse_invalid_ics_raises():
    with pytest.raises(UpstreamError):
        parse_ics_events("this is not a calendar", now=NOW)


def test_replace_ics_events_keeps_manual():
    current = {
        "events": [
            {"id": "m1", "title": "Manual", "date": "2026-03-01", "allDay": True, "source": "manual"},
            {"id": "old", "title": "Old", "date": "2026-03-02", "allDay": True, "source": "ics"},
        ],
        "updatedAt": "2026-03-10T12:00:00.000Z",
    }
    fresh = [{"id": "new", "title": "New", "date": "2026-03-03", "allDay": True, "source": "ics"}]
    nxt = replace_ics_events(current, fresh)
    assert [e["id"] for e in nxt["events"]] == ["m1", "new"]
    assert nxt["updatedAt"] > current["updatedAt"]


# Weather builders


def test_build_weather_info():
    location = {"name": "Oslo", "admin1": "Oslo County", "country": "Norway"}
    assert build_weather_info(location, 12.6, 3, "c") == {
        "location": "Oslo, Oslo County",
        "summary": "Overcast",
        "temp": "13°C",
        "code": 3,
    }
    assert build_weather_info({"country": "Norway"}, -0.4, 1234, "f")["location"] == "Norway"
    assert build_weather_info({"name": "X"}, 1, 1234, "f")["summary"] == "Weather"


def test_format_utc_offset():
    assert format_utc_offset(0) == "Z"
    assert format_utc_offset(3600) == "+01:00"
    assert format_utc_offset(-19800) == "-05:30"
    assert format_utc_offset(None) == ""


def test_build_forecast_takes_five_days():
    daily = {
        "time": [f"2026-03-{d:02d}" for d in range(10, 17)],
        "temperature_2m_max": [5.4, 6, 7, 8, 9, 10, 11],
        "temperature_2m_min": [-1.2, 0, 1, 2, 3, 4, 5],
        "weather_code": [0, 61, 3, 3, 3, 3, 3],
    }
    forecast = build_forecast(daily, 3600)
    assert len(forecast) == 5
    assert forecast[0] == {
        "date": "2026-03-10T00:00:00+01:00",
        "high": "5°",
        "low": "-1°",
        "summary": "Clear",
        "code": 0,
    }
    assert forecast[1]["summary"] == "Light rain"
    assert build_forecast(daily)[0]["date"] == "2026-03-10"


# Sync against a live context


@pytest.fixture
def ctx():
    context = HearthContext.boot(Config(database_url="sqlite://", sync_enabled=False))
    yield context
    context.close()


def _today_ics():
    day = date.today().strftime("%Y%m%d")
    return _ics(
        [
            "UID:today@test",
            "DTSTAMP:20260101T000000Z",
            f"DTSTART;VALUE=DATE:{day}",
            "SUMMARY:Today",
        ]
    )


def test_calendar_sync_keeps_manual_events(ctx):
    def handler(request):
        assert request.url.scheme == "https"
        return httpx.Response(200, text=_today_ics())

    before = ctx.read_state()
    manual_ids = [e["id"] for e in before["events"]]

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await sync_calendar(ctx, "webcal://example.com/family.ics", client)

    state = asyncio.run(run())
    assert [e["id"] for e in state["events"] if e["source"] == "manual"] == manual_ids
    assert [e["title"] for e in state["events"] if e["source"] == "ics"] == ["Today"]
    assert ctx.read_state()["events"] == state["events"]

    # A second sync replaces ics events instead of appending
    state = asyncio.run(run())
    assert len([e for e in state["events"] if e["source"] == "ics"]) == 1


def test_calendar_sync_failure_keeps_state(ctx):
    def handler(request):
        return httpx.Response(503)

    before = ctx.read_state()

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await sync_calendar(ctx, "https://example.com/cal.ics", client)

    with pytest.raises(UpstreamError) as exc:
        asyncio.run(run())
    assert exc.value.status_code == 503
    assert ctx.read_state() == before


def test_weather_sync_updates_weather_and_forecast(ctx):
    def handler(request):
        if request.url.host == "geocoding-api.open-meteo.com":
            assert request.url.params["name"] == "Portland"
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"name": "Portland", "admin1": "Oregon", "country": "United States",
                         "latitude": 45.5, "longitude": -122.7}
                    ]
                },
            )
        assert request.url.params["temperature_unit"] == "fahrenheit"
        return httpx.Response(
            200,
            json={
                "current": {"temperature_2m": 51.2, "weather_code": 61},
                "daily": {
                    "time": ["2026-03-10", "2026-03-11"],
                    "temperature_2m_max": [55, 57],
                    "temperature_2m_min": [41, 43],
                    "weather_code": [61, 3],
                },
                "utc_offset_seconds": -25200,
            },
        )

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await sync_weather(ctx, "Portland", client)

    state = asyncio.run(run())
    assert state["weather"] == {
        "location": "Portland, Oregon",
        "summary": "Light rain",
        "temp": "51°F",
        "code": 61,
    }
    assert [d["date"] for d in state["forecast"]] == [
        "2026-03-10T00:00:00-07:00",
        "2026-03-11T00:00:00-07:00",
    ]


def test_weather_sync_no_location(ctx):
    def handler(request):
        return httpx.Response(200, json={"results": []})

    before = ctx.read_state()

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await sync_weather(ctx, "Nowhere", client)

    with pytest.raises(UpstreamError, match="No location found"):
        asyncio.run(run())
    assert ctx.read_state() == before


# Scheduler


def test_scheduler_skips_overlapping_runs():
    calls = []

    async def scenario():
        release = asyncio.Event()

        async def job():
            calls.append(1)
            await release.wait()
            return "done"

        sync = PeriodicSync("test", job)
        first = asyncio.ensure_future(sync.run_once())
        await asyncio.sleep(0)
        assert sync.in_flight

        assert await sync.run_once() is None
        with pytest.raises(SyncInProgressError):
            await sync.run_once(raise_errors=True)

        release.set()
        assert await first == "done"
        assert not sync.in_flight

    asyncio.run(scenario())
    assert calls == [1]


def test_scheduler_logs_and_swallows_failures(caplog):
    async def job():
        raise UpstreamError("feed down")

    sync = PeriodicSync("calendar", job)
    assert asyncio.run(sync.run_once()) is None
    assert "Calendar sync failed: feed down" in caplog.text

    with pytest.raises(UpstreamError):
        asyncio.run(sync.run_once(raise_errors=True))


def test_scheduler_start_and_stop():
    runs = []

    async def scenario():
        async def job():
            runs.append(1)

        sync = PeriodicSync("test", job, interval_seconds=0.01)
        sync.start()
        assert sync.running
        await asyncio.sleep(0.05)
        await sync.stop()
        assert not sync.running

    asyncio.run(scenario())
    assert len(runs) >= 2
