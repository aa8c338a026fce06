"""
ICS calendar sync.

Fetches the configured ICS feed, expands it into dated events for the
current and next month, and replaces every ``ics`` event in the state
document. Manual events are kept as they are.
"""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx
from dateutil.rrule import rrulestr
from icalendar import Calendar

from hearth.reconciler import merge_state
from hearth.sync import UpstreamError

logger = logging.getLogger(__name__)

ICS_URL_KEY = "calendarIcsUrl"

_UNTIL_RE = re.compile(r"UNTIL=(\d{8}(?:T\d{6})?Z?)")


def normalize_ics_url(url: str) -> str:
    """Calendar apps share ``webcal://`` links; fetch them over https."""
    url = url.strip()
    if url.lower().startswith("webcal://"):
        return "https://" + url[len("webcal://"):]
    return url


def _local_tz(tz: Optional[tzinfo]) -> tzinfo:
    return tz or datetime.now().astimezone().tzinfo or timezone.utc


def _to_local(value: Any, tz: tzinfo) -> Tuple[datetime, bool]:
    """Naive local datetime for an ICS date/datetime, plus whether it was a date."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz).replace(tzinfo=None)
        return value, False
    if isinstance(value, date):
        return datetime.combine(value, time()), True
    raise ValueError(f"Unsupported ICS date value: {value!r}")


def _window(now: datetime) -> Tuple[datetime, datetime]:
    """First day of this month to the last second of next month."""
    start = datetime(now.year, now.month, 1)
    year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
    year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    end = datetime(year, month, 1) - timedelta(seconds=1)
    return start, end


def _localize_until(rule: str, tz: tzinfo) -> str:
    """Rewrite UNTIL as a naive local datetime to match the naive DTSTART."""

    def _replace(match: "re.Match[str]") -> str:
        value = match.group(1)
        if value.endswith("Z"):
            until = (
                datetime.strptime(value, "%Y%m%dT%H%M%SZ")
                .replace(tzinfo=timezone.utc)
                .astimezone(tz)
                .replace(tzinfo=None)
            )
        elif "T" in value:
            until = datetime.strptime(value, "%Y%m%dT%H%M%S")
        else:
            until = datetime.strptime(value, "%Y%m%d").replace(hour=23, minute=59, second=59)
        return "UNTIL=" + until.strftime("%Y%m%dT%H%M%S")

    return _UNTIL_RE.sub(_replace, rule)


def _property_values(component: Any, name: str) -> List[Any]:
    """All ``.dt`` values of a (possibly repeated) date-list property."""
    prop = component.get(name)
    if prop is None:
        return []
    props = prop if isinstance(prop, list) else [prop]
    values = []
    for item in props:
        for entry in getattr(item, "dts", [item]):
            dt = getattr(entry, "dt", None)
            if dt is not None:
                values.append(dt)
    return values


def _is_all_day(component: Any, start: datetime, start_is_date: bool, tz: tzinfo) -> bool:
    if start_is_date:
        return True
    end_prop = component.get("DTEND")
    if end_prop is None:
        return False
    end, _ = _to_local(end_prop.dt, tz)
    starts_at_midnight = start.time() == time()
    return starts_at_midnight and end - start >= timedelta(hours=23)


def _time_label(moment: datetime, time_format: str) -> str:
    if time_format == "24h":
        return moment.strftime("%H:%M")
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d} {suffix}"


def _make_event(
    component: Any,
    occurrence: datetime,
    all_day: bool,
    key: str,
    time_format: str,
) -> Dict[str, Any]:
    iso_date = occurrence.date().isoformat()
    summary = str(component.get("SUMMARY") or "Untitled")
    title = summary if all_day else f"{_time_label(occurrence, time_format)} {summary}"
    return {
        "id": f"{key}-{iso_date}-{'all' if all_day else occurrence.isoformat()}",
        "title": title.strip(),
        "date": iso_date,
        "allDay": all_day,
        "source": "ics",
    }


def parse_ics_events(
    ics_text: str,
    now: Optional[datetime] = None,
    time_format: str = "12h",
    tz: Optional[tzinfo] = None,
) -> List[Dict[str, Any]]:
    """
    Expand an ICS document into calendar events.

    Recurring events are expanded inside the current and next month,
    honouring EXDATE and RECURRENCE-ID overrides. Timed events get a time
    prefix in their title (``6:30 PM Dinner`` or ``18:30 Dinner``).

    Raises:
        UpstreamError: The text is not a parseable calendar.
    """
    tz = _local_tz(tz)
    if now is None:
        now = datetime.now(tz)
    now_local, _ = _to_local(now, tz)
    window_start, window_end = _window(now_local)

    try:
        calendar = Calendar.from_ical(ics_text)
    except ValueError as e:
        raise UpstreamError(f"Invalid ICS data: {e}") from e

    components = list(calendar.walk("VEVENT"))

    # Moved or edited single occurrences of recurring events
    overrides: Dict[Tuple[str, datetime], Any] = {}
    recurring_uids: Set[str] = set()
    for component in components:
        uid = str(component.get("UID") or "")
        if component.get("RRULE") is not None:
            recurring_uids.add(uid)
        recurrence_id = component.get("RECURRENCE-ID")
        if recurrence_id is not None:
            try:
                occurrence, _ = _to_local(recurrence_id.dt, tz)
            except ValueError:
                continue
            overrides[(uid, occurrence)] = component

    events: List[Dict[str, Any]] = []
    for index, component in enumerate(components):
        uid = str(component.get("UID") or "")
        key = uid or f"event-{index}"
        start_prop = component.get("DTSTART")
        if start_prop is None:
            continue
        try:
            start, start_is_date = _to_local(start_prop.dt, tz)
        except ValueError:
            continue

        if component.get("RECURRENCE-ID") is not None and uid in recurring_uids:
            continue  # Emitted while expanding its master

        all_day = _is_all_day(component, start, start_is_date, tz)

        rule = component.get("RRULE")
        if isinstance(rule, list):
            rule = rule[0] if rule else None
        if rule is None:
            if window_start <= start <= window_end:
                events.append(_make_event(component, start, all_day, key, time_format))
            continue

        exdates: Set[datetime] = set()
        exdays: Set[date] = set()
        for value in _property_values(component, "EXDATE"):
            excluded, is_date = _to_local(value, tz)
            exdates.add(excluded)
            if is_date:
                exdays.add(excluded.date())

        try:
            rule_text = _localize_until(rule.to_ical().decode(), tz)
            occurrences = rrulestr(rule_text, dtstart=start).between(
                window_start, window_end, inc=True
            )
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping recurring event {key}: {e}")
            continue

        for occurrence in occurrences:
            if occurrence in exdates or occurrence.date() in exdays:
                continue
            override = overrides.get((uid, occurrence))
            if override is None:
                events.append(_make_event(component, occurrence, all_day, key, time_format))
                continue
            if str(override.get("STATUS") or "").upper() == "CANCELLED":
                continue
            moved_start = override.get("DTSTART")
            moved, moved_is_date = (
                _to_local(moved_start.dt, tz) if moved_start is not None else (occurrence, start_is_date)
            )
            events.append(
                _make_event(
                    override,
                    moved,
                    _is_all_day(override, moved, moved_is_date, tz),
                    key,
                    time_format,
                )
            )

    return events


async def fetch_ics(client: httpx.AsyncClient, url: str) -> str:
    """
    Download an ICS feed.

    Raises:
        UpstreamError: Network failure or a non-2xx response.
    """
    resolved = normalize_ics_url(url)
    try:
        response = await client.get(resolved, follow_redirects=True)
    except httpx.HTTPError as e:
        raise UpstreamError(f"Failed to fetch ICS: {e}") from e
    if response.status_code >= 400:
        raise UpstreamError(
            f"Failed to fetch ICS ({response.status_code})", response.status_code
        )
    return response.text


def replace_ics_events(
    current: Dict[str, Any], ics_events: List[Dict[str, Any]]
) -> Dict[str, Any]:
    """New document with every ``ics`` event replaced and manual events kept."""
    manual = [e for e in current.get("events", []) if e.get("source") == "manual"]
    return merge_state(current, {"events": manual + ics_events})


async def sync_calendar(ctx: Any, url: str, client: httpx.AsyncClient) -> Dict[str, Any]:
    """Fetch ``url`` and merge its events into the shared state (broadcasts)."""
    text = await fetch_ics(client, url)

    def _apply(current: Dict[str, Any]) -> Dict[str, Any]:
        events = parse_ics_events(
            text, time_format=current.get("calendarTimeFormat") or "12h"
        )
        return replace_ics_events(current, events)

    state = ctx.mutate_state(_apply)
    logger.info(f"Calendar synced from {normalize_ics_url(url)}")
    return state


def make_calendar_job(ctx: Any, client: httpx.AsyncClient):
    """Scheduler job: sync the configured feed, if any."""

    async def job() -> Optional[Dict[str, Any]]:
        url = ctx.store.get(ICS_URL_KEY)
        if not url:
            return None
        return await sync_calendar(ctx, url, client)

    return job
