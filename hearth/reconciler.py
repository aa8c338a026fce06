"""
Shared state defaults and merge rules.

``ensure_defaults`` brings a stored document (possibly written by an older
version) up to the current shape. ``merge_state`` applies a validated
partial update. Both are pure: inputs are never mutated.
"""

import copy
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

from hearth.datetime_utils import next_timestamp, to_iso, utcnow

# Top-level objects merged key-by-key instead of replaced
MERGED_KEYS = ("modules", "weather", "photoSources", "customTheme", "offSchedule", "layout")

_PLACEHOLDER_SVG = """<?xml version="1.0" encoding="UTF-8"?>
<svg xmlns="http://www.w3.org/2000/svg" width="1200" height="800" viewBox="0 0 1200 800">
  <defs>
    <linearGradient id="grad" x1="0" y1="0" x2="1" y2="1">
      <stop offset="0%" stop-color="#0F172A" />
      <stop offset="100%" stop-color="{accent}" />
    </linearGradient>
  </defs>
  <rect width="1200" height="800" fill="url(#grad)" />
  <circle cx="900" cy="200" r="180" fill="rgba(255,255,255,0.08)" />
  <circle cx="250" cy="600" r="220" fill="rgba(255,255,255,0.06)" />
  <text x="80" y="700" fill="rgba(255,255,255,0.65)" font-size="64" font-family="Inter, sans-serif">{label}</text>
</svg>"""


def _placeholder_photo(label: str, accent: str) -> str:
    svg = _PLACEHOLDER_SVG.format(label=label, accent=accent)
    return "data:image/svg+xml;utf8," + quote(svg, safe="")


def _placeholder_photos():
    return [
        _placeholder_photo("Hearth", "#2DD4BF"),
        _placeholder_photo("Family", "#38BDF8"),
        _placeholder_photo("Moments", "#818CF8"),
    ]


def create_default_state(now: Optional[datetime] = None) -> Dict[str, Any]:
    """Build a complete, freshly seeded state document."""
    now = now or utcnow()
    today = now.astimezone().date()

    def _day(offset: int) -> str:
        return (today + timedelta(days=offset)).isoformat()

    return {
        "theme": "dark",
        "modules": {"calendar": True, "photos": True, "weather": True},
        "calendarView": "week",
        "calendarTimeFormat": "12h",
        "calendarNote": "",
        "tempUnit": "f",
        "weatherForecastEnabled": False,
        "qrEnabled": True,
        "noteEnabled": True,
        "noteTitle": "Family Note",
        "note": "Dinner is at 6:30. Movie night after!",
        "events": [
            {"id": str(uuid.uuid4()), "title": "School pickup", "date": _day(0), "allDay": True, "source": "manual"},
            {"id": str(uuid.uuid4()), "title": "Soccer practice", "date": _day(1), "allDay": True, "source": "manual"},
            {"id": str(uuid.uuid4()), "title": "Family dinner", "date": _day(2), "allDay": True, "source": "manual"},
        ],
        "photos": _placeholder_photos(),
        "photosGoogle": _placeholder_photos(),
        "photosLocal": [],
        "photoSources": {"google": True, "local": True},
        "photoShuffle": True,
        "photoFocus": "center",
        "photoTiles": 1,
        "photoTransitionMs": 12000,
        "offSchedule": {"enabled": False, "start": "22:00", "end": "06:00"},
        "customTheme": {
            "bg": "#0B0F14",
            "surface": "#111827",
            "surface2": "#0F172A",
            "cardOpacity": 1,
            "calendarDay": "#0F172A",
            "calendarDayMuted": "rgba(15, 23, 42, 0.6)",
            "calendarToday": "#111827",
            "border": "rgba(255, 255, 255, 0.1)",
            "text": "rgba(255, 255, 255, 0.92)",
            "muted": "rgba(255, 255, 255, 0.65)",
            "faint": "rgba(255, 255, 255, 0.45)",
            "accent": "#2DD4BF",
            "buttonText": "rgba(255, 255, 255, 0.92)",
            "buttonTextOnAccent": "#0B0F14",
            "backgroundImage": "",
            "backgroundPosition": "center",
        },
        "weather": {
            "location": "Home",
            "summary": "Clear and calm",
            "temp": "72°F",
            "code": 0,
        },
        "forecast": [],
        "layout": {
            "mode": "classic",
            "sidebar": "right",
            "modules": {
                "calendar": {"column": "left", "span": 2, "order": 1, "height": "auto"},
                "photos": {"column": "right", "span": 1, "order": 2, "height": "auto"},
                "note": {"column": "right", "span": 1, "order": 3, "height": "auto"},
            },
        },
        "updatedAt": to_iso(now),
    }


def _deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``base`` with ``overlay`` applied recursively (dicts merge, others replace)."""
    out = copy.deepcopy(dict(base))
    for key, value in (overlay or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def _overlay_defaults(defaults: Mapping[str, Any], stored: Mapping[str, Any]) -> Dict[str, Any]:
    """Like ``_deep_merge`` but a non-object never replaces a default object."""
    out = copy.deepcopy(dict(defaults))
    for key, value in stored.items():
        default = out.get(key)
        if isinstance(default, dict):
            if isinstance(value, dict):
                out[key] = _overlay_defaults(default, value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def _normalize_events(events: Any) -> list:
    if not isinstance(events, list):
        return []
    normalized = []
    for event in events:
        if not isinstance(event, dict):
            continue
        event = dict(event)
        if not event.get("source"):
            event["source"] = "manual"
        normalized.append(event)
    return normalized


def ensure_defaults(state: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Fill in every field missing from a stored document.

    Stored values win over defaults at every nesting level; keys unknown to
    the current defaults are preserved untouched.
    """
    state = state or {}
    defaults = create_default_state()
    # A document that predates a field gets an empty list, not demo content
    defaults["events"] = []

    result = _overlay_defaults(defaults, state)
    result["events"] = _normalize_events(result.get("events"))

    if not isinstance(state.get("photosGoogle"), list):
        legacy = state.get("photos")
        result["photosGoogle"] = (
            copy.deepcopy(legacy) if isinstance(legacy, list) else defaults["photosGoogle"]
        )
    if not isinstance(result.get("photosLocal"), list):
        result["photosLocal"] = []

    return result


def merge_state(
    current: Mapping[str, Any],
    partial: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Apply a validated partial update to a full document.

    Fields in ``MERGED_KEYS`` merge recursively so that e.g. updating
    ``weather.temp`` keeps ``weather.summary``; every other field present
    in ``partial`` replaces the current value. ``updatedAt`` always moves
    forward.
    """
    nxt = copy.deepcopy(dict(current))
    for key, value in (partial or {}).items():
        if key == "updatedAt":
            continue
        if key in MERGED_KEYS and isinstance(value, dict) and isinstance(nxt.get(key), dict):
            nxt[key] = _deep_merge(nxt[key], value)
        else:
            nxt[key] = copy.deepcopy(value)
    nxt["updatedAt"] = next_timestamp(current.get("updatedAt"), now)
    return nxt
