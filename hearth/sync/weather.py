"""
Open-Meteo weather sync.

Resolves the configured place name with the geocoding API, then fetches
current conditions and a daily forecast. Units follow the state's
``tempUnit``.
"""

import logging
import math
from typing import Any, Dict, List, Optional

import httpx

from hearth.reconciler import merge_state
from hearth.sync import UpstreamError

logger = logging.getLogger(__name__)

WEATHER_QUERY_KEY = "weatherQuery"

GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

FORECAST_DAYS = 5

# WMO weather interpretation codes
WEATHER_LABELS = {
    0: "Clear",
    1: "Mostly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Rime fog",
    51: "Light drizzle",
    53: "Drizzle",
    55: "Dense drizzle",
    61: "Light rain",
    63: "Rain",
    65: "Heavy rain",
    71: "Light snow",
    73: "Snow",
    75: "Heavy snow",
    80: "Rain showers",
    81: "Heavy showers",
    82: "Violent showers",
    95: "Thunderstorm",
    96: "Thunderstorm w/ hail",
    99: "Thunderstorm w/ hail",
}


def weather_label(code: int) -> str:
    return WEATHER_LABELS.get(code, "Weather")


def _round(value: float) -> int:
    """Round half up, like a thermometer display would."""
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


async def _get_json(client: httpx.AsyncClient, url: str, params: Dict[str, Any], what: str) -> Dict[str, Any]:
    try:
        response = await client.get(url, params=params)
    except httpx.HTTPError as e:
        raise UpstreamError(f"{what} failed: {e}") from e
    if response.status_code >= 400:
        raise UpstreamError(f"{what} failed ({response.status_code})", response.status_code)
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError(f"{what} returned invalid JSON") from e


async def geocode_location(client: httpx.AsyncClient, query: str) -> Dict[str, Any]:
    """
    Best match for a place name.

    Raises:
        UpstreamError: Request failed or nothing matched.
    """
    data = await _get_json(
        client,
        GEOCODING_URL,
        {"name": query, "count": 1, "language": "en", "format": "json"},
        "Geocoding",
    )
    results = data.get("results") or []
    if not results:
        raise UpstreamError("No location found")
    return results[0]


async def fetch_weather_bundle(
    client: httpx.AsyncClient, latitude: float, longitude: float, unit: str
) -> Dict[str, Any]:
    """
    Current conditions, daily forecast and the location's UTC offset.

    Raises:
        UpstreamError: Request failed or the payload lacks current/daily data.
    """
    data = await _get_json(
        client,
        FORECAST_URL,
        {
            "latitude": latitude,
            "longitude": longitude,
            "current": "temperature_2m,weather_code",
            "daily": "temperature_2m_max,temperature_2m_min,weather_code",
            "timezone": "auto",
            "temperature_unit": "fahrenheit" if unit == "f" else "celsius",
        },
        "Weather fetch",
    )
    if not data.get("current") or not data.get("daily"):
        raise UpstreamError("Weather data missing")
    return {
        "current": data["current"],
        "daily": data["daily"],
        "utcOffsetSeconds": data.get("utc_offset_seconds"),
    }


def build_weather_info(
    location: Dict[str, Any], temp: float, code: int, unit: str
) -> Dict[str, Any]:
    label = ", ".join(part for part in (location.get("name"), location.get("admin1")) if part)
    return {
        "location": label or location.get("country") or "",
        "summary": weather_label(code),
        "temp": f"{_round(temp)}°{unit.upper()}",
        "code": code,
    }


def format_utc_offset(seconds: Optional[float]) -> str:
    """``Z``, ``+02:00``, ``-05:30``; empty when the offset is unknown."""
    if not isinstance(seconds, (int, float)) or math.isnan(seconds):
        return ""
    if seconds == 0:
        return "Z"
    sign = "+" if seconds >= 0 else "-"
    total_minutes = abs(round(seconds / 60))
    return f"{sign}{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def build_forecast(
    daily: Dict[str, List[Any]], utc_offset_seconds: Optional[float] = None
) -> List[Dict[str, Any]]:
    """First five days of an Open-Meteo daily block."""
    offset = format_utc_offset(utc_offset_seconds)
    days = []
    for index, day in enumerate(daily.get("time", [])[:FORECAST_DAYS]):
        code = daily["weather_code"][index]
        days.append(
            {
                "date": f"{day}T00:00:00{offset}" if offset else day,
                "high": f"{_round(daily['temperature_2m_max'][index])}°",
                "low": f"{_round(daily['temperature_2m_min'][index])}°",
                "summary": weather_label(code),
                "code": code,
            }
        )
    return days


async def sync_weather(ctx: Any, query: str, client: httpx.AsyncClient) -> Dict[str, Any]:
    """Fetch weather for ``query`` and merge it into the shared state (broadcasts)."""
    unit = ctx.read_state().get("tempUnit") or "f"
    location = await geocode_location(client, query)
    bundle = await fetch_weather_bundle(
        client, location["latitude"], location["longitude"], unit
    )
    try:
        weather = build_weather_info(
            location,
            bundle["current"]["temperature_2m"],
            bundle["current"]["weather_code"],
            unit,
        )
        forecast = build_forecast(bundle["daily"], bundle["utcOffsetSeconds"])
    except (KeyError, IndexError, TypeError) as e:
        raise UpstreamError(f"Weather data malformed: {e}") from e

    state = ctx.mutate_state(
        lambda current: merge_state(current, {"weather": weather, "forecast": forecast})
    )
    logger.info(f"Weather synced for {weather['location']}")
    return state


def make_weather_job(ctx: Any, client: httpx.AsyncClient):
    """Scheduler job: sync the configured location, if any."""

    async def job() -> Optional[Dict[str, Any]]:
        query = ctx.store.get(WEATHER_QUERY_KEY)
        if not query:
            return None
        return await sync_weather(ctx, query, client)

    return job
