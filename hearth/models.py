"""
Hearth - Pydantic request/response models.

Write payloads are validated here before they reach the merge step.
Unknown fields are rejected (``extra="forbid"``) so a typo never turns into
a silently ignored update.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class PartialModel(StrictModel):
    """Update model: every field optional, but a sent field may not be null."""

    @model_validator(mode="after")
    def _no_explicit_nulls(self):
        for name in self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"{name} may not be null")
        return self


# Enums
class PopupPosition(str, Enum):
    TOP_LEFT = "top-left"
    TOP_CENTER = "top-center"
    TOP_RIGHT = "top-right"
    CENTER_LEFT = "center-left"
    CENTER = "center"
    CENTER_RIGHT = "center-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_CENTER = "bottom-center"
    BOTTOM_RIGHT = "bottom-right"


class PopupMode(str, Enum):
    TEMPORARY = "temporary"  # Expires durationSeconds after it is shown
    MANUAL = "manual"  # Stays until hidden


class PopupPriority(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    EMERGENCY = "emergency"
    PLAIN = "plain"


Theme = Literal["dark", "light", "custom"]
ModuleKey = Literal["calendar", "photos", "weather"]
PhotoFocus = Literal[
    "none",
    "center",
    "top",
    "bottom",
    "left",
    "right",
    "top-left",
    "top-right",
    "bottom-left",
    "bottom-right",
]
Column = Literal["left", "center", "right"]
_HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


# State pieces
class CalendarEvent(StrictModel):
    id: str
    title: str = Field(min_length=1)
    date: str = Field(min_length=1)
    allDay: bool
    source: Literal["manual", "ics"] = "manual"


class ForecastDay(StrictModel):
    date: str = Field(min_length=1)
    high: str = Field(min_length=1)
    low: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    code: int


class ModulesUpdate(PartialModel):
    calendar: Optional[bool] = None
    photos: Optional[bool] = None
    weather: Optional[bool] = None


class WeatherUpdate(PartialModel):
    location: Optional[str] = Field(default=None, min_length=1)
    summary: Optional[str] = Field(default=None, min_length=1)
    temp: Optional[str] = Field(default=None, min_length=1)
    code: Optional[int] = None


class PhotoSourcesUpdate(PartialModel):
    google: Optional[bool] = None
    local: Optional[bool] = None


class OffScheduleUpdate(PartialModel):
    enabled: Optional[bool] = None
    start: Optional[str] = Field(default=None, pattern=_HHMM)
    end: Optional[str] = Field(default=None, pattern=_HHMM)


class CustomThemeUpdate(PartialModel):
    bg: Optional[str] = Field(default=None, min_length=1)
    surface: Optional[str] = Field(default=None, min_length=1)
    surface2: Optional[str] = Field(default=None, min_length=1)
    cardOpacity: Optional[float] = Field(default=None, ge=0, le=1)
    calendarDay: Optional[str] = Field(default=None, min_length=1)
    calendarDayMuted: Optional[str] = Field(default=None, min_length=1)
    calendarToday: Optional[str] = Field(default=None, min_length=1)
    border: Optional[str] = Field(default=None, min_length=1)
    text: Optional[str] = Field(default=None, min_length=1)
    muted: Optional[str] = Field(default=None, min_length=1)
    faint: Optional[str] = Field(default=None, min_length=1)
    accent: Optional[str] = Field(default=None, min_length=1)
    backgroundImage: Optional[str] = None
    backgroundPosition: Optional[PhotoFocus] = None
    buttonText: Optional[str] = Field(default=None, min_length=1)
    buttonTextOnAccent: Optional[str] = Field(default=None, min_length=1)


class ModuleLayout(StrictModel):
    column: Column
    span: Literal[1, 2, 3]
    order: int
    height: Literal["auto", "compact", "tall"] = "auto"


class ModuleLayoutUpdate(PartialModel):
    column: Optional[Column] = None
    span: Optional[Literal[1, 2, 3]] = None
    order: Optional[int] = None
    height: Optional[Literal["auto", "compact", "tall"]] = None


class LayoutModules(StrictModel):
    calendar: ModuleLayout
    photos: ModuleLayout
    note: ModuleLayout


class LayoutModulesUpdate(PartialModel):
    calendar: Optional[ModuleLayoutUpdate] = None
    photos: Optional[ModuleLayoutUpdate] = None
    note: Optional[ModuleLayoutUpdate] = None


class LayoutConfig(StrictModel):
    mode: Literal["classic"] = "classic"
    sidebar: Literal["right", "left"]
    modules: LayoutModules


class LayoutUpdate(PartialModel):
    mode: Optional[Literal["classic"]] = None
    sidebar: Optional[Literal["right", "left"]] = None
    modules: Optional[LayoutModulesUpdate] = None


class StateUpdate(PartialModel):
    """Sparse update of the shared state document."""

    theme: Optional[Theme] = None
    modules: Optional[ModulesUpdate] = None
    calendarView: Optional[Literal["week", "month"]] = None
    calendarTimeFormat: Optional[Literal["12h", "24h"]] = None
    calendarNote: Optional[str] = None
    tempUnit: Optional[Literal["f", "c"]] = None
    weatherForecastEnabled: Optional[bool] = None
    qrEnabled: Optional[bool] = None
    noteEnabled: Optional[bool] = None
    noteTitle: Optional[str] = None
    note: Optional[str] = None
    events: Optional[List[CalendarEvent]] = None
    photos: Optional[List[str]] = None
    photosGoogle: Optional[List[str]] = None
    photosLocal: Optional[List[str]] = None
    photoSources: Optional[PhotoSourcesUpdate] = None
    photoShuffle: Optional[bool] = None
    photoFocus: Optional[PhotoFocus] = None
    photoTiles: Optional[int] = Field(default=None, ge=1, le=4)
    photoTransitionMs: Optional[int] = Field(default=None, ge=1000)
    offSchedule: Optional[OffScheduleUpdate] = None
    customTheme: Optional[CustomThemeUpdate] = None
    weather: Optional[WeatherUpdate] = None
    forecast: Optional[List[ForecastDay]] = None
    layout: Optional[LayoutUpdate] = None

    def to_partial(self) -> Dict[str, Any]:
        """Only the fields the caller sent, as plain JSON data."""
        partial = self.model_dump(mode="json", exclude_unset=True)
        # List items carry defaults (event source) that exclude_unset would drop
        if self.events is not None:
            partial["events"] = [e.model_dump(mode="json") for e in self.events]
        return partial


class StateUpdateRequest(StrictModel):
    state: StateUpdate = Field(default_factory=StateUpdate)


class ToggleModuleRequest(StrictModel):
    module: ModuleKey
    enabled: bool


class LayoutUpdateRequest(StrictModel):
    layout: LayoutConfig


class StateResponse(BaseModel):
    state: Dict[str, Any]
    deviceId: str


# Pairing
class PairingRequest(StrictModel):
    code: str = Field(min_length=4)


class PairingResponse(BaseModel):
    token: str


# Popups
class PopupCreate(StrictModel):
    id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    message: str = Field(min_length=1)
    position: PopupPosition = PopupPosition.CENTER
    mode: PopupMode = PopupMode.TEMPORARY
    priority: PopupPriority = PopupPriority.SUCCESS
    durationSeconds: Optional[int] = Field(default=None, gt=0)


class PopupUpdate(PartialModel):
    message: Optional[str] = Field(default=None, min_length=1)
    position: Optional[PopupPosition] = None
    mode: Optional[PopupMode] = None
    priority: Optional[PopupPriority] = None
    durationSeconds: Optional[int] = Field(default=None, gt=0)
    visible: Optional[bool] = None


class Popup(BaseModel):
    id: str
    message: str
    position: PopupPosition
    mode: PopupMode
    priority: PopupPriority
    durationSeconds: Optional[int] = None
    visible: bool
    createdAt: str
    updatedAt: str
    expiresAt: Optional[str] = None


class PopupListResponse(BaseModel):
    popups: List[Popup]


# Settings
class CalendarSettings(StrictModel):
    icsUrl: Optional[str] = None
    syncNow: bool = False


class WeatherSettings(StrictModel):
    query: Optional[str] = None
    syncNow: bool = False


class LocalPhotoSettings(StrictModel):
    directory: Optional[str] = None
