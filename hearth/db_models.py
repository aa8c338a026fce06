"""
SQLAlchemy ORM models for the Hearth database.

The schema is intentionally minimal: a key/value settings table, one row
holding the shared state JSON document, and the popup overlay table.
"""

from sqlalchemy import Boolean, Column, Integer, String, Text

from hearth.database import Base

STATE_ROW_ID = 1


class Setting(Base):
    """Out-of-band configuration value (pairing code, device id, secrets...)."""

    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)


class StateDocument(Base):
    """The single shared state document, stored as a JSON blob."""

    __tablename__ = "state"

    id = Column(Integer, primary_key=True)
    json = Column(Text, nullable=False)


class Popup(Base):
    """Overlay message shown on the display."""

    __tablename__ = "popups"

    id = Column(String(64), primary_key=True)
    message = Column(Text, nullable=False)
    position = Column(String(20), nullable=False)
    mode = Column(String(20), nullable=False)
    priority = Column(String(20), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    visible = Column(Boolean, nullable=False, default=True)

    # Timestamps (UTC ISO-8601 strings, see hearth.datetime_utils)
    created_at = Column(String(32), nullable=False, index=True)
    updated_at = Column(String(32), nullable=False)
    expires_at = Column(String(32), nullable=True)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "message": self.message,
            "position": self.position,
            "mode": self.mode,
            "priority": self.priority or "success",
            "durationSeconds": self.duration_seconds,
            "visible": bool(self.visible),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "expiresAt": self.expires_at,
        }
