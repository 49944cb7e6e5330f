"""GPS fixes as reported by driver devices."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from django.utils import timezone

from common.utils import is_valid_coordinate
from services.delivery_management.exceptions import LocationUnavailable

# Device speeds above this are treated as GPS noise
MAX_SPEED_KMH = 200.0


@dataclass(frozen=True)
class GpsFix:
    """One position sample from the geolocation provider."""
    latitude: float
    longitude: float
    speed_kmh: float = 0.0
    heading: Optional[float] = None
    accuracy: Optional[float] = None
    recorded_at: datetime = field(default_factory=timezone.now)

    @classmethod
    def from_data(cls, data: Optional[Dict[str, Any]]) -> "GpsFix":
        """
        Build a fix from a request/WebSocket payload.

        Accepts ``speed_kmh`` or a raw device ``speed`` in m/s.

        Raises:
            LocationUnavailable: if the payload has no usable coordinates
        """
        if not data:
            raise LocationUnavailable("A GPS fix is required")

        lat = data.get("latitude")
        lon = data.get("longitude")
        if not is_valid_coordinate(lat, lon):
            raise LocationUnavailable("GPS fix has missing or out-of-range coordinates")

        if data.get("speed_kmh") is not None:
            speed_kmh = float(data["speed_kmh"])
        elif data.get("speed") is not None:
            speed_kmh = float(data["speed"]) * 3.6
        else:
            speed_kmh = 0.0

        heading = data.get("heading")
        accuracy = data.get("accuracy")
        return cls(
            latitude=float(lat),
            longitude=float(lon),
            speed_kmh=min(max(speed_kmh, 0.0), MAX_SPEED_KMH),
            heading=float(heading) if heading is not None else None,
            accuracy=float(accuracy) if accuracy is not None else None,
        )


def require_fix(fix: Optional[GpsFix]) -> GpsFix:
    """Reject a missing or out-of-range fix with LocationUnavailable."""
    if fix is None or not is_valid_coordinate(fix.latitude, fix.longitude):
        raise LocationUnavailable("No GPS fix could be obtained")
    return fix
