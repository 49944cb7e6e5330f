"""
Typed realtime messages.

Every payload that crosses a channel group is one of the variants below.
``to_event()`` produces the channel-layer dict (its ``type`` is the consumer
handler name) and ``parse_message()`` turns an incoming dict back into a
variant, rejecting unknown types and missing or malformed fields.
"""

from dataclasses import MISSING, asdict, dataclass, field, fields
from typing import Any, ClassVar, Dict, Optional, Type

from common.utils import is_valid_coordinate


class MalformedMessage(ValueError):
    """Raised when a payload does not match any message variant."""


@dataclass(frozen=True)
class RealtimeMessage:
    TYPE: ClassVar[str] = ""

    def to_event(self) -> Dict[str, Any]:
        return {"type": self.TYPE, **asdict(self)}

    def validate(self) -> None:
        """Variant-specific checks beyond field presence."""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]):
        if not isinstance(payload, dict):
            raise MalformedMessage(f"{cls.TYPE} payload must be an object")

        kwargs = {}
        for f in fields(cls):
            required = f.default is MISSING and f.default_factory is MISSING
            if f.name not in payload or payload[f.name] is None:
                if required:
                    raise MalformedMessage(f"{cls.TYPE} requires '{f.name}'")
                continue
            kwargs[f.name] = payload[f.name]

        try:
            message = cls(**kwargs)
        except TypeError as exc:
            raise MalformedMessage(str(exc)) from exc
        message.validate()
        return message


@dataclass(frozen=True)
class DeliveryOffered(RealtimeMessage):
    """A delivery was offered to exactly this driver."""
    TYPE: ClassVar[str] = "delivery_offered"

    delivery_id: int
    driver_id: int
    offer_id: int
    expires_at: str
    delivery: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OfferWithdrawn(RealtimeMessage):
    """The driver's open offer is gone (declined, expired, cancelled or taken)."""
    TYPE: ClassVar[str] = "offer_withdrawn"

    REASONS: ClassVar[tuple] = ("declined", "expired", "cancelled", "taken")

    delivery_id: int
    driver_id: int
    reason: str
    message: str = ""

    def validate(self):
        if self.reason not in self.REASONS:
            raise MalformedMessage(f"Unknown withdrawal reason: {self.reason}")


@dataclass(frozen=True)
class DeliveryUpdated(RealtimeMessage):
    """Latest snapshot of a delivery; last write wins per delivery id."""
    TYPE: ClassVar[str] = "delivery_updated"

    delivery_id: int
    status: str
    driver_id: Optional[int] = None
    message: str = ""
    delivery: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LocationUpdate(RealtimeMessage):
    """Ephemeral driver position for an active delivery; never persisted."""
    TYPE: ClassVar[str] = "location_update"

    driver_id: int
    delivery_id: int
    latitude: float
    longitude: float
    timestamp: str
    speed_kmh: float = 0.0
    heading: Optional[float] = None
    accuracy: Optional[float] = None

    def validate(self):
        if not is_valid_coordinate(self.latitude, self.longitude):
            raise MalformedMessage("location_update has out-of-range coordinates")


MESSAGE_TYPES: Dict[str, Type[RealtimeMessage]] = {
    cls.TYPE: cls
    for cls in (DeliveryOffered, OfferWithdrawn, DeliveryUpdated, LocationUpdate)
}


def parse_message(payload: Dict[str, Any]) -> RealtimeMessage:
    """Parse a channel event or client frame into its message variant."""
    if not isinstance(payload, dict):
        raise MalformedMessage("Message must be an object")
    message_cls = MESSAGE_TYPES.get(payload.get("type"))
    if message_cls is None:
        raise MalformedMessage(f"Unknown message type: {payload.get('type')}")
    return message_cls.from_payload(payload)
