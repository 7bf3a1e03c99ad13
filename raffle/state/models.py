from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping


class Mode(str, Enum):
    """How newly introduced tickets are ordered."""

    RANDOM = "random"
    SEQUENTIAL = "sequential"


class TicketStatus(str, Enum):
    """Non-default ticket states. Tickets without an entry are pending."""

    RETURNED = "returned"
    UNCLAIMED = "unclaimed"


class Direction(str, Enum):
    NEXT = "next"
    PREV = "prev"


class DayOfWeek(str, Enum):
    SUNDAY = "sunday"
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"


DEFAULT_TIMEZONE = "America/Los_Angeles"


@dataclass(slots=True, frozen=True)
class DayHours:
    """Opening window for a single weekday."""

    is_open: bool
    open_time: str
    close_time: str

    def to_payload(self) -> dict[str, Any]:
        return {"isOpen": self.is_open, "openTime": self.open_time, "closeTime": self.close_time}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DayHours":
        return cls(
            is_open=bool(payload.get("isOpen", False)),
            open_time=str(payload.get("openTime", "10:00:00")),
            close_time=str(payload.get("closeTime", "14:00:00")),
        )


OperatingHours = dict[DayOfWeek, DayHours]


def default_operating_hours() -> OperatingHours:
    weekend = {DayOfWeek.SUNDAY, DayOfWeek.SATURDAY}
    return {
        day: DayHours(is_open=day not in weekend, open_time="10:00:00", close_time="14:00:00")
        for day in DayOfWeek
    }


def operating_hours_to_payload(hours: OperatingHours | None) -> dict[str, Any] | None:
    if hours is None:
        return None
    return {day.value: hours[day].to_payload() for day in DayOfWeek if day in hours}


def operating_hours_from_payload(payload: Mapping[str, Any] | None) -> OperatingHours | None:
    if payload is None:
        return None
    return {
        DayOfWeek(day): DayHours.from_payload(value)
        for day, value in payload.items()
        if day in DayOfWeek._value2member_map_ and isinstance(value, Mapping)
    }


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""

    return time.time_ns() // 1_000_000


def format_timestamp(timestamp: int) -> str:
    """Render epoch milliseconds as ``YYYYMMDDHHMMSSmmm`` (UTC)."""

    moment = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
    return moment.strftime("%Y%m%d%H%M%S") + f"{timestamp % 1000:03d}"


def parse_formatted_timestamp(value: str) -> int:
    """Inverse of :func:`format_timestamp`."""

    moment = datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    return int(moment.timestamp()) * 1000 + int(value[14:17])


@dataclass(slots=True)
class RaffleState:
    """The single authoritative raffle record.

    ``start_number``/``end_number`` of ``0`` mean no range has been set.
    ``timestamp`` is the persistence time (epoch ms) of this revision and is
    ``None`` only for states that have not been written yet.
    """

    start_number: int = 0
    end_number: int = 0
    mode: Mode = Mode.RANDOM
    generated_order: list[int] = field(default_factory=list)
    currently_serving: int | None = None
    ticket_status: dict[int, TicketStatus] = field(default_factory=dict)
    called_at: dict[int, int] = field(default_factory=dict)
    order_locked: bool = False
    timestamp: int | None = None
    display_url: str | None = None
    operating_hours: OperatingHours | None = field(default_factory=default_operating_hours)
    timezone: str = DEFAULT_TIMEZONE

    @property
    def has_range(self) -> bool:
        return not (self.start_number == 0 and self.end_number == 0)

    def to_payload(self) -> dict[str, Any]:
        return {
            "startNumber": self.start_number,
            "endNumber": self.end_number,
            "mode": self.mode.value,
            "generatedOrder": list(self.generated_order),
            "currentlyServing": self.currently_serving,
            "ticketStatus": {str(ticket): status.value for ticket, status in self.ticket_status.items()},
            "calledAt": {str(ticket): called for ticket, called in self.called_at.items()},
            "orderLocked": self.order_locked,
            "timestamp": self.timestamp,
            "displayUrl": self.display_url,
            "operatingHours": operating_hours_to_payload(self.operating_hours),
            "timezone": self.timezone,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "RaffleState":
        """Merge a (possibly partial) stored payload over the defaults."""

        payload = payload or {}
        defaults = cls()
        serving = payload.get("currentlyServing")
        timestamp = payload.get("timestamp")
        hours = (
            operating_hours_from_payload(payload["operatingHours"])
            if "operatingHours" in payload
            else defaults.operating_hours
        )
        return cls(
            start_number=int(payload.get("startNumber", defaults.start_number)),
            end_number=int(payload.get("endNumber", defaults.end_number)),
            mode=Mode(payload.get("mode", defaults.mode.value)),
            generated_order=[int(value) for value in payload.get("generatedOrder") or []],
            currently_serving=int(serving) if serving is not None else None,
            ticket_status={
                int(ticket): TicketStatus(status)
                for ticket, status in (payload.get("ticketStatus") or {}).items()
            },
            called_at={int(ticket): int(called) for ticket, called in (payload.get("calledAt") or {}).items()},
            order_locked=bool(payload.get("orderLocked", defaults.order_locked)),
            timestamp=int(timestamp) if timestamp is not None else now_ms(),
            display_url=payload.get("displayUrl", defaults.display_url),
            operating_hours=hours,
            timezone=str(payload.get("timezone") or defaults.timezone),
        )


@dataclass(slots=True, frozen=True)
class SnapshotInfo:
    """Metadata describing one persisted snapshot (never the payload)."""

    id: str
    timestamp: int
    path: str

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "timestamp": self.timestamp, "path": self.path}
