from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from raffle.dependencies.state import StateStoreDep, enforce_rate_limit
from raffle.state.errors import is_user_input_error
from raffle.state.models import DayHours, DayOfWeek, Direction, Mode, OperatingHours
from raffle.state.store import StateStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/state", tags=["state"])

INVALID_PAYLOAD = "Invalid request payload"
LOAD_FAILED = "Unable to load state"
PROCESS_FAILED = "Unable to process request. Please try again."
MAX_DISPLAY_URL_LENGTH = 64

TicketNumber = Annotated[StrictInt, Field(gt=0)]
_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$"


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


class StateAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    async def apply(self, store: StateStore) -> Any:
        raise NotImplementedError


class GenerateAction(StateAction):
    action: Literal["generate"]
    start_number: TicketNumber = Field(alias="startNumber")
    end_number: TicketNumber = Field(alias="endNumber")
    mode: Mode

    async def apply(self, store: StateStore) -> Any:
        state = await store.generate_state(start_number=self.start_number, end_number=self.end_number, mode=self.mode)
        return state.to_payload()


class GenerateBatchAction(StateAction):
    action: Literal["generateBatch"]
    start_number: TicketNumber = Field(alias="startNumber")
    end_number: TicketNumber = Field(alias="endNumber")
    batch_size: TicketNumber = Field(alias="batchSize")

    async def apply(self, store: StateStore) -> Any:
        state = await store.generate_batch(
            start_number=self.start_number,
            end_number=self.end_number,
            batch_size=self.batch_size,
        )
        return state.to_payload()


class AppendAction(StateAction):
    action: Literal["append"]
    end_number: TicketNumber = Field(alias="endNumber")

    async def apply(self, store: StateStore) -> Any:
        return (await store.append_tickets(self.end_number)).to_payload()


class ExtendRangeAction(StateAction):
    action: Literal["extendRange"]
    end_number: TicketNumber = Field(alias="endNumber")

    async def apply(self, store: StateStore) -> Any:
        return (await store.extend_range(self.end_number)).to_payload()


class SetModeAction(StateAction):
    action: Literal["setMode"]
    mode: Mode

    async def apply(self, store: StateStore) -> Any:
        return (await store.set_mode(self.mode)).to_payload()


class UpdateServingAction(StateAction):
    action: Literal["updateServing"]
    currently_serving: TicketNumber | None = Field(alias="currentlyServing")

    async def apply(self, store: StateStore) -> Any:
        return (await store.update_currently_serving(self.currently_serving)).to_payload()


class AdvanceServingAction(StateAction):
    action: Literal["advanceServing"]
    direction: Direction

    async def apply(self, store: StateStore) -> Any:
        return (await store.advance_serving(self.direction)).to_payload()


class MarkReturnedAction(StateAction):
    action: Literal["markReturned"]
    ticket_number: TicketNumber = Field(alias="ticketNumber")

    async def apply(self, store: StateStore) -> Any:
        return (await store.mark_ticket_returned(self.ticket_number)).to_payload()


class MarkUnclaimedAction(StateAction):
    action: Literal["markUnclaimed"]
    ticket_number: TicketNumber = Field(alias="ticketNumber")

    async def apply(self, store: StateStore) -> Any:
        return (await store.mark_ticket_unclaimed(self.ticket_number)).to_payload()


class ResetAction(StateAction):
    action: Literal["reset"]

    async def apply(self, store: StateStore) -> Any:
        return (await store.reset_state()).to_payload()


class ListSnapshotsAction(StateAction):
    action: Literal["listSnapshots"]

    async def apply(self, store: StateStore) -> Any:
        return [snapshot.to_payload() for snapshot in await store.list_snapshots()]


class RestoreSnapshotAction(StateAction):
    action: Literal["restoreSnapshot"]
    id: str = Field(min_length=1)

    async def apply(self, store: StateStore) -> Any:
        return (await store.restore_snapshot(self.id)).to_payload()


class UndoAction(StateAction):
    action: Literal["undo"]

    async def apply(self, store: StateStore) -> Any:
        return (await store.undo()).to_payload()


class RedoAction(StateAction):
    action: Literal["redo"]

    async def apply(self, store: StateStore) -> Any:
        return (await store.redo()).to_payload()


class SetDisplayUrlAction(StateAction):
    action: Literal["setDisplayUrl"]
    url: Annotated[str, Field(max_length=MAX_DISPLAY_URL_LENGTH)] | None

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("Display URL must be an http(s) URL")
        return value

    async def apply(self, store: StateStore) -> Any:
        return (await store.set_display_url(self.url)).to_payload()


class GetDisplayUrlAction(StateAction):
    action: Literal["getDisplayUrl"]

    async def apply(self, store: StateStore) -> Any:
        state = await store.load_state()
        return {"displayUrl": state.display_url or None}


class DayHoursPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_open: StrictBool = Field(alias="isOpen")
    open_time: str = Field(alias="openTime", pattern=_TIME_PATTERN)
    close_time: str = Field(alias="closeTime", pattern=_TIME_PATTERN)

    @field_validator("open_time", "close_time")
    @classmethod
    def _with_seconds(cls, value: str) -> str:
        return value if value.count(":") == 2 else f"{value}:00"

    @model_validator(mode="after")
    def _closes_after_opening(self) -> "DayHoursPayload":
        if self.is_open and self.close_time <= self.open_time:
            raise ValueError("Closing time must be after opening time")
        return self

    def to_model(self) -> DayHours:
        return DayHours(is_open=self.is_open, open_time=self.open_time, close_time=self.close_time)


class SetOperatingHoursAction(StateAction):
    action: Literal["setOperatingHours"]
    operating_hours: dict[DayOfWeek, DayHoursPayload] = Field(alias="operatingHours")
    timezone: str

    @field_validator("operating_hours")
    @classmethod
    def _all_days(cls, value: dict[DayOfWeek, DayHoursPayload]) -> dict[DayOfWeek, DayHoursPayload]:
        missing = [day.value for day in DayOfWeek if day not in value]
        if missing:
            raise ValueError(f"Operating hours are missing {', '.join(missing)}")
        return value

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone {value!r}") from exc
        return value

    def hours(self) -> OperatingHours:
        return {day: payload.to_model() for day, payload in self.operating_hours.items()}

    async def apply(self, store: StateStore) -> Any:
        return (await store.set_operating_hours(self.hours(), self.timezone)).to_payload()


AnyStateAction = Annotated[
    Union[
        GenerateAction,
        GenerateBatchAction,
        AppendAction,
        ExtendRangeAction,
        SetModeAction,
        UpdateServingAction,
        AdvanceServingAction,
        MarkReturnedAction,
        MarkUnclaimedAction,
        ResetAction,
        ListSnapshotsAction,
        RestoreSnapshotAction,
        UndoAction,
        RedoAction,
        SetDisplayUrlAction,
        GetDisplayUrlAction,
        SetOperatingHoursAction,
    ],
    Field(discriminator="action"),
]

_action_adapter: TypeAdapter[AnyStateAction] = TypeAdapter(AnyStateAction)


def parse_action(body: Any) -> StateAction:
    return _action_adapter.validate_python(body)


@router.get("", summary="Current raffle state")
async def read_state(store: StateStoreDep) -> Any:
    try:
        state = await store.load_state()
    except Exception:
        logger.exception("Failed to load raffle state")
        return error_response(LOAD_FAILED, 500)
    return state.to_payload()


@router.post("", summary="Apply a state action", dependencies=[Depends(enforce_rate_limit)])
async def apply_action(request: Request, store: StateStoreDep) -> Any:
    try:
        action = parse_action(await request.json())
    except (ValueError, ValidationError):
        # json.JSONDecodeError and UnicodeDecodeError are both ValueErrors
        return error_response(INVALID_PAYLOAD, 400)

    try:
        return await action.apply(store)
    except Exception as exc:
        if is_user_input_error(exc):
            return error_response(str(exc), 400)
        logger.exception("State action %s failed", action.action)
        return error_response(PROCESS_FAILED, 500)
