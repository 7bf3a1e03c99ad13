"""Operation layer shared by every raffle state backend.

:class:`StateStore` owns the read-modify-write cycle, the timestamp
watermark and the single-slot redo memory. Backends only provide the storage
primitives (read current, write snapshot + current, list/read snapshots and,
optionally, delete old snapshots).
"""

from __future__ import annotations

import asyncio
import functools
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Awaitable, Callable, ClassVar, Mapping, TypeVar

from opentelemetry import trace

from raffle.metrics import metrics_registry, track_duration
from raffle.metrics.definitions import (
    STATE_OPERATION_DURATION_SECONDS,
    STATE_OPERATION_FAILURES_TOTAL,
    STATE_OPERATIONS_TOTAL,
    STATE_SNAPSHOTS_WRITTEN_TOTAL,
)

from . import rules
from .errors import SnapshotNotFoundError, UserInputError, is_user_input_error
from .models import Direction, Mode, OperatingHours, RaffleState, SnapshotInfo, format_timestamp, now_ms

logger = logging.getLogger(__name__)
_tracer = trace.get_tracer(__name__)

_T = TypeVar("_T")

Clock = Callable[[], int]


def new_snapshot_id(timestamp: int) -> str:
    return f"state-{format_timestamp(timestamp)}-{secrets.token_hex(3)}.json"


def _operation(name: str, *, mutating: bool = True):
    """Wrap a public store operation with locking, tracing, metrics and logging."""

    def decorator(func: Callable[..., Awaitable[_T]]) -> Callable[..., Awaitable[_T]]:
        @functools.wraps(func)
        async def wrapper(self: "StateStore", *args: Any, **kwargs: Any) -> _T:
            labels = {"operation": name, "backend": self.backend_name}
            duration = metrics_registry.distribution(
                STATE_OPERATION_DURATION_SECONDS, label_names=("operation", "backend")
            )
            with _tracer.start_as_current_span(f"raffle.state.{name}") as span:
                span.set_attribute("raffle.backend", self.backend_name)
                try:
                    with track_duration(duration, labels=labels):
                        if mutating:
                            async with self._write_lock:
                                result = await func(self, *args, **kwargs)
                        else:
                            result = await func(self, *args, **kwargs)
                except Exception as exc:
                    kind = "user_input" if is_user_input_error(exc) else "internal"
                    metrics_registry.counter(
                        STATE_OPERATION_FAILURES_TOTAL, label_names=("operation", "backend", "kind")
                    ).inc(labels={**labels, "kind": kind})
                    if kind == "user_input":
                        logger.info("State %s rejected: %s", name, exc)
                    else:
                        logger.warning("State %s failed on %s backend (%s)", name, self.backend_name, type(exc).__name__)
                    raise
            metrics_registry.counter(STATE_OPERATIONS_TOTAL, label_names=("operation", "backend")).inc(labels=labels)
            if mutating and isinstance(result, RaffleState):
                logger.info("State %s stored revision %s", name, result.timestamp)
            return result

        return wrapper

    return decorator


class StateStore(ABC):
    """Raffle state operations on top of an abstract persistence substrate."""

    backend_name: ClassVar[str] = "abstract"
    supports_cleanup: ClassVar[bool] = False

    def __init__(self, *, clock: Clock | None = None, retention_days: int | None = None) -> None:
        self._clock: Clock = clock or now_ms
        self._retention_days = retention_days
        self._last_persist_ts = 0
        self._redo_target: SnapshotInfo | None = None
        self._write_lock = asyncio.Lock()

    # -- storage primitives -------------------------------------------------

    @abstractmethod
    async def _read_current_payload(self) -> Mapping[str, Any] | None:
        """Return the stored current payload, or ``None`` when there is none."""

    @abstractmethod
    async def _write(self, payload: Mapping[str, Any], snapshot_id: str) -> None:
        """Store ``payload`` as snapshot ``snapshot_id`` and as the current state."""

    @abstractmethod
    async def _list_snapshot_records(self) -> list[SnapshotInfo]:
        """Return snapshot metadata, newest first."""

    @abstractmethod
    async def _read_snapshot_payload(self, snapshot_id: str) -> Mapping[str, Any] | None:
        """Return a snapshot's payload or ``None`` if it does not exist."""

    async def _delete_snapshots_older_than(self, retention_days: int) -> int:
        raise NotImplementedError(f"Snapshot cleanup is not available for the {self.backend_name} backend")

    # -- lifecycle ------------------------------------------------------------

    @property
    def last_persist_ts(self) -> int:
        return self._last_persist_ts

    async def open(self) -> None:
        """Seed the timestamp watermark from the stored current revision."""

        payload = await self._read_current_payload()
        timestamp = payload.get("timestamp") if payload else None
        if isinstance(timestamp, int):
            self._last_persist_ts = max(self._last_persist_ts, timestamp)

    async def close(self) -> None:
        return None

    # -- persistence ----------------------------------------------------------

    async def _persist(self, state: RaffleState, *, preserve_timestamp: bool = False) -> RaffleState:
        if preserve_timestamp and state.timestamp is not None:
            timestamp = state.timestamp
        else:
            timestamp = self._clock()
        if timestamp <= self._last_persist_ts:
            timestamp = self._last_persist_ts + 1
        self._last_persist_ts = timestamp
        self._redo_target = None

        persisted = replace(state, timestamp=timestamp)
        snapshot_id = new_snapshot_id(timestamp)
        await self._write(persisted.to_payload(), snapshot_id)
        metrics_registry.counter(STATE_SNAPSHOTS_WRITTEN_TOTAL, label_names=("backend",)).inc(
            labels={"backend": self.backend_name}
        )
        return persisted

    async def _read_state(self) -> RaffleState:
        payload = await self._read_current_payload()
        if payload is None:
            return await self._persist(RaffleState())
        try:
            return RaffleState.from_payload(payload)
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning("Stored state is unreadable (%s); resetting to defaults", type(exc).__name__)
            return await self._persist(RaffleState())

    async def _restore(self, snapshot_id: str) -> RaffleState:
        payload = await self._read_snapshot_payload(snapshot_id)
        if payload is None:
            raise SnapshotNotFoundError()
        return await self._persist(RaffleState.from_payload(payload), preserve_timestamp=True)

    # -- operations -----------------------------------------------------------

    @_operation("load_state", mutating=False)
    async def load_state(self) -> RaffleState:
        return await self._read_state()

    @_operation("generate_state")
    async def generate_state(self, *, start_number: int, end_number: int, mode: Mode | str) -> RaffleState:
        current = await self._read_state()
        return await self._persist(rules.generate(current, start_number, end_number, mode))

    @_operation("append_tickets")
    async def append_tickets(self, new_end_number: int) -> RaffleState:
        current = await self._read_state()
        return await self._persist(rules.append(current, new_end_number))

    @_operation("extend_range")
    async def extend_range(self, new_end_number: int) -> RaffleState:
        current = await self._read_state()
        return await self._persist(rules.extend(current, new_end_number))

    @_operation("generate_batch")
    async def generate_batch(self, *, start_number: int, end_number: int, batch_size: int) -> RaffleState:
        current = await self._read_state()
        return await self._persist(rules.batch(current, start_number, end_number, batch_size))

    @_operation("set_mode")
    async def set_mode(self, mode: Mode | str) -> RaffleState:
        current = await self._read_state()
        return await self._persist(rules.set_mode(current, mode))

    @_operation("update_currently_serving")
    async def update_currently_serving(self, value: int | None) -> RaffleState:
        current = await self._read_state()
        return await self._persist(rules.update_serving(current, value, self._clock()))

    @_operation("advance_serving")
    async def advance_serving(self, direction: Direction | str) -> RaffleState:
        current = await self._read_state()
        advanced = rules.advance(current, direction, self._clock())
        if advanced is current:
            logger.debug("No eligible ticket %s of %s", direction, current.currently_serving)
            return current
        return await self._persist(advanced)

    @_operation("mark_ticket_returned")
    async def mark_ticket_returned(self, ticket_number: int) -> RaffleState:
        current = await self._read_state()
        return await self._persist(rules.mark_returned(current, ticket_number, self._clock()))

    @_operation("mark_ticket_unclaimed")
    async def mark_ticket_unclaimed(self, ticket_number: int) -> RaffleState:
        current = await self._read_state()
        return await self._persist(rules.mark_unclaimed(current, ticket_number))

    @_operation("reset_state")
    async def reset_state(self) -> RaffleState:
        current = await self._read_state()
        persisted = await self._persist(rules.reset(current))
        if self.supports_cleanup and self._retention_days:
            # the reset is already stored; a failed prune is retried by the next reset or cleanup
            try:
                deleted = await self._delete_snapshots_older_than(self._retention_days)
            except Exception as exc:
                logger.warning("Snapshot prune after reset failed (%s)", type(exc).__name__)
            else:
                logger.info("Pruned %d snapshots older than %d days after reset", deleted, self._retention_days)
        return persisted

    @_operation("set_display_url")
    async def set_display_url(self, url: str | None) -> RaffleState:
        current = await self._read_state()
        return await self._persist(rules.set_display_url(current, url))

    @_operation("set_operating_hours")
    async def set_operating_hours(self, hours: OperatingHours, timezone: str) -> RaffleState:
        current = await self._read_state()
        return await self._persist(rules.set_operating_hours(current, hours, timezone))

    @_operation("list_snapshots", mutating=False)
    async def list_snapshots(self) -> list[SnapshotInfo]:
        return await self._list_snapshot_records()

    @_operation("restore_snapshot")
    async def restore_snapshot(self, snapshot_id: str) -> RaffleState:
        return await self._restore(snapshot_id)

    @_operation("undo")
    async def undo(self) -> RaffleState:
        snapshots = await self._list_snapshot_records()
        if len(snapshots) < 2:
            raise UserInputError("No history available.")
        latest, previous = snapshots[0], snapshots[1]
        restored = await self._restore(previous.id)
        self._redo_target = latest
        return restored

    @_operation("redo")
    async def redo(self) -> RaffleState:
        target, self._redo_target = self._redo_target, None
        if target is None:
            raise UserInputError("No later snapshot to redo to.")
        return await self._restore(target.id)

    @_operation("cleanup_old_snapshots")
    async def cleanup_old_snapshots(self, retention_days: int = 30) -> int:
        if not self.supports_cleanup:
            raise NotImplementedError(f"Snapshot cleanup is not available for the {self.backend_name} backend")
        if isinstance(retention_days, bool) or not isinstance(retention_days, int) or retention_days < 1:
            raise UserInputError("Retention days must be a positive integer.")
        deleted = await self._delete_snapshots_older_than(retention_days)
        logger.info("Deleted %d snapshots older than %d days", deleted, retention_days)
        return deleted
