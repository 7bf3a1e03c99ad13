"""Raffle state model, rules and persistence backends."""
from .errors import SnapshotNotFoundError, StateStoreError, StorageTimeoutError, UserInputError
from .factory import create_state_store
from .file_store import FileStateStore
from .models import DayHours, DayOfWeek, Direction, Mode, RaffleState, SnapshotInfo, TicketStatus
from .postgres_store import PostgresStateStore
from .store import StateStore

__all__ = [
    "DayHours",
    "DayOfWeek",
    "Direction",
    "FileStateStore",
    "Mode",
    "PostgresStateStore",
    "RaffleState",
    "SnapshotInfo",
    "SnapshotNotFoundError",
    "StateStore",
    "StateStoreError",
    "StorageTimeoutError",
    "TicketStatus",
    "UserInputError",
    "create_state_store",
]
