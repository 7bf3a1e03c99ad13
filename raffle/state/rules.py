"""Backend-agnostic validation and transition rules for the raffle state.

Every function here is pure: it receives the current :class:`RaffleState`
plus the operation inputs and returns a fresh state (or raises
:class:`UserInputError`). Both storage backends run exactly these rules.
"""

from __future__ import annotations

import secrets
from dataclasses import replace
from typing import Any, Iterable, Sequence

from .errors import UserInputError
from .models import Direction, Mode, OperatingHours, RaffleState, TicketStatus

MAX_TICKET_NUMBER = 999_999


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_positive_int(value: Any) -> bool:
    return _is_int(value) and value > 0


def build_range(start: int, end: int) -> list[int]:
    return list(range(start, end + 1))


def secure_shuffle(values: Iterable[int]) -> list[int]:
    """Fisher-Yates shuffle driven by the OS CSPRNG."""

    shuffled = list(values)
    for index in range(len(shuffled) - 1, 0, -1):
        swap = secrets.randbelow(index + 1)
        shuffled[index], shuffled[swap] = shuffled[swap], shuffled[index]
    return shuffled


def generate_order(start: int, end: int, mode: Mode) -> list[int]:
    tickets = build_range(start, end)
    return secure_shuffle(tickets) if mode is Mode.RANDOM else tickets


def coerce_mode(mode: Mode | str) -> Mode:
    try:
        return Mode(mode)
    except ValueError as exc:
        raise UserInputError("Mode must be either random or sequential.") from exc


def validate_range(start: Any, end: Any, *, require_strict_end: bool = True) -> None:
    if not _is_int(start) or not _is_int(end):
        raise UserInputError("Start and end must be integers.")
    if start <= 0 or end <= 0:
        raise UserInputError("Start and end must be positive numbers.")
    if start > MAX_TICKET_NUMBER or end > MAX_TICKET_NUMBER:
        raise UserInputError(f"Ticket numbers must be 6 digits or fewer (max {MAX_TICKET_NUMBER}).")
    if require_strict_end and end <= start:
        raise UserInputError("End number must be greater than start number.")
    if end < start:
        raise UserInputError("End number must be greater than or equal to start number.")


def validate_new_end(state: RaffleState, new_end: Any) -> None:
    if not _is_positive_int(new_end):
        raise UserInputError("New end number must be a positive integer.")
    if new_end > MAX_TICKET_NUMBER:
        raise UserInputError(f"Ticket numbers must be 6 digits or fewer (max {MAX_TICKET_NUMBER}).")
    if new_end <= state.end_number:
        raise UserInputError(f"New end number must be greater than {state.end_number}.")


def ensure_has_range(state: RaffleState) -> None:
    if not state.has_range:
        raise UserInputError("No active range is set yet.")


def ensure_has_order(state: RaffleState) -> None:
    if not state.generated_order:
        raise UserInputError("No tickets have been generated yet. Generate tickets first.")


def undrawn_tickets(state: RaffleState, start: int, end: int) -> list[int]:
    """Tickets in ``[start, end]`` that are not in the draw order yet, ascending."""

    drawn = set(state.generated_order)
    return [ticket for ticket in range(start, end + 1) if ticket not in drawn]


def _validate_ticket(state: RaffleState, ticket: Any) -> None:
    if not _is_positive_int(ticket):
        raise UserInputError("Ticket number must be a positive integer.")
    ensure_has_range(state)
    if ticket < state.start_number or ticket > state.end_number:
        raise UserInputError("Ticket number must be within the active range.")


def _next_eligible(state: RaffleState, indices: Iterable[int]) -> int | None:
    for index in indices:
        ticket = state.generated_order[index]
        if state.ticket_status.get(ticket) is not TicketStatus.RETURNED:
            return ticket
    return None


def _serve(state: RaffleState, ticket: int | None, now: int, **changes: Any) -> RaffleState:
    called_at = dict(state.called_at)
    if ticket is not None:
        called_at[ticket] = now
    return replace(state, currently_serving=ticket, called_at=called_at, **changes)


def generate(state: RaffleState, start: Any, end: Any, mode: Mode | str) -> RaffleState:
    if state.order_locked:
        raise UserInputError("Order is locked. Use reset to start a new lottery.")
    validate_range(start, end, require_strict_end=True)
    resolved = coerce_mode(mode)
    return replace(
        state,
        start_number=start,
        end_number=end,
        mode=resolved,
        generated_order=generate_order(start, end, resolved),
        currently_serving=None,
        ticket_status={},
        called_at={},
        order_locked=True,
        timestamp=None,
    )


def append(state: RaffleState, new_end: Any) -> RaffleState:
    ensure_has_range(state)
    validate_new_end(state, new_end)
    remaining = undrawn_tickets(state, state.start_number, state.end_number)
    if remaining:
        raise UserInputError(
            f"All {len(remaining)} remaining tickets in the current range must be drawn before "
            "appending new tickets. Use a batch draw first."
        )
    additions = build_range(state.end_number + 1, new_end)
    if state.mode is Mode.RANDOM:
        additions = secure_shuffle(additions)
    order = [*state.generated_order, *additions]
    return replace(state, end_number=new_end, generated_order=order, order_locked=bool(order))


def extend(state: RaffleState, new_end: Any) -> RaffleState:
    ensure_has_range(state)
    validate_new_end(state, new_end)
    return replace(state, end_number=new_end)


def batch(state: RaffleState, start: Any, end: Any, batch_size: Any) -> RaffleState:
    """Draw ``batch_size`` undrawn tickets and append them to the order."""

    if not _is_positive_int(batch_size):
        raise UserInputError("Batch size must be a positive integer.")
    validate_range(start, end, require_strict_end=False)

    if state.has_range:
        if start != state.start_number:
            raise UserInputError(
                f"Start number is locked at {state.start_number} after the first draw. "
                "Reset to start a new range."
            )
        if end < state.end_number:
            raise UserInputError(
                f"End number cannot be lowered below {state.end_number}. "
                f"Choose a number greater than {state.end_number} to extend the range."
            )
        effective_start = state.start_number
    else:
        effective_start = start
    effective_end = end

    pool = undrawn_tickets(state, effective_start, effective_end)
    if not pool:
        raise UserInputError(
            f"All tickets in range {effective_start}-{effective_end} have already been drawn."
        )
    if batch_size > len(pool):
        raise UserInputError(f"Batch size {batch_size} exceeds remaining undrawn tickets ({len(pool)}).")

    if state.mode is Mode.RANDOM:
        drawn = secure_shuffle(pool)[:batch_size]
    else:
        drawn = pool[:batch_size]

    return replace(
        state,
        start_number=effective_start,
        end_number=effective_end,
        generated_order=[*state.generated_order, *drawn],
        order_locked=True,
    )


def set_mode(state: RaffleState, mode: Mode | str) -> RaffleState:
    resolved = coerce_mode(mode)
    if not state.has_range or state.generated_order:
        return replace(state, mode=resolved)
    order = generate_order(state.start_number, state.end_number, resolved)
    return replace(state, mode=resolved, generated_order=order, order_locked=bool(order))


def update_serving(state: RaffleState, value: Any, now: int) -> RaffleState:
    ensure_has_range(state)
    if value is None:
        return replace(state, currently_serving=None)
    if not _is_int(value) or value < state.start_number or value > state.end_number:
        raise UserInputError("Currently serving must be within the active range.")
    if value not in state.generated_order:
        raise UserInputError(f"Ticket {value} has not been drawn yet.")
    return _serve(state, value, now)


def advance(state: RaffleState, direction: Direction | str, now: int) -> RaffleState:
    """Move the serving pointer one eligible step.

    Returns ``state`` itself (same object) when there is nowhere to move.
    """

    ensure_has_range(state)
    ensure_has_order(state)
    try:
        step = Direction(direction)
    except ValueError as exc:
        raise UserInputError("Direction must be either next or prev.") from exc

    order: Sequence[int] = state.generated_order
    if state.currently_serving is None or state.currently_serving not in order:
        target = _next_eligible(state, range(len(order)))
    else:
        position = order.index(state.currently_serving)
        if step is Direction.NEXT:
            target = _next_eligible(state, range(position + 1, len(order)))
        else:
            target = _next_eligible(state, range(position - 1, -1, -1))

    if target is None or target == state.currently_serving:
        return state
    return _serve(state, target, now)


def mark_returned(state: RaffleState, ticket: Any, now: int) -> RaffleState:
    _validate_ticket(state, ticket)
    ensure_has_order(state)
    statuses = {**state.ticket_status, ticket: TicketStatus.RETURNED}
    marked = replace(state, ticket_status=statuses)
    if state.currently_serving != ticket or ticket not in state.generated_order:
        return marked
    position = state.generated_order.index(ticket)
    following = _next_eligible(marked, range(position + 1, len(state.generated_order)))
    return _serve(marked, following, now)


def mark_unclaimed(state: RaffleState, ticket: Any) -> RaffleState:
    _validate_ticket(state, ticket)
    ensure_has_order(state)
    if state.currently_serving is None or state.currently_serving not in state.generated_order:
        raise UserInputError("No draw position has been called yet.")
    if ticket not in state.generated_order:
        raise UserInputError(f"Ticket {ticket} has not been drawn yet.")
    if state.generated_order.index(ticket) > state.generated_order.index(state.currently_serving):
        raise UserInputError(f"Ticket {ticket} must be called before it can be marked unclaimed.")
    statuses = {**state.ticket_status, ticket: TicketStatus.UNCLAIMED}
    return replace(state, ticket_status=statuses)


def reset(state: RaffleState) -> RaffleState:
    return RaffleState(operating_hours=state.operating_hours, timezone=state.timezone)


def set_display_url(state: RaffleState, url: str | None) -> RaffleState:
    return replace(state, display_url=url)


def set_operating_hours(state: RaffleState, hours: OperatingHours, timezone: str) -> RaffleState:
    return replace(state, operating_hours=dict(hours), timezone=timezone)
