import pytest

from raffle.state import rules
from raffle.state.errors import UserInputError
from raffle.state.models import DayHours, DayOfWeek, Direction, Mode, RaffleState, TicketStatus

NOW = 1_700_000_000_000


def _sequential(start: int = 1, end: int = 3) -> RaffleState:
    return rules.generate(RaffleState(), start, end, Mode.SEQUENTIAL)


def test_secure_shuffle_is_a_permutation():
    values = list(range(1, 51))
    shuffled = rules.secure_shuffle(values)
    assert sorted(shuffled) == values
    assert values == list(range(1, 51))


def test_generate_sequential_builds_full_range():
    state = _sequential(1, 3)
    assert state.generated_order == [1, 2, 3]
    assert state.order_locked is True
    assert state.currently_serving is None


def test_generate_random_covers_range_once():
    state = rules.generate(RaffleState(), 10, 40, "random")
    assert sorted(state.generated_order) == list(range(10, 41))
    assert state.mode is Mode.RANDOM


@pytest.mark.parametrize(
    ("start", "end", "message"),
    [
        (0, 5, "Start and end must be positive numbers."),
        (5, 5, "End number must be greater than start number."),
        (6, 2, "End number must be greater than start number."),
        (1, 1_000_000, "Ticket numbers must be 6 digits or fewer (max 999999)."),
        (1.5, 3, "Start and end must be integers."),
        (True, 3, "Start and end must be integers."),
    ],
)
def test_generate_rejects_invalid_ranges(start, end, message):
    with pytest.raises(UserInputError) as exc:
        rules.generate(RaffleState(), start, end, Mode.SEQUENTIAL)
    assert str(exc.value) == message


def test_generate_fails_once_locked():
    with pytest.raises(UserInputError, match="Order is locked"):
        rules.generate(_sequential(), 1, 10, Mode.SEQUENTIAL)


def test_generate_rejects_unknown_mode():
    with pytest.raises(UserInputError, match="random or sequential"):
        rules.generate(RaffleState(), 1, 3, "shuffled")


def test_append_sequential_extends_tail():
    state = rules.append(_sequential(1, 3), 5)
    assert state.generated_order == [1, 2, 3, 4, 5]
    assert state.end_number == 5


def test_append_random_preserves_prefix():
    original = rules.generate(RaffleState(), 1, 3, Mode.RANDOM)
    appended = rules.append(original, 6)
    assert appended.generated_order[:3] == original.generated_order
    assert sorted(appended.generated_order[3:]) == [4, 5, 6]


def test_append_requires_current_range_exhausted():
    state = rules.batch(RaffleState(), 1, 10, 4)
    with pytest.raises(UserInputError) as exc:
        rules.append(state, 12)
    assert "All 6 remaining tickets" in str(exc.value)


def test_append_requires_range_and_larger_end():
    with pytest.raises(UserInputError, match="No active range"):
        rules.append(RaffleState(), 5)
    with pytest.raises(UserInputError, match="greater than 3"):
        rules.append(_sequential(1, 3), 3)


@pytest.mark.parametrize("transition", [rules.append, rules.extend])
@pytest.mark.parametrize(
    ("new_end", "message"),
    [
        (1_000_000, "Ticket numbers must be 6 digits or fewer (max 999999)."),
        (0, "New end number must be a positive integer."),
        (-3, "New end number must be a positive integer."),
        (7.5, "New end number must be a positive integer."),
        ("9", "New end number must be a positive integer."),
    ],
)
def test_new_end_bounds(transition, new_end, message):
    with pytest.raises(UserInputError) as exc:
        transition(_sequential(1, 3), new_end)
    assert str(exc.value) == message


def test_extend_only_moves_end():
    state = _sequential(1, 3)
    extended = rules.extend(state, 8)
    assert extended.end_number == 8
    assert extended.generated_order == [1, 2, 3]


def test_batch_adopts_range_and_locks():
    state = rules.batch(RaffleState(mode=Mode.SEQUENTIAL), 5, 20, 3)
    assert state.start_number == 5
    assert state.end_number == 20
    assert state.generated_order == [5, 6, 7]
    assert state.order_locked is True


def test_batch_draws_only_undrawn_tickets():
    first = rules.batch(RaffleState(), 1, 10, 4)
    second = rules.batch(first, 1, 10, 6)
    assert second.generated_order[:4] == first.generated_order
    assert sorted(second.generated_order) == list(range(1, 11))


def test_batch_start_is_locked_after_first_draw():
    state = rules.batch(RaffleState(), 1, 10, 2)
    with pytest.raises(UserInputError) as exc:
        rules.batch(state, 2, 10, 1)
    assert str(exc.value) == "Start number is locked at 1 after the first draw. Reset to start a new range."


def test_batch_end_cannot_shrink():
    state = rules.batch(RaffleState(), 1, 10, 2)
    with pytest.raises(UserInputError) as exc:
        rules.batch(state, 1, 9, 1)
    assert str(exc.value) == (
        "End number cannot be lowered below 10. Choose a number greater than 10 to extend the range."
    )


def test_batch_exhausted_pool_and_oversized_batch():
    state = rules.batch(RaffleState(), 1, 3, 3)
    with pytest.raises(UserInputError) as exc:
        rules.batch(state, 1, 3, 1)
    assert str(exc.value) == "All tickets in range 1-3 have already been drawn."

    partial = rules.batch(RaffleState(), 1, 5, 2)
    with pytest.raises(UserInputError) as exc:
        rules.batch(partial, 1, 5, 4)
    assert str(exc.value) == "Batch size 4 exceeds remaining undrawn tickets (3)."


def test_batch_rejects_non_positive_size():
    with pytest.raises(UserInputError, match="Batch size must be a positive integer"):
        rules.batch(RaffleState(), 1, 5, 0)


def test_set_mode_before_range_records_preference():
    state = rules.set_mode(RaffleState(), Mode.SEQUENTIAL)
    assert state.mode is Mode.SEQUENTIAL
    assert state.generated_order == []


def test_set_mode_with_range_and_no_order_generates():
    state = rules.extend(rules.batch(RaffleState(), 1, 2, 2), 4)
    unordered = RaffleState(start_number=1, end_number=4)
    reshaped = rules.set_mode(unordered, Mode.SEQUENTIAL)
    assert reshaped.generated_order == [1, 2, 3, 4]
    assert reshaped.order_locked is True
    # an existing order is never reshaped
    kept = rules.set_mode(state, Mode.SEQUENTIAL)
    assert kept.generated_order == state.generated_order


def test_update_serving_validates_and_records_call_time():
    state = rules.update_serving(_sequential(), 2, NOW)
    assert state.currently_serving == 2
    assert state.called_at == {2: NOW}
    cleared = rules.update_serving(state, None, NOW)
    assert cleared.currently_serving is None

    with pytest.raises(UserInputError, match="within the active range"):
        rules.update_serving(state, 9, NOW)
    with pytest.raises(UserInputError, match="No active range"):
        rules.update_serving(RaffleState(), 1, NOW)


def test_update_serving_requires_drawn_ticket():
    state = rules.batch(RaffleState(mode=Mode.SEQUENTIAL), 1, 5, 2)
    with pytest.raises(UserInputError) as exc:
        rules.update_serving(state, 4, NOW)
    assert str(exc.value) == "Ticket 4 has not been drawn yet."


def test_advance_skips_returned_tickets():
    state = _sequential(1, 4)
    state = rules.mark_returned(state, 2, NOW)
    first = rules.advance(state, Direction.NEXT, NOW)
    assert first.currently_serving == 1
    second = rules.advance(first, "next", NOW + 1)
    assert second.currently_serving == 3
    back = rules.advance(second, Direction.PREV, NOW + 2)
    assert back.currently_serving == 1


def test_advance_prev_from_nothing_reveals_start():
    state = rules.advance(_sequential(1, 3), Direction.PREV, NOW)
    assert state.currently_serving == 1


def test_advance_without_eligible_ticket_returns_same_object():
    state = rules.update_serving(_sequential(1, 3), 3, NOW)
    assert rules.advance(state, Direction.NEXT, NOW + 1) is state


def test_advance_requires_generated_order():
    with pytest.raises(UserInputError, match="Generate tickets first"):
        rules.advance(RaffleState(start_number=1, end_number=3), Direction.NEXT, NOW)


def test_mark_returned_auto_advances():
    state = rules.update_serving(_sequential(1, 3), 2, NOW)
    marked = rules.mark_returned(state, 2, NOW + 5)
    assert marked.currently_serving == 3
    assert marked.ticket_status[2] is TicketStatus.RETURNED
    assert marked.called_at[3] == NOW + 5


def test_mark_returned_last_ticket_clears_serving():
    state = rules.update_serving(_sequential(1, 2), 2, NOW)
    marked = rules.mark_returned(state, 2, NOW)
    assert marked.currently_serving is None


def test_mark_returned_validates_ticket():
    with pytest.raises(UserInputError, match="within the active range"):
        rules.mark_returned(_sequential(1, 3), 7, NOW)
    with pytest.raises(UserInputError, match="positive integer"):
        rules.mark_returned(_sequential(1, 3), -1, NOW)


def test_mark_unclaimed_requires_prior_call():
    state = rules.update_serving(_sequential(1, 3), 1, NOW)
    with pytest.raises(UserInputError) as exc:
        rules.mark_unclaimed(state, 2)
    assert str(exc.value) == "Ticket 2 must be called before it can be marked unclaimed."

    later = rules.update_serving(state, 2, NOW)
    marked = rules.mark_unclaimed(later, 1)
    assert marked.ticket_status[1] is TicketStatus.UNCLAIMED


def test_mark_unclaimed_requires_serving_pointer():
    with pytest.raises(UserInputError, match="No draw position"):
        rules.mark_unclaimed(_sequential(1, 3), 1)


def test_reset_keeps_hours_and_timezone():
    hours = {day: DayHours(is_open=True, open_time="09:00:00", close_time="12:00:00") for day in DayOfWeek}
    state = rules.set_operating_hours(_sequential(), hours, "Europe/Istanbul")
    state = rules.set_display_url(state, "https://example.org")
    cleared = rules.reset(state)
    assert cleared.generated_order == []
    assert cleared.order_locked is False
    assert cleared.has_range is False
    assert cleared.display_url is None
    assert cleared.operating_hours == hours
    assert cleared.timezone == "Europe/Istanbul"
