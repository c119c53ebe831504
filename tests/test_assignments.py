from __future__ import annotations

import pytest

from session_blocks.errors import AssignmentNotFound, PreconditionViolation
from session_blocks.models.schemas import (
    CreateAssignmentWrite,
    DeleteAssignmentWrite,
    DurationWrite,
    PositionWrite,
    SlotIndexWrite,
)
from session_blocks.services.assignments import add_simultaneous, assign, remove_from_group, repair_ordering
from session_blocks.services.grouping import check_invariants, group_by_position
from tests.utils import SESSION_ID, make_assignment, make_block, positions, single_groups


def test_assign_appends_new_group_at_end() -> None:
    assignments = single_groups(2)
    block = make_block("new", duration=15)

    result = assign(assignments, SESSION_ID, block)

    created = result.affected
    assert (created.position, created.slot_index) == (2, 0)
    assert created.block_id == "new"
    assert result.plan.writes == [CreateAssignmentWrite(assignment=created)]
    assert len(result.assignments) == 3
    assert len(assignments) == 2
    check_invariants(result.assignments)


def test_assign_counts_groups_not_assignments() -> None:
    assignments = single_groups(2)
    assignments.append(make_assignment("s", make_block("bs", duration=10), 0, 1))

    result = assign(assignments, SESSION_ID, make_block("new"))

    assert result.affected.position == 2


def test_assign_to_empty_session_starts_at_zero() -> None:
    result = assign([], SESSION_ID, make_block("first"))
    assert result.affected.position == 0


def test_add_simultaneous_syncs_duration_from_primary() -> None:
    # Scenario B: X has 20 minutes, Y has none
    x = make_assignment("x", make_block("bx", duration=20), 0)
    y_block = make_block("by")

    result = add_simultaneous([x], SESSION_ID, y_block, 0, assignment_id="y")

    y = result.affected
    assert y.slot_index == 1
    assert y.effective_duration == 20
    assert [type(w) for w in result.plan.writes] == [CreateAssignmentWrite, DurationWrite]
    duration_write = result.plan.writes[1]
    assert sorted(duration_write.assignment_ids) == ["x", "y"]
    assert duration_write.duration == 20
    check_invariants(result.assignments)


def test_add_simultaneous_uses_primary_override_over_block_duration() -> None:
    x = make_assignment("x", make_block("bx", duration=20), 0, duration_override=25)

    result = add_simultaneous([x], SESSION_ID, make_block("by", duration=40), 0)

    assert {a.effective_duration for a in result.assignments} == {25}


def test_add_simultaneous_without_primary_duration_skips_sync() -> None:
    x = make_assignment("x", make_block("bx"), 0)

    result = add_simultaneous([x], SESSION_ID, make_block("by"), 0)

    assert [type(w) for w in result.plan.writes] == [CreateAssignmentWrite]


def test_add_simultaneous_rejects_full_group() -> None:
    assignments = [
        make_assignment("x", make_block("bx", duration=10), 0, 0),
        make_assignment("y", make_block("by", duration=10), 0, 1),
    ]
    with pytest.raises(PreconditionViolation, match="Maximum 2"):
        add_simultaneous(assignments, SESSION_ID, make_block("bz"), 0)


def test_add_simultaneous_rejects_missing_group() -> None:
    with pytest.raises(PreconditionViolation, match="position 3"):
        add_simultaneous(single_groups(2), SESSION_ID, make_block("bz"), 3)


def test_remove_simultaneous_only_deletes() -> None:
    assignments = single_groups(2)
    assignments.append(make_assignment("s", make_block("bs", duration=10), 0, 1))

    result = remove_from_group(assignments, "s")

    assert result.plan.writes == [DeleteAssignmentWrite(assignment_id="s")]
    assert positions(result.assignments) == {"a0": (0, 0), "a1": (1, 0)}


def test_remove_primary_promotes_sibling() -> None:
    # Scenario C: [X(slot0), Y(slot1)] at 0, remove X
    assignments = [
        make_assignment("x", make_block("bx", duration=10), 0, 0),
        make_assignment("y", make_block("by", duration=10), 0, 1),
        make_assignment("z", make_block("bz"), 1, 0),
    ]

    result = remove_from_group(assignments, "x")

    assert result.plan.writes == [
        DeleteAssignmentWrite(assignment_id="x"),
        SlotIndexWrite(assignment_id="y", slot_index=0),
    ]
    assert positions(result.assignments) == {"y": (0, 0), "z": (1, 0)}
    assert result.plan.position_writes == []
    check_invariants(result.assignments)


@pytest.mark.parametrize("primary, sibling", [("x", "y"), ("y", "x")])
def test_promotion_leaves_single_primary_whoever_was_primary(primary, sibling) -> None:
    assignments = [
        make_assignment(primary, make_block("b1", duration=10), 0, 0),
        make_assignment(sibling, make_block("b2", duration=10), 0, 1),
    ]

    result = remove_from_group(assignments, primary)

    groups = group_by_position(result.assignments)
    assert len(groups) == 1
    assert [(p.id, p.slot_index) for p in groups[0].practices] == [(sibling, 0)]


def test_remove_sole_occupant_closes_gap() -> None:
    # Scenario A: positions [0, 1, 2], remove position 1
    result = remove_from_group(single_groups(3), "a1")

    assert positions(result.assignments) == {"a0": (0, 0), "a2": (1, 0)}
    assert result.plan.writes == [
        DeleteAssignmentWrite(assignment_id="a1"),
        PositionWrite(position=1, assignment_ids=["a2"]),
    ]
    check_invariants(result.assignments)


def test_remove_shifts_whole_groups_with_one_write_each() -> None:
    assignments = single_groups(4)
    assignments.append(make_assignment("s2", make_block("bs", duration=10), 2, 1))

    result = remove_from_group(assignments, "a0")

    assert result.plan.position_writes == [
        PositionWrite(position=0, assignment_ids=["a1"]),
        PositionWrite(position=1, assignment_ids=["a2", "s2"]),
        PositionWrite(position=2, assignment_ids=["a3"]),
    ]
    check_invariants(result.assignments)


def test_remove_last_group_needs_no_position_writes() -> None:
    result = remove_from_group(single_groups(3), "a2")
    assert result.plan.position_writes == []


def test_remove_leaves_other_sessions_alone() -> None:
    assignments = single_groups(2) + [
        make_assignment("o0", make_block("bo"), 0, session_id="other"),
        make_assignment("o1", make_block("bp"), 1, session_id="other"),
    ]

    result = remove_from_group(assignments, "a0")

    assert positions(result.assignments)["o1"] == (1, 0)
    assert result.plan.position_writes == [PositionWrite(position=0, assignment_ids=["a1"])]


def test_remove_unknown_assignment_is_not_found() -> None:
    with pytest.raises(AssignmentNotFound):
        remove_from_group(single_groups(2), "missing")


def test_repair_renumbers_gaps_and_splits_overfull_group() -> None:
    assignments = [
        make_assignment("x", make_block("bx", duration=10), 0, 0),
        make_assignment("y", make_block("by", duration=10), 0, 1),
        make_assignment("w", make_block("bw"), 0, 1),
        make_assignment("v", make_block("bv", duration=5), 4),
    ]

    result = repair_ordering(assignments, SESSION_ID)

    assert positions(result.assignments) == {"x": (0, 0), "y": (0, 1), "w": (1, 0), "v": (2, 0)}
    assert result.plan.writes == [
        PositionWrite(position=1, assignment_ids=["w"]),
        SlotIndexWrite(assignment_id="w", slot_index=0),
        PositionWrite(position=2, assignment_ids=["v"]),
    ]
    check_invariants(result.assignments)


def test_repair_syncs_disagreeing_durations_to_primary() -> None:
    assignments = [
        make_assignment("x", make_block("bx", duration=10), 0, 0),
        make_assignment("y", make_block("by", duration=20), 0, 1),
    ]

    result = repair_ordering(assignments, SESSION_ID)

    assert result.plan.writes == [DurationWrite(assignment_ids=["x", "y"], duration=10)]
    assert [a.effective_duration for a in result.assignments] == [10, 10]


def test_repair_of_legal_session_writes_nothing() -> None:
    assert repair_ordering(single_groups(3), SESSION_ID).plan.is_empty
