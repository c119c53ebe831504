"""Assign, add-simultaneous and remove-from-group.

Every function here is a pure transform: it takes the current flat assignment
list and returns the new list plus the writes that persist the change. The
input list is never modified.
"""

from typing import Optional
from uuid import uuid4

from session_blocks.errors import AssignmentNotFound, GroupNotFound, PreconditionViolation
from session_blocks.models.schemas import (
    MAX_PRACTICES_PER_GROUP,
    PRIMARY_SLOT,
    SIMULTANEOUS_SLOT,
    Assignment,
    BlockDefinition,
    CreateAssignmentWrite,
    DeleteAssignmentWrite,
    MutationResult,
    PositionWrite,
    SlotIndexWrite,
    WritePlan,
)
from session_blocks.services.durations import sync_group_duration
from session_blocks.services.grouping import find_assignment, find_group, group_by_position


def new_assignment_id() -> str:
    return str(uuid4())


def _session_assignments(assignments: list[Assignment], session_id: str) -> list[Assignment]:
    return [a for a in assignments if a.session_id == session_id]


def assign(
    assignments: list[Assignment],
    session_id: str,
    block: BlockDefinition,
    assignment_id: Optional[str] = None,
) -> MutationResult:
    """Append `block` as a new group at the end of the session."""
    groups = group_by_position(_session_assignments(assignments, session_id))
    created = Assignment(
        id=assignment_id or new_assignment_id(),
        session_id=session_id,
        block_id=block.id,
        position=len(groups),
        slot_index=PRIMARY_SLOT,
        block=block,
    )
    return MutationResult(
        assignments=[*assignments, created],
        plan=WritePlan(writes=[CreateAssignmentWrite(assignment=created)]),
        affected=created,
    )


def add_simultaneous(
    assignments: list[Assignment],
    session_id: str,
    block: BlockDefinition,
    target_position: int,
    assignment_id: Optional[str] = None,
) -> MutationResult:
    """Run `block` alongside the primary practice at `target_position`.

    The new occupant takes slot 1 and its duration is synced from the
    primary's effective duration.
    """
    groups = group_by_position(_session_assignments(assignments, session_id))
    try:
        group = find_group(groups, target_position)
    except GroupNotFound as e:
        raise PreconditionViolation(str(e)) from e
    if len(group.practices) != 1:
        raise PreconditionViolation(
            f"Maximum {SIMULTANEOUS_SLOT + 1} practices per block group (position {target_position})"
        )

    created = Assignment(
        id=assignment_id or new_assignment_id(),
        session_id=session_id,
        block_id=block.id,
        position=target_position,
        slot_index=SIMULTANEOUS_SLOT,
        block=block,
    )
    result = MutationResult(
        assignments=[*assignments, created],
        plan=WritePlan(writes=[CreateAssignmentWrite(assignment=created)]),
        affected=created,
    )

    seed = group.primary.effective_duration
    if seed is None:
        return result

    synced = sync_group_duration(result.assignments, session_id, target_position, seed)
    return MutationResult(
        assignments=synced.assignments,
        plan=result.plan.extend(synced.plan),
        affected=find_assignment(synced.assignments, created.id),
    )


def remove_from_group(assignments: list[Assignment], assignment_id: str) -> MutationResult:
    """Remove one occupant, keeping slots legal and positions contiguous.

    - slot 1: delete it, nothing else moves.
    - slot 0 with a sibling: delete it and promote the sibling to slot 0.
    - slot 0 alone: the group disappears and every later group moves up one
      position (one position write per shifted group).
    """
    removed = find_assignment(assignments, assignment_id)
    if removed is None:
        raise AssignmentNotFound(assignment_id)

    remaining = [a for a in assignments if a.id != assignment_id]
    writes: list = [DeleteAssignmentWrite(assignment_id=assignment_id)]

    if removed.slot_index == SIMULTANEOUS_SLOT:
        return MutationResult(assignments=remaining, plan=WritePlan(writes=writes), affected=removed)

    sibling = next(
        (
            a for a in remaining
            if a.session_id == removed.session_id and a.position == removed.position
        ),
        None,
    )
    if sibling is not None:
        promoted = sibling.model_copy(update={"slot_index": PRIMARY_SLOT})
        writes.append(SlotIndexWrite(assignment_id=sibling.id, slot_index=PRIMARY_SLOT))
        return MutationResult(
            assignments=[promoted if a.id == sibling.id else a for a in remaining],
            plan=WritePlan(writes=writes),
            affected=removed,
        )

    # Whole group vanished: close the gap.
    session_groups = group_by_position(_session_assignments(remaining, removed.session_id))
    moved: dict[str, int] = {}
    for new_position, group in enumerate(session_groups):
        if group.position == new_position:
            continue
        writes.append(PositionWrite(position=new_position, assignment_ids=group.assignment_ids))
        for practice in group.practices:
            moved[practice.id] = new_position

    return MutationResult(
        assignments=[
            a.model_copy(update={"position": moved[a.id]}) if a.id in moved else a
            for a in remaining
        ],
        plan=WritePlan(writes=writes),
        affected=removed,
    )


def repair_ordering(assignments: list[Assignment], session_id: str) -> MutationResult:
    """Bring a session loaded with broken ordering back to a legal layout.

    Positions are renumbered from 0 in their stored order and slots from 0 in
    their stored slot order. A position holding more than two practices keeps
    the first two and the rest become single groups right after it. Groups
    whose occupants disagree on duration are synced to the group's effective
    duration.
    """
    session = _session_assignments(assignments, session_id)
    layout: list[list[Assignment]] = []
    for group in group_by_position(session):
        practices = group.practices
        layout.append(practices[:MAX_PRACTICES_PER_GROUP])
        layout.extend([extra] for extra in practices[MAX_PRACTICES_PER_GROUP:])

    writes: list = []
    placed: dict[str, Assignment] = {}
    for new_position, practices in enumerate(layout):
        moved = [a.id for a in practices if a.position != new_position]
        if moved:
            writes.append(PositionWrite(position=new_position, assignment_ids=moved))
        for slot_index, practice in enumerate(practices):
            if practice.slot_index != slot_index:
                writes.append(SlotIndexWrite(assignment_id=practice.id, slot_index=slot_index))
            placed[practice.id] = practice.model_copy(
                update={"position": new_position, "slot_index": slot_index}
            )

    result = MutationResult(
        assignments=[placed.get(a.id, a) for a in assignments],
        plan=WritePlan(writes=writes),
    )
    for group in group_by_position(_session_assignments(result.assignments, session_id)):
        durations = {p.effective_duration for p in group.practices if p.effective_duration is not None}
        if len(durations) > 1:
            synced = sync_group_duration(result.assignments, session_id, group.position, group.effective_duration)
            result = MutationResult(assignments=synced.assignments, plan=result.plan.extend(synced.plan))
    return result
