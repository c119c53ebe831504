"""Keep the occupants of a block group on the same duration.

Both practices in a group run at the same time, so session time accounting
counts the group once and both occupants must report the same minutes.
"""

from typing import Optional

from session_blocks.errors import AssignmentNotFound
from session_blocks.models.schemas import Assignment, DurationWrite, MutationResult, WritePlan
from session_blocks.services.grouping import find_assignment


def sync_group_duration(
    assignments: list[Assignment],
    session_id: str,
    position: int,
    duration: int,
) -> MutationResult:
    """Set `duration` on every assignment at (session_id, position)."""
    targets = [a.id for a in assignments if a.session_id == session_id and a.position == position]
    if not targets:
        return MutationResult(assignments=list(assignments))

    return MutationResult(
        assignments=[
            a.model_copy(update={"duration_override": duration}) if a.id in targets else a
            for a in assignments
        ],
        plan=WritePlan(writes=[DurationWrite(assignment_ids=targets, duration=duration)]),
    )


def edit_duration(
    assignments: list[Assignment],
    assignment_id: str,
    duration: Optional[int],
) -> MutationResult:
    """Apply a user's duration edit to one occupant and propagate it.

    A None duration means "unspecified": it clears the edited occupant only and
    never overwrites a sibling's explicit value.
    """
    edited = find_assignment(assignments, assignment_id)
    if edited is None:
        raise AssignmentNotFound(assignment_id)

    if duration is None:
        return MutationResult(
            assignments=[
                a.model_copy(update={"duration_override": None}) if a.id == assignment_id else a
                for a in assignments
            ],
            plan=WritePlan(writes=[DurationWrite(assignment_ids=[assignment_id], duration=None)]),
            affected=edited,
        )

    result = sync_group_duration(assignments, edited.session_id, edited.position, duration)
    result.affected = find_assignment(result.assignments, assignment_id)
    return result
