"""Drag-and-drop reordering of block groups."""

from session_blocks.errors import PreconditionViolation
from session_blocks.models.schemas import Assignment, BlockGroup, MutationResult, PositionWrite, WritePlan
from session_blocks.services.grouping import group_by_position


def move_item(items: list, from_index: int, to_index: int) -> list:
    """Return a copy of `items` with one element relocated."""
    moved = list(items)
    moved.insert(to_index, moved.pop(from_index))
    return moved


def reorder(groups: list[BlockGroup], from_index: int, to_index: int) -> list[PositionWrite]:
    """Move the group at `from_index` to `to_index` and renumber every group.

    `groups` must be in display order. Every group gets `position = index`,
    including groups whose position did not change, because a move can shift
    an arbitrary span. Returns one write per position.
    """
    count = len(groups)
    if not (0 <= from_index < count and 0 <= to_index < count):
        raise PreconditionViolation(
            f"Cannot move group {from_index} to {to_index} in a session of {count} groups"
        )
    if from_index == to_index:
        return []

    return [
        PositionWrite(position=index, assignment_ids=group.assignment_ids)
        for index, group in enumerate(move_item(groups, from_index, to_index))
    ]


def reorder_assignments(
    assignments: list[Assignment],
    session_id: str,
    from_index: int,
    to_index: int,
) -> MutationResult:
    """Apply `reorder` to a flat assignment list."""
    groups = group_by_position(a for a in assignments if a.session_id == session_id)
    writes = reorder(groups, from_index, to_index)

    new_positions = {
        assignment_id: write.position
        for write in writes
        for assignment_id in write.assignment_ids
    }
    return MutationResult(
        assignments=[
            a.model_copy(update={"position": new_positions[a.id]}) if a.id in new_positions else a
            for a in assignments
        ],
        plan=WritePlan(writes=writes),
    )
