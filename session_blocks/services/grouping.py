"""Fold a session's flat assignment list into ordered block groups.

Groups are never stored. Every caller re-derives them from the assignments,
which are the single source of truth for positions and slots.
"""

import hashlib
from collections import defaultdict
from typing import Iterable, Optional

from session_blocks.errors import GroupNotFound, InvariantViolation
from session_blocks.models.schemas import (
    MAX_PRACTICES_PER_GROUP,
    PRIMARY_SLOT,
    Assignment,
    BlockGroup,
)


def group_by_position(assignments: Iterable[Assignment]) -> list[BlockGroup]:
    """Group assignments by position, ascending, with practices sorted by slot."""
    by_position: dict[int, list[Assignment]] = defaultdict(list)
    for assignment in assignments:
        by_position[assignment.position].append(assignment)

    return [
        BlockGroup(
            position=position,
            practices=sorted(practices, key=lambda a: a.slot_index),
        )
        for position, practices in sorted(by_position.items())
    ]


def find_group(groups: list[BlockGroup], position: int) -> BlockGroup:
    for group in groups:
        if group.position == position:
            return group
    raise GroupNotFound(position)


def find_assignment(assignments: Iterable[Assignment], assignment_id: str) -> Optional[Assignment]:
    for assignment in assignments:
        if assignment.id == assignment_id:
            return assignment
    return None


def session_duration_minutes(groups: Iterable[BlockGroup]) -> int:
    """Total session time. Simultaneous practices count once per group."""
    return sum(group.effective_duration or 0 for group in groups)


def check_invariants(assignments: list[Assignment]) -> None:
    """Raise InvariantViolation if the list breaks any ordering rule.

    Checked per session: contiguous positions 0..N-1, one or two occupants per
    position with slots {0} or {0, 1}, and equal effective durations between
    occupants that both have one.
    """
    by_session: dict[str, list[Assignment]] = defaultdict(list)
    seen_ids: set[str] = set()
    for assignment in assignments:
        if assignment.id in seen_ids:
            raise InvariantViolation(f"duplicate assignment id {assignment.id}")
        seen_ids.add(assignment.id)
        by_session[assignment.session_id].append(assignment)

    for session_id, session_assignments in by_session.items():
        groups = group_by_position(session_assignments)

        positions = [group.position for group in groups]
        if positions != list(range(len(groups))):
            raise InvariantViolation(
                f"session {session_id}: positions {positions} are not contiguous from 0"
            )

        for group in groups:
            slots = [practice.slot_index for practice in group.practices]
            if len(slots) > MAX_PRACTICES_PER_GROUP:
                raise InvariantViolation(
                    f"session {session_id}: position {group.position} has {len(slots)} practices"
                )
            if slots != list(range(PRIMARY_SLOT, len(slots))):
                raise InvariantViolation(
                    f"session {session_id}: position {group.position} has slots {slots}"
                )

            durations = {
                practice.effective_duration
                for practice in group.practices
                if practice.effective_duration is not None
            }
            if len(durations) > 1:
                raise InvariantViolation(
                    f"session {session_id}: position {group.position} has durations {sorted(durations)}"
                )


def assignment_set_version(assignments: Iterable[Assignment]) -> str:
    """Fingerprint of the persisted assignment fields, independent of order."""
    rows = sorted(
        (a.id, a.block_id, a.position, a.slot_index, a.duration_override)
        for a in assignments
    )
    digest = hashlib.sha1()
    for row in rows:
        digest.update(repr(row).encode("utf-8"))
    return digest.hexdigest()
