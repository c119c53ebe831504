"""Session editing controller.

`SessionEditor` owns the flat assignment list of one session for the length of
an editing interaction. Each user action runs a pure transform from the
services package, applies the resulting list locally, then persists the write
plan. If the writes fail the local list is restored to its pre-mutation
snapshot, so callers only ever see fully applied or fully reverted mutations.
"""

import logging
from typing import Optional

from session_blocks.core.config import Settings, get_settings
from session_blocks.db.database import BlockStore
from session_blocks.errors import (
    AssignmentNotFound,
    BlockNotFound,
    InvariantViolation,
    PersistenceFailure,
    StaleSessionError,
)
from session_blocks.models.schemas import (
    Assignment,
    BlockCreate,
    BlockDefinition,
    BlockGroup,
    BlockUpdate,
    CreateAssignmentWrite,
    DeleteAssignmentWrite,
    DurationWrite,
    EditResult,
    MutationResult,
    PositionWrite,
    SlotIndexWrite,
    WritePlan,
)
from session_blocks.services import assignments as assignment_ops
from session_blocks.services import copy_on_write, durations as durations_ops, reorder as reorder_ops
from session_blocks.services.grouping import (
    assignment_set_version,
    check_invariants,
    find_assignment,
    group_by_position,
    session_duration_minutes,
)
from session_blocks.services.outcomes import build_outcomes

logger = logging.getLogger(__name__)


class SessionEditor:
    """Editing context for one session's blocks."""

    def __init__(self, store: BlockStore, session_id: str, app_settings: Optional[Settings] = None):
        self.store = store
        self.session_id = session_id
        self.settings = app_settings or get_settings()
        self._assignments: list[Assignment] = []
        self._version = assignment_set_version([])

    @classmethod
    def open(cls, store: BlockStore, session_id: str, app_settings: Optional[Settings] = None) -> "SessionEditor":
        editor = cls(store, session_id, app_settings)
        editor.refresh()
        return editor

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def assignments(self) -> list[Assignment]:
        return list(self._assignments)

    @property
    def groups(self) -> list[BlockGroup]:
        return group_by_position(self._assignments)

    @property
    def total_minutes(self) -> int:
        return session_duration_minutes(self.groups)

    @property
    def version(self) -> str:
        return self._version

    def refresh(self) -> list[Assignment]:
        """Reload the session from the store, discarding local state.

        A session stored with broken ordering is repaired and the repair is
        persisted, so later mutations start from a legal list.
        """
        loaded = self.store.fetch_assignments(self.session_id)
        self._set_state(loaded)
        try:
            check_invariants(loaded)
        except InvariantViolation as e:
            logger.warning("Session %s loaded with broken ordering, repairing: %s", self.session_id, e)
            self._commit(assignment_ops.repair_ordering(loaded, self.session_id))
        return self.assignments

    def _set_state(self, assignments: list[Assignment]) -> None:
        self._assignments = list(assignments)
        self._version = assignment_set_version(self._assignments)

    def _ensure_current(self) -> None:
        if not self.settings.check_concurrent_edits:
            return
        current = self.store.fetch_assignments(self.session_id)
        actual = assignment_set_version(current)
        if actual != self._version:
            expected = self._version
            self._set_state(current)
            raise StaleSessionError(self.session_id, expected, actual)

    def _require_assignment(self, assignment_id: str) -> Assignment:
        assignment = find_assignment(self._assignments, assignment_id)
        if assignment is None:
            self.refresh()
            raise AssignmentNotFound(assignment_id)
        return assignment

    def _require_block(self, block_id: str) -> BlockDefinition:
        block = self.store.get_block(block_id)
        if block is None:
            raise BlockNotFound(block_id)
        return block

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def assign(self, block_id: str) -> Assignment:
        """Append a block as a new group at the end of the session."""
        self._ensure_current()
        block = self._require_block(block_id)
        result = self._commit(assignment_ops.assign(self._assignments, self.session_id, block))
        return result.affected

    def create_and_assign(self, block: BlockCreate) -> Assignment:
        """Create a new block and append it. The block is deleted if assigning fails."""
        self._ensure_current()
        created = self.store.create_block(block)
        try:
            result = self._commit(assignment_ops.assign(self._assignments, self.session_id, created))
        except PersistenceFailure:
            logger.warning("Assigning new block %s failed, deleting it", created.id)
            copy_on_write.discard_block(self.store, created.id)
            raise
        return result.affected

    def add_simultaneous(self, block_id: str, position: int) -> Assignment:
        """Run a block alongside the primary practice at `position`."""
        self._ensure_current()
        block = self._require_block(block_id)
        result = self._commit(
            assignment_ops.add_simultaneous(self._assignments, self.session_id, block, position)
        )
        return result.affected

    def remove(self, assignment_id: str) -> MutationResult:
        """Remove an occupant, promoting its sibling or closing the position gap."""
        self._ensure_current()
        self._require_assignment(assignment_id)
        return self._commit(assignment_ops.remove_from_group(self._assignments, assignment_id))

    def reorder(self, from_index: int, to_index: int) -> MutationResult:
        """Move the group at `from_index` to `to_index`."""
        self._ensure_current()
        return self._commit(
            reorder_ops.reorder_assignments(self._assignments, self.session_id, from_index, to_index)
        )

    def edit_duration(self, assignment_id: str, duration: Optional[int]) -> MutationResult:
        """Set one occupant's duration and propagate it to its sibling."""
        self._ensure_current()
        self._require_assignment(assignment_id)
        return self._commit(durations_ops.edit_duration(self._assignments, assignment_id, duration))

    def sync_duration(self, position: int, duration: int) -> MutationResult:
        self._ensure_current()
        return self._commit(
            durations_ops.sync_group_duration(self._assignments, self.session_id, position, duration)
        )

    def edit_block(self, assignment_id: str, patch: BlockUpdate, coach_id: str) -> EditResult:
        """Edit the block behind an assignment, copying it if `coach_id` doesn't own it."""
        self._ensure_current()
        assignment = self._require_assignment(assignment_id)
        original = self._require_block(assignment.block_id)

        # Plan against the patched block first so a rejected edit writes nothing
        preview = EditResult(
            block=copy_on_write.apply_patch(original, patch),
            copied=not copy_on_write.can_edit_in_place(original, coach_id),
        )
        if self.settings.verify_invariants:
            check_invariants(self._block_edit_result(assignment_id, preview, patch).assignments)

        result = copy_on_write.edit_block(
            self.store, original.id, self.session_id, assignment_id, patch, coach_id, block=original
        )
        try:
            self._commit(self._block_edit_result(assignment_id, result, patch))
        except PersistenceFailure:
            logger.warning("Syncing durations after editing block %s failed, undoing the edit", original.id)
            copy_on_write.revert_edit(self.store, original, assignment_id, patch, result)
            raise
        return result

    def tag_outcomes(
        self,
        assignment_id: str,
        first_keys: list[str],
        second_keys: list[str],
        coach_id: str,
    ) -> EditResult:
        """Replace the outcomes of the block behind an assignment (copy-on-write)."""
        patch = BlockUpdate(outcomes=build_outcomes(first_keys, second_keys))
        return self.edit_block(assignment_id, patch, coach_id)

    def _block_edit_result(self, assignment_id: str, edit: EditResult, patch: BlockUpdate) -> MutationResult:
        """Local list after a block edit, plus the duration syncs it needs.

        A copy only affects the edited assignment. An in-place edit changes
        every assignment of the block. Setting a duration syncs the edited
        group to it, and any other group of the block whose occupants would
        otherwise disagree.
        """
        if edit.copied:
            touched = {assignment_id}
            updated = [
                a.model_copy(update={"block_id": edit.block.id, "block": edit.block})
                if a.id == assignment_id else a
                for a in self._assignments
            ]
        else:
            touched = {a.id for a in self._assignments if a.block_id == edit.block.id}
            updated = [
                a.model_copy(update={"block": edit.block}) if a.id in touched else a
                for a in self._assignments
            ]
        result = MutationResult(assignments=updated)
        if "duration" not in patch.model_fields_set or patch.duration is None:
            return result

        edited_position = find_assignment(updated, assignment_id).position
        for group in group_by_position(a for a in updated if a.session_id == self.session_id):
            if not touched.intersection(group.assignment_ids):
                continue
            durations = {p.effective_duration for p in group.practices if p.effective_duration is not None}
            if group.position != edited_position and len(durations) <= 1:
                continue
            synced = durations_ops.sync_group_duration(
                result.assignments, self.session_id, group.position, patch.duration
            )
            result = MutationResult(assignments=synced.assignments, plan=result.plan.extend(synced.plan))
        return result

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _commit(self, result: MutationResult) -> MutationResult:
        """Apply a transform's result locally, then persist it or roll back."""
        if self.settings.verify_invariants:
            check_invariants(result.assignments)

        if result.plan.is_empty:
            self._set_state(result.assignments)
            return result

        snapshot = self._assignments
        self._assignments = list(result.assignments)
        try:
            self._execute_plan(result.plan)
        except PersistenceFailure:
            self._assignments = snapshot
            logger.info("Rolled back %d writes for session %s", len(result.plan), self.session_id)
            raise

        self._version = assignment_set_version(self._assignments)
        return result

    def _execute_plan(self, plan: WritePlan) -> None:
        """Run every write, retrying the whole batch on failure."""
        attempts = 1 + max(0, self.settings.write_retries)
        last_error: Optional[PersistenceFailure] = None
        for attempt in range(1, attempts + 1):
            try:
                for write in plan.writes:
                    self._apply_write(write)
                return
            except PersistenceFailure as e:
                last_error = e
                logger.warning(
                    "Write batch for session %s failed (attempt %d/%d): %s",
                    self.session_id, attempt, attempts, e,
                )
        raise PersistenceFailure(
            f"Could not save changes to session {self.session_id}", cause=last_error
        ) from last_error

    def _apply_write(self, write) -> None:
        if isinstance(write, CreateAssignmentWrite):
            created = write.assignment
            self.store.create_assignment(
                created.session_id,
                created.block_id,
                created.position,
                created.slot_index,
                assignment_id=created.id,
                duration_override=created.duration_override,
            )
        elif isinstance(write, DeleteAssignmentWrite):
            self.store.delete_assignment(write.assignment_id)
        elif isinstance(write, PositionWrite):
            self.store.write_positions([write])
        elif isinstance(write, SlotIndexWrite):
            self.store.write_slot_index(write.assignment_id, write.slot_index)
        elif isinstance(write, DurationWrite):
            self.store.write_duration(write.assignment_ids, write.duration)
        else:
            raise TypeError(f"Unknown write: {write!r}")
