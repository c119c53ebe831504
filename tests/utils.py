"""Fixtures and helpers for session block tests."""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from session_blocks.core.config import Settings
from session_blocks.errors import PersistenceFailure
from session_blocks.models.schemas import (
    Assignment,
    BlockCreate,
    BlockDefinition,
    BlockOutcome,
    BlockUpdate,
    PositionWrite,
    Visibility,
)
from session_blocks.services.copy_on_write import apply_patch, clone_block

SESSION_ID = "session-1"
OWNER_ID = "coach-owner"


def editor_settings(**overrides) -> Settings:
    values = {"check_concurrent_edits": True, "verify_invariants": True, "write_retries": 0}
    values.update(overrides)
    return Settings(**values)


def make_block(
    block_id: str,
    *,
    title: Optional[str] = None,
    duration: Optional[int] = None,
    creator_id: str = OWNER_ID,
    club_id: Optional[str] = None,
    visibility: Visibility = Visibility.PRIVATE,
    **fields,
) -> BlockDefinition:
    return BlockDefinition(
        id=block_id,
        title=title or f"Drill {block_id}",
        duration=duration,
        creator_id=creator_id,
        club_id=club_id,
        visibility=visibility,
        **fields,
    )


def make_assignment(
    assignment_id: str,
    block: BlockDefinition,
    position: int,
    slot_index: int = 0,
    *,
    session_id: str = SESSION_ID,
    duration_override: Optional[int] = None,
) -> Assignment:
    return Assignment(
        id=assignment_id,
        session_id=session_id,
        block_id=block.id,
        position=position,
        slot_index=slot_index,
        duration_override=duration_override,
        block=block,
    )


def single_groups(count: int, *, session_id: str = SESSION_ID) -> List[Assignment]:
    """`count` single-occupant groups a0..a{count-1} at positions 0..count-1."""
    return [
        make_assignment(f"a{i}", make_block(f"b{i}", duration=10), i, session_id=session_id)
        for i in range(count)
    ]


def positions(assignments: Sequence[Assignment]) -> Dict[str, tuple]:
    return {a.id: (a.position, a.slot_index) for a in assignments}


class InMemoryBlockStore:
    """BlockStore kept in dicts, with call recording and failure injection."""

    def __init__(self) -> None:
        self.blocks: Dict[str, BlockDefinition] = {}
        self.rows: Dict[str, dict] = {}
        self.calls: List[tuple] = []
        self._failures: Dict[str, int] = {}

    # -- setup helpers ------------------------------------------------------

    def add_block(self, block: BlockDefinition) -> BlockDefinition:
        self.blocks[block.id] = block
        return block

    def add_assignment(self, assignment: Assignment) -> Assignment:
        if assignment.block is not None:
            self.blocks.setdefault(assignment.block_id, assignment.block)
        self.rows[assignment.id] = {
            "session_id": assignment.session_id,
            "block_id": assignment.block_id,
            "position": assignment.position,
            "slot_index": assignment.slot_index,
            "duration_override": assignment.duration_override,
        }
        return assignment

    def seed(self, assignments: Sequence[Assignment]) -> "InMemoryBlockStore":
        for assignment in assignments:
            self.add_assignment(assignment)
        return self

    def fail(self, method: str, times: int = 1) -> None:
        self._failures[method] = times

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        remaining = self._failures.get(method, 0)
        if remaining:
            self._failures[method] = remaining - 1
            raise PersistenceFailure(f"injected failure in {method}")

    def writes(self) -> List[tuple]:
        return [c for c in self.calls if c[0] not in ("fetch_assignments", "get_block")]

    def get_assignment(self, assignment_id: str) -> Assignment:
        row = self.rows[assignment_id]
        return Assignment(id=assignment_id, block=self.blocks.get(row["block_id"]), **row)

    # -- BlockStore ---------------------------------------------------------

    def fetch_assignments(self, session_id: str) -> List[Assignment]:
        self._record("fetch_assignments", session_id)
        return sorted(
            (self.get_assignment(aid) for aid, row in self.rows.items() if row["session_id"] == session_id),
            key=lambda a: (a.position, a.slot_index),
        )

    def write_positions(self, updates: List[PositionWrite]) -> None:
        self._record("write_positions", [(u.position, tuple(u.assignment_ids)) for u in updates])
        for update in updates:
            for assignment_id in update.assignment_ids:
                self.rows[assignment_id]["position"] = update.position

    def write_slot_index(self, assignment_id: str, slot_index: int) -> None:
        self._record("write_slot_index", assignment_id, slot_index)
        self.rows[assignment_id]["slot_index"] = slot_index

    def write_duration(self, assignment_ids: List[str], duration: Optional[int]) -> None:
        self._record("write_duration", tuple(assignment_ids), duration)
        for assignment_id in assignment_ids:
            self.rows[assignment_id]["duration_override"] = duration

    def create_assignment(
        self,
        session_id: str,
        block_id: str,
        position: int,
        slot_index: int,
        assignment_id: Optional[str] = None,
        duration_override: Optional[int] = None,
    ) -> Assignment:
        assignment_id = assignment_id or str(uuid4())
        self._record("create_assignment", assignment_id, position, slot_index)
        self.rows[assignment_id] = {
            "session_id": session_id,
            "block_id": block_id,
            "position": position,
            "slot_index": slot_index,
            "duration_override": duration_override,
        }
        return self.get_assignment(assignment_id)

    def delete_assignment(self, assignment_id: str) -> None:
        self._record("delete_assignment", assignment_id)
        self.rows.pop(assignment_id, None)

    def get_block(self, block_id: str) -> Optional[BlockDefinition]:
        self._record("get_block", block_id)
        return self.blocks.get(block_id)

    def create_block(self, block: BlockCreate) -> BlockDefinition:
        self._record("create_block", block.title)
        created = BlockDefinition(id=str(uuid4()), **block.model_dump())
        self.blocks[created.id] = created
        return created

    def update_block(self, block_id: str, patch: BlockUpdate) -> BlockDefinition:
        self._record("update_block", block_id)
        self.blocks[block_id] = apply_patch(self.blocks[block_id], patch)
        return self.blocks[block_id]

    def delete_block(self, block_id: str) -> None:
        self._record("delete_block", block_id)
        self.blocks.pop(block_id, None)

    def clone_block_definition(self, block_id: str, patch: BlockUpdate, new_owner_id: str) -> BlockDefinition:
        self._record("clone_block_definition", block_id, new_owner_id)
        copy = clone_block(self.blocks[block_id], patch, new_owner_id)
        self.blocks[copy.id] = copy
        return copy

    def repoint_assignment_block(self, assignment_id: str, new_block_id: str) -> None:
        self._record("repoint_assignment_block", assignment_id, new_block_id)
        self.rows[assignment_id]["block_id"] = new_block_id

    def list_blocks_for_picker(self, coach_id: str, club_id: Optional[str]) -> List[BlockDefinition]:
        self._record("list_blocks_for_picker", coach_id, club_id)
        return list(self.blocks.values())

    def get_block_outcomes(self, block_id: str) -> List[BlockOutcome]:
        return list(self.blocks[block_id].outcomes)

    def save_block_outcomes(self, block_id: str, outcomes: List[BlockOutcome]) -> None:
        self._record("save_block_outcomes", block_id)
        self.blocks[block_id] = self.blocks[block_id].model_copy(update={"outcomes": list(outcomes)})
