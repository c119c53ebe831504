"""Copy-on-write editing of shared block definitions.

A coach may edit their own blocks in place. Editing a block authored by
someone else (club-shared, public or system) clones it instead: the clone
belongs to the editing coach, starts private, and only the assignment being
edited is repointed to it. Every other assignment keeps the original.
"""

import logging
from typing import Optional, TYPE_CHECKING
from uuid import uuid4

from pydantic import ValidationError

from session_blocks.errors import BlockNotFound, PersistenceFailure, PreconditionViolation
from session_blocks.models.schemas import (
    BlockDefinition,
    BlockSource,
    BlockUpdate,
    EditResult,
    Visibility,
)

if TYPE_CHECKING:
    from session_blocks.db.database import BlockStore

logger = logging.getLogger(__name__)


def apply_patch(block: BlockDefinition, patch: BlockUpdate, **overrides) -> BlockDefinition:
    """Return `block` with the explicitly set patch fields (and overrides) applied."""
    data = block.model_dump()
    data.update(patch.model_dump(exclude_unset=True))
    data.update(overrides)
    try:
        return BlockDefinition.model_validate(data)
    except ValidationError as e:
        raise PreconditionViolation(f"Invalid block edit: {e}") from e


def clone_block(
    block: BlockDefinition,
    patch: BlockUpdate,
    new_owner_id: str,
    new_id: Optional[str] = None,
) -> BlockDefinition:
    """Private copy of `block` owned by `new_owner_id` with `patch` applied."""
    return apply_patch(
        block,
        patch,
        id=new_id or str(uuid4()),
        creator_id=new_owner_id,
        visibility=Visibility.PRIVATE,
        source=BlockSource.USER,
        created_at=None,
        updated_at=None,
    )


def can_edit_in_place(block: BlockDefinition, coach_id: str) -> bool:
    return block.creator_id == coach_id


def discard_block(store: "BlockStore", block_id: str) -> None:
    """Delete a block created by a write that later failed.

    A failure here is logged rather than raised so the caller's original error
    reaches the user. The block is left orphaned.
    """
    try:
        store.delete_block(block_id)
    except PersistenceFailure as e:
        logger.error("Could not delete orphaned block %s: %s", block_id, e)


def edit_block(
    store: "BlockStore",
    block_id: str,
    session_id: str,
    assignment_id: str,
    patch: BlockUpdate,
    editing_coach_id: str,
    block: Optional[BlockDefinition] = None,
) -> EditResult:
    """Edit a block on behalf of `editing_coach_id`, cloning it if they don't own it.

    Pass `block` when the caller has already loaded it.
    """
    if block is None:
        block = store.get_block(block_id)
    if block is None:
        raise BlockNotFound(block_id)

    if can_edit_in_place(block, editing_coach_id):
        # Validate before touching the store
        apply_patch(block, patch)
        updated = store.update_block(block_id, patch)
        return EditResult(block=updated, copied=False)

    copy = store.clone_block_definition(block_id, patch, editing_coach_id)
    try:
        store.repoint_assignment_block(assignment_id, copy.id)
    except PersistenceFailure:
        logger.warning(
            "Repointing assignment %s in session %s failed, discarding copy %s",
            assignment_id, session_id, copy.id,
        )
        discard_block(store, copy.id)
        raise

    logger.info("Block %s copied to %s for coach %s", block_id, copy.id, editing_coach_id)
    return EditResult(block=copy, copied=True)


def revert_edit(
    store: "BlockStore",
    original: BlockDefinition,
    assignment_id: str,
    patch: BlockUpdate,
    result: EditResult,
) -> None:
    """Undo a block edit whose follow-up writes failed.

    A copy is unpointed and deleted. An in-place edit gets the patched fields
    written back with their original values. Undo failures are logged.
    """
    try:
        if result.copied:
            store.repoint_assignment_block(assignment_id, original.id)
            discard_block(store, result.block.id)
        else:
            restore = BlockUpdate.model_validate(
                {field: getattr(original, field) for field in patch.model_fields_set}
            )
            store.update_block(original.id, restore)
    except PersistenceFailure as e:
        logger.error("Could not undo edit of block %s for assignment %s: %s", original.id, assignment_id, e)
