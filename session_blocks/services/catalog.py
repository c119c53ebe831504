"""Block picker: which catalog blocks a coach can assign, split by ownership."""

from typing import Iterable, Optional

from session_blocks.models.schemas import BlockDefinition, BlockSource, PickerBlocks, Visibility


def is_default_block(block: BlockDefinition) -> bool:
    return block.visibility == Visibility.PUBLIC or block.source == BlockSource.SYSTEM


def categorize_for_picker(
    blocks: Iterable[BlockDefinition],
    coach_id: str,
    club_id: Optional[str],
) -> PickerBlocks:
    """Sort blocks into the coach's own, public/system defaults and club-shared ones.

    Blocks that match none of those (another club's, another coach's private)
    are dropped.
    """
    picker = PickerBlocks()
    for block in blocks:
        if block.creator_id == coach_id:
            picker.my_blocks.append(block)
        elif is_default_block(block):
            picker.default_blocks.append(block)
        elif club_id and block.club_id == club_id and block.visibility == Visibility.CLUB:
            picker.club_blocks.append(block)
    return picker
