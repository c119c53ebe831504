"""Block catalog and assignment store operations using Supabase."""

import logging
from datetime import datetime
from typing import Any, Optional, Protocol

from supabase import create_client, Client

from session_blocks.core.config import settings
from session_blocks.errors import OwnershipViolation, PersistenceFailure
from session_blocks.models.schemas import (
    Assignment,
    BlockCreate,
    BlockDefinition,
    BlockOutcome,
    BlockUpdate,
    PositionWrite,
)
from session_blocks.services.copy_on_write import clone_block, discard_block
from session_blocks.services.outcomes import sort_outcomes

logger = logging.getLogger(__name__)

# Postgres "insufficient_privilege", raised when row level security rejects a write
PERMISSION_DENIED_CODE = "42501"


class BlockStore(Protocol):
    """Persistence collaborator consumed by the session editor."""

    def fetch_assignments(self, session_id: str) -> list[Assignment]: ...

    def write_positions(self, updates: list[PositionWrite]) -> None: ...

    def write_slot_index(self, assignment_id: str, slot_index: int) -> None: ...

    def write_duration(self, assignment_ids: list[str], duration: Optional[int]) -> None: ...

    def create_assignment(
        self,
        session_id: str,
        block_id: str,
        position: int,
        slot_index: int,
        assignment_id: Optional[str] = None,
        duration_override: Optional[int] = None,
    ) -> Assignment: ...

    def delete_assignment(self, assignment_id: str) -> None: ...

    def get_block(self, block_id: str) -> Optional[BlockDefinition]: ...

    def create_block(self, block: BlockCreate) -> BlockDefinition: ...

    def update_block(self, block_id: str, patch: BlockUpdate) -> BlockDefinition: ...

    def delete_block(self, block_id: str) -> None: ...

    def clone_block_definition(self, block_id: str, patch: BlockUpdate, new_owner_id: str) -> BlockDefinition: ...

    def repoint_assignment_block(self, assignment_id: str, new_block_id: str) -> None: ...

    def list_blocks_for_picker(self, coach_id: str, club_id: Optional[str]) -> list[BlockDefinition]: ...

    def get_block_outcomes(self, block_id: str) -> list[BlockOutcome]: ...

    def save_block_outcomes(self, block_id: str, outcomes: list[BlockOutcome]) -> None: ...


def get_supabase_client() -> Optional[Client]:
    """Get Supabase client if configured."""
    if not settings.supabase_configured:
        return None
    return create_client(settings.supabase_url, settings.supabase_anon_key)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _block_from_row(row: dict, outcomes: Optional[list[BlockOutcome]] = None) -> BlockDefinition:
    return BlockDefinition(
        id=row["id"],
        title=row["title"],
        description=row.get("description"),
        coaching_points=row.get("coaching_points"),
        duration=row.get("duration"),
        ball_rolling_pct=row.get("ball_rolling"),
        image_url=row.get("image_url"),
        diagram_data=row.get("diagram_data"),
        creator_id=row["creator_id"],
        club_id=row.get("club_id"),
        visibility=row.get("visibility") or "private",
        source=row.get("source") or "user",
        outcomes=outcomes or [],
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
    )


def _block_to_row(block: BlockDefinition | BlockCreate) -> dict:
    row = {
        "title": block.title,
        "description": block.description,
        "coaching_points": block.coaching_points,
        "duration": block.duration,
        "ball_rolling": block.ball_rolling_pct,
        "image_url": block.image_url,
        "diagram_data": block.diagram_data,
        "creator_id": block.creator_id,
        "club_id": block.club_id,
        "visibility": block.visibility.value,
        "source": block.source.value,
    }
    if isinstance(block, BlockDefinition):
        row["id"] = block.id
    return row


def _patch_to_row(patch: BlockUpdate) -> dict:
    changes = patch.model_dump(exclude_unset=True, mode="json")
    changes.pop("outcomes", None)
    if "ball_rolling_pct" in changes:
        changes["ball_rolling"] = changes.pop("ball_rolling_pct")
    return changes


def _assignment_from_row(row: dict, block: Optional[BlockDefinition] = None) -> Assignment:
    return Assignment(
        id=row["id"],
        session_id=row["session_id"],
        block_id=row["block_id"],
        position=row["position"],
        slot_index=row.get("slot_index") or 0,
        duration_override=row.get("duration_override"),
        block=block,
        created_at=_parse_datetime(row.get("created_at")),
    )


class SupabaseBlockStore:
    """BlockStore backed by the session_blocks / session_block_assignments tables."""

    def __init__(self, client: Client):
        self.client = client
        self.blocks = settings.blocks_table
        self.assignments = settings.assignments_table
        self.attributes = settings.attributes_table

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except Exception as e:
            logger.warning("Supabase %s failed: %s", action, e)
            if getattr(e, "code", None) == PERMISSION_DENIED_CODE:
                raise OwnershipViolation(f"Not allowed to {action}", cause=e) from e
            raise PersistenceFailure(f"Failed to {action}", cause=e) from e

    # =========================================================================
    # Assignment Operations
    # =========================================================================

    def fetch_assignments(self, session_id: str) -> list[Assignment]:
        """Get all assignments for a session with their blocks resolved."""
        result = self._execute(
            self.client.table(self.assignments)
            .select(f"id, session_id, block_id, position, slot_index, duration_override, created_at, {self.blocks}(*)")
            .eq("session_id", session_id)
            .order("position")
            .order("slot_index"),
            "load session blocks",
        )
        rows = result.data or []
        outcomes = self._outcomes_by_block([row["block_id"] for row in rows])

        assignments = []
        for row in rows:
            block_row = row.get(self.blocks)
            block = _block_from_row(block_row, outcomes.get(block_row["id"])) if block_row else None
            assignments.append(_assignment_from_row(row, block))
        return assignments

    def write_positions(self, updates: list[PositionWrite]) -> None:
        """Batch position rewrite, one update per target position."""
        for update in updates:
            if not update.assignment_ids:
                continue
            self._execute(
                self.client.table(self.assignments)
                .update({"position": update.position})
                .in_("id", update.assignment_ids),
                f"move assignments to position {update.position}",
            )

    def write_slot_index(self, assignment_id: str, slot_index: int) -> None:
        self._execute(
            self.client.table(self.assignments).update({"slot_index": slot_index}).eq("id", assignment_id),
            "update slot index",
        )

    def write_duration(self, assignment_ids: list[str], duration: Optional[int]) -> None:
        if not assignment_ids:
            return
        self._execute(
            self.client.table(self.assignments)
            .update({"duration_override": duration})
            .in_("id", assignment_ids),
            "update durations",
        )

    def create_assignment(
        self,
        session_id: str,
        block_id: str,
        position: int,
        slot_index: int,
        assignment_id: Optional[str] = None,
        duration_override: Optional[int] = None,
    ) -> Assignment:
        """Insert an assignment. With an explicit id this is an idempotent upsert."""
        row = {
            "session_id": session_id,
            "block_id": block_id,
            "position": position,
            "slot_index": slot_index,
            "duration_override": duration_override,
        }
        if assignment_id:
            row["id"] = assignment_id
            query = self.client.table(self.assignments).upsert(row)
        else:
            query = self.client.table(self.assignments).insert(row)
        result = self._execute(query, "assign block to session")
        return _assignment_from_row(result.data[0])

    def delete_assignment(self, assignment_id: str) -> None:
        self._execute(
            self.client.table(self.assignments).delete().eq("id", assignment_id),
            "remove block from session",
        )

    def repoint_assignment_block(self, assignment_id: str, new_block_id: str) -> None:
        self._execute(
            self.client.table(self.assignments).update({"block_id": new_block_id}).eq("id", assignment_id),
            "repoint assignment",
        )

    # =========================================================================
    # Block Operations
    # =========================================================================

    def get_block(self, block_id: str) -> Optional[BlockDefinition]:
        """Get a block by ID."""
        result = self._execute(
            self.client.table(self.blocks).select("*").eq("id", block_id),
            "load block",
        )
        if not result.data:
            return None
        return _block_from_row(result.data[0], self.get_block_outcomes(block_id))

    def create_block(self, block: BlockCreate) -> BlockDefinition:
        """Create a new block record."""
        result = self._execute(self.client.table(self.blocks).insert(_block_to_row(block)), "create block")
        created = _block_from_row(result.data[0])
        if block.outcomes:
            try:
                self.save_block_outcomes(created.id, block.outcomes)
            except PersistenceFailure:
                discard_block(self, created.id)
                raise
        return created.model_copy(update={"outcomes": list(block.outcomes)})

    def update_block(self, block_id: str, patch: BlockUpdate) -> BlockDefinition:
        """Update a block in place (only its creator is allowed to)."""
        changes = _patch_to_row(patch)
        if changes:
            self._execute(
                self.client.table(self.blocks).update(changes).eq("id", block_id),
                "update block",
            )
        if patch.outcomes is not None:
            self.save_block_outcomes(block_id, patch.outcomes)

        updated = self.get_block(block_id)
        if updated is None:
            raise PersistenceFailure(f"Block {block_id} disappeared during update")
        return updated

    def delete_block(self, block_id: str) -> None:
        self._execute(self.client.table(self.blocks).delete().eq("id", block_id), "delete block")

    def clone_block_definition(self, block_id: str, patch: BlockUpdate, new_owner_id: str) -> BlockDefinition:
        """Insert a private copy of a block owned by `new_owner_id` with `patch` applied."""
        original = self.get_block(block_id)
        if original is None:
            raise PersistenceFailure(f"Cannot copy missing block {block_id}")

        copy = clone_block(original, patch, new_owner_id)
        result = self._execute(self.client.table(self.blocks).insert(_block_to_row(copy)), "copy block")
        if copy.outcomes:
            try:
                self.save_block_outcomes(copy.id, copy.outcomes)
            except PersistenceFailure:
                logger.warning("Saving outcomes for copy %s failed, deleting it", copy.id)
                discard_block(self, copy.id)
                raise
        return _block_from_row(result.data[0], copy.outcomes)

    def list_blocks_for_picker(self, coach_id: str, club_id: Optional[str]) -> list[BlockDefinition]:
        """Blocks the coach may see: their own, their club's, public and system blocks."""
        conditions = [f"creator_id.eq.{coach_id}"]
        if club_id:
            conditions.append(f"club_id.eq.{club_id}")
        conditions.append("visibility.eq.public")
        conditions.append("source.eq.system")

        result = self._execute(
            self.client.table(self.blocks)
            .select("*")
            .or_(",".join(conditions))
            .order("updated_at", desc=True),
            "load block picker",
        )
        rows = result.data or []
        outcomes = self._outcomes_by_block([row["id"] for row in rows])
        return [_block_from_row(row, outcomes.get(row["id"])) for row in rows]

    # =========================================================================
    # Outcome Operations
    # =========================================================================

    def get_block_outcomes(self, block_id: str) -> list[BlockOutcome]:
        return self._outcomes_by_block([block_id]).get(block_id, [])

    def save_block_outcomes(self, block_id: str, outcomes: list[BlockOutcome]) -> None:
        """Replace a block's outcomes (delete existing, insert new)."""
        self._execute(
            self.client.table(self.attributes).delete().eq("block_id", block_id),
            "clear block outcomes",
        )
        if not outcomes:
            return
        self._execute(
            self.client.table(self.attributes).insert([
                {
                    "block_id": block_id,
                    "attribute_key": outcome.attribute_key,
                    "order_type": outcome.order_type.value,
                    "relevance": outcome.relevance,
                    "source": outcome.source.value,
                }
                for outcome in outcomes
            ]),
            "save block outcomes",
        )

    def _outcomes_by_block(self, block_ids: list[str]) -> dict[str, list[BlockOutcome]]:
        ids = sorted(set(block_ids))
        if not ids:
            return {}
        result = self._execute(
            self.client.table(self.attributes).select("*").in_("block_id", ids),
            "load block outcomes",
        )
        grouped: dict[str, list[BlockOutcome]] = {}
        for row in result.data or []:
            grouped.setdefault(row["block_id"], []).append(BlockOutcome(
                attribute_key=row["attribute_key"],
                order_type=row["order_type"],
                source=row.get("source") or "coach",
            ))
        return {block_id: sort_outcomes(outcomes) for block_id, outcomes in grouped.items()}


def get_store() -> SupabaseBlockStore:
    """Store bound to the configured Supabase project."""
    client = get_supabase_client()
    if not client:
        raise RuntimeError("Supabase not configured")
    return SupabaseBlockStore(client)
