"""Pydantic models for session blocks."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field, field_validator


# Enums
class Visibility(str, Enum):
    """Who can see a block in the catalog."""
    PRIVATE = "private"
    CLUB = "club"
    PUBLIC = "public"


class BlockSource(str, Enum):
    """Where a block definition came from."""
    USER = "user"
    SYSTEM = "system"
    MARKETPLACE = "marketplace"


class OrderType(str, Enum):
    """Whether an outcome is a primary or secondary focus of a block."""
    FIRST = "first"
    SECOND = "second"


class OutcomeSource(str, Enum):
    """Who tagged an outcome onto a block."""
    COACH = "coach"
    LLM = "llm"
    SYSTEM = "system"


PRIMARY_SLOT = 0
SIMULTANEOUS_SLOT = 1
MAX_PRACTICES_PER_GROUP = 2

MAX_OUTCOMES_PER_ORDER = 3
RELEVANCE_BY_ORDER: dict[OrderType, float] = {
    OrderType.FIRST: 1.0,
    OrderType.SECOND: 0.5,
}


# Outcome models
class BlockOutcome(BaseModel):
    """A development attribute a block trains. Relevance follows the order type."""
    attribute_key: str = Field(..., min_length=1)
    order_type: OrderType
    source: OutcomeSource = OutcomeSource.COACH

    @computed_field
    @property
    def relevance(self) -> float:
        return RELEVANCE_BY_ORDER[self.order_type]


def _check_outcomes(outcomes: Optional[list[BlockOutcome]]) -> Optional[list[BlockOutcome]]:
    if outcomes is None:
        return None
    seen: set[str] = set()
    counts = {order: 0 for order in OrderType}
    for outcome in outcomes:
        if outcome.attribute_key in seen:
            raise ValueError(f"duplicate outcome attribute: {outcome.attribute_key}")
        seen.add(outcome.attribute_key)
        counts[outcome.order_type] += 1
        if counts[outcome.order_type] > MAX_OUTCOMES_PER_ORDER:
            raise ValueError(
                f"at most {MAX_OUTCOMES_PER_ORDER} {outcome.order_type.value} outcomes per block"
            )
    return outcomes


# Block models
class BlockBase(BaseModel):
    """Fields shared by every block definition."""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    coaching_points: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0, description="Duration in minutes")
    ball_rolling_pct: Optional[int] = Field(default=None, ge=0, le=100)
    image_url: Optional[str] = None
    diagram_data: Optional[Any] = Field(default=None, description="Opaque tactics diagram payload")
    club_id: Optional[str] = None
    visibility: Visibility = Visibility.PRIVATE
    source: BlockSource = BlockSource.USER
    outcomes: list[BlockOutcome] = Field(default_factory=list)

    @field_validator("outcomes")
    @classmethod
    def validate_outcomes(cls, value: list[BlockOutcome]) -> list[BlockOutcome]:
        return _check_outcomes(value)


class BlockCreate(BlockBase):
    """Model for creating a block."""
    creator_id: str


class BlockDefinition(BlockBase):
    """Block definition with all fields."""
    id: str
    creator_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BlockUpdate(BaseModel):
    """Patch applied to a block. Only explicitly set fields are applied."""
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    coaching_points: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    ball_rolling_pct: Optional[int] = Field(default=None, ge=0, le=100)
    image_url: Optional[str] = None
    diagram_data: Optional[Any] = None
    club_id: Optional[str] = None
    visibility: Optional[Visibility] = None
    outcomes: Optional[list[BlockOutcome]] = None

    @field_validator("outcomes")
    @classmethod
    def validate_outcomes(cls, value: Optional[list[BlockOutcome]]) -> Optional[list[BlockOutcome]]:
        return _check_outcomes(value)


# Assignment models
class Assignment(BaseModel):
    """A block placed in a session at (position, slot_index)."""
    id: str
    session_id: str
    block_id: str
    position: int = Field(..., ge=0)
    slot_index: int = Field(default=PRIMARY_SLOT, ge=PRIMARY_SLOT, le=SIMULTANEOUS_SLOT)
    duration_override: Optional[int] = Field(default=None, ge=0, description="Minutes, overrides block duration")
    block: Optional[BlockDefinition] = None
    created_at: Optional[datetime] = None

    @property
    def effective_duration(self) -> Optional[int]:
        if self.duration_override is not None:
            return self.duration_override
        if self.block is not None:
            return self.block.duration
        return None


class BlockGroup(BaseModel):
    """Derived view of the assignments sharing one position."""
    position: int
    practices: list[Assignment]

    @property
    def primary(self) -> Assignment:
        return self.practices[0]

    @property
    def simultaneous(self) -> Optional[Assignment]:
        return self.practices[1] if len(self.practices) > 1 else None

    @property
    def assignment_ids(self) -> list[str]:
        return [practice.id for practice in self.practices]

    @property
    def effective_duration(self) -> Optional[int]:
        for practice in self.practices:
            if practice.effective_duration is not None:
                return practice.effective_duration
        return None


# Write plan models
class CreateAssignmentWrite(BaseModel):
    kind: Literal["create_assignment"] = "create_assignment"
    assignment: Assignment


class DeleteAssignmentWrite(BaseModel):
    kind: Literal["delete_assignment"] = "delete_assignment"
    assignment_id: str


class PositionWrite(BaseModel):
    """Move every listed assignment to `position`."""
    kind: Literal["position"] = "position"
    position: int = Field(..., ge=0)
    assignment_ids: list[str]


class SlotIndexWrite(BaseModel):
    kind: Literal["slot_index"] = "slot_index"
    assignment_id: str
    slot_index: int = Field(..., ge=PRIMARY_SLOT, le=SIMULTANEOUS_SLOT)


class DurationWrite(BaseModel):
    kind: Literal["duration"] = "duration"
    assignment_ids: list[str]
    duration: Optional[int] = Field(default=None, ge=0)


Write = Annotated[
    Union[
        CreateAssignmentWrite,
        DeleteAssignmentWrite,
        PositionWrite,
        SlotIndexWrite,
        DurationWrite,
    ],
    Field(discriminator="kind"),
]


class WritePlan(BaseModel):
    """Ordered writes that persist one mutation."""
    writes: list[Write] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.writes)

    @property
    def is_empty(self) -> bool:
        return not self.writes

    @property
    def position_writes(self) -> list[PositionWrite]:
        return [w for w in self.writes if isinstance(w, PositionWrite)]

    def extend(self, other: "WritePlan") -> "WritePlan":
        return WritePlan(writes=[*self.writes, *other.writes])


class MutationResult(BaseModel):
    """New flat assignment list plus the writes that persist it."""
    assignments: list[Assignment]
    plan: WritePlan = Field(default_factory=WritePlan)
    affected: Optional[Assignment] = None


class EditResult(BaseModel):
    """Outcome of a copy-on-write block edit."""
    block: BlockDefinition
    copied: bool = False


class PickerBlocks(BaseModel):
    """Blocks available to a coach, split by ownership."""
    my_blocks: list[BlockDefinition] = Field(default_factory=list)
    club_blocks: list[BlockDefinition] = Field(default_factory=list)
    default_blocks: list[BlockDefinition] = Field(default_factory=list)


# API request/response models
class AssignBlockRequest(BaseModel):
    block_id: str


class ReorderRequest(BaseModel):
    from_index: int
    to_index: int


class DurationRequest(BaseModel):
    duration: Optional[int] = Field(default=None, ge=0)


class EditBlockRequest(BaseModel):
    coach_id: str
    patch: BlockUpdate


class OutcomesRequest(BaseModel):
    """Attribute keys a coach tags onto a block, by order type."""
    coach_id: str
    first_order: list[str] = Field(default_factory=list)
    second_order: list[str] = Field(default_factory=list)


class BlockOutcomesResponse(BaseModel):
    block_id: str
    first_order: list[BlockOutcome]
    second_order: list[BlockOutcome]


class GroupView(BaseModel):
    position: int
    practices: list[Assignment]
    effective_duration: Optional[int] = None


class SessionGroupsResponse(BaseModel):
    session_id: str
    groups: list[GroupView]
    total_minutes: int
    version: str
