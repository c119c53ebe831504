"""Outcome tags on blocks (first/second order development attributes)."""

from typing import Iterable

from session_blocks.errors import PreconditionViolation
from session_blocks.models.schemas import (
    MAX_OUTCOMES_PER_ORDER,
    BlockOutcome,
    OrderType,
    OutcomeSource,
)


def build_outcomes(
    first_keys: Iterable[str],
    second_keys: Iterable[str] = (),
    source: OutcomeSource = OutcomeSource.COACH,
) -> list[BlockOutcome]:
    """Build an outcome list, dropping repeats and blanks. Rejects more than the cap."""
    outcomes: list[BlockOutcome] = []
    seen: set[str] = set()
    for order_type, keys in ((OrderType.FIRST, first_keys), (OrderType.SECOND, second_keys)):
        count = 0
        for key in keys:
            key = key.strip()
            if not key or key in seen:
                continue
            count += 1
            if count > MAX_OUTCOMES_PER_ORDER:
                raise PreconditionViolation(
                    f"at most {MAX_OUTCOMES_PER_ORDER} {order_type.value} outcomes per block"
                )
            seen.add(key)
            outcomes.append(BlockOutcome(attribute_key=key, order_type=order_type, source=source))
    return outcomes


def primary_outcomes(outcomes: Iterable[BlockOutcome]) -> list[BlockOutcome]:
    return [o for o in outcomes if o.order_type == OrderType.FIRST]


def secondary_outcomes(outcomes: Iterable[BlockOutcome]) -> list[BlockOutcome]:
    return [o for o in outcomes if o.order_type == OrderType.SECOND]


def sort_outcomes(outcomes: Iterable[BlockOutcome]) -> list[BlockOutcome]:
    """First-order outcomes before second-order, then by attribute key."""
    return sorted(outcomes, key=lambda o: (o.order_type != OrderType.FIRST, o.attribute_key))
