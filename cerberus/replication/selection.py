"""
Source selection for replication.

Turns what the operator asked for (a stream, an event type or a category,
plus an optional "most recent" limit) into the name of the stream to read
and how much of it to read. Pure functions, no I/O.

Invariants:
    - Exactly one selection variant is produced
    - ByStream reads the stream itself; ByEventType reads "$et-<type>";
      ByCategory reads "$category-<category>"
    - Top(n) always has n > 0
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from ..config import RECENT_COUNT
from ..errors import UserFault

EVENT_TYPE_PREFIX = "$et-"
CATEGORY_PREFIX = "$category-"


@dataclass(frozen=True)
class ByStream:
    """Copy one stream to a stream of the same name."""
    name: str

    @property
    def index_stream(self) -> str:
        return self.name


@dataclass(frozen=True)
class ByEventType:
    """Copy every event of a type, each to its own origin stream."""
    type: str

    @property
    def index_stream(self) -> str:
        return f"{EVENT_TYPE_PREFIX}{self.type}"


@dataclass(frozen=True)
class ByCategory:
    """Copy every member stream of a category."""
    category: str

    @property
    def index_stream(self) -> str:
        return f"{CATEGORY_PREFIX}{self.category}"


Selection = Union[ByStream, ByEventType, ByCategory]


@dataclass(frozen=True)
class Top:
    """Read only the n most recent entries of the index stream."""
    count: int

    def __post_init__(self) -> None:
        if self.count <= 0:
            raise ValueError("Top count must be greater than 0")


# None means the full history.
Limit = Optional[Top]


def resolve_selection(
    from_stream: Optional[str] = None,
    from_type: Optional[str] = None,
    from_category: Optional[str] = None,
) -> Selection:
    """Pick the selection variant.

    Raises:
        UserFault: If zero or more than one source is given
    """
    candidates = [
        variant
        for variant in (
            ByStream(from_stream) if from_stream else None,
            ByEventType(from_type) if from_type else None,
            ByCategory(from_category) if from_category else None,
        )
        if variant is not None
    ]

    if not candidates:
        raise UserFault(
            "No source submitted. You should at least provide "
            "--from-stream, --from-type or --from-category"
        )
    if len(candidates) > 1:
        raise UserFault(
            "Only one source can be submitted: choose one of "
            "--from-stream, --from-type or --from-category"
        )
    return candidates[0]


def resolve_limit(recent: bool = False, top: Optional[Union[int, str]] = None) -> Limit:
    """Compute the read limit.

    --recent means the 50 most recent entries. --top takes a positive count.
    Giving both is rejected.

    Raises:
        UserFault: If top is not a positive number, or is combined with recent
    """
    if recent and top is not None:
        raise UserFault("--recent and --top cannot be used together")

    if recent:
        return Top(RECENT_COUNT)

    if top is None:
        return None

    try:
        count = int(top)
    except (TypeError, ValueError) as e:
        raise UserFault(f"Failed to parse --top number: {e}")

    if count <= 0:
        raise UserFault("--top parameter must be greater than 0")

    return Top(count)


def resolve(
    from_stream: Optional[str] = None,
    from_type: Optional[str] = None,
    from_category: Optional[str] = None,
    recent: bool = False,
    top: Optional[Union[int, str]] = None,
) -> Tuple[Selection, str, Limit]:
    """Resolve the operator's input into (selection, index stream, limit)."""
    selection = resolve_selection(from_stream, from_type, from_category)
    limit = resolve_limit(recent, top)
    return selection, selection.index_stream, limit
